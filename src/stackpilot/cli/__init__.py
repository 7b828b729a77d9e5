"""stackpilot command-line interface."""
