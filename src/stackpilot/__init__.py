"""stackpilot: health-gated deployment orchestration for containerized stacks."""

__version__ = "0.1.0"
