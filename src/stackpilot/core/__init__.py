"""Core infrastructure: errors, logging, settings, env files."""

from stackpilot.core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorContext,
    StackPilotError,
)
from stackpilot.core.logging import configure_logging, get_logger
from stackpilot.core.settings import StackPilotSettings, get_settings

__all__ = [
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "StackPilotError",
    "StackPilotSettings",
    "configure_logging",
    "get_logger",
    "get_settings",
]
