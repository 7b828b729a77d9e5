"""
Logging configuration.

Provides a single entry point for configuring structured logging.
Supports environment-based configuration for:
- Log level (DEBUG, INFO, WARNING, ERROR)
- Output format (json, console)

Configuration is read from environment variables:
- STACKPILOT_LOG_LEVEL: DEBUG | INFO | WARNING | ERROR (default: WARNING)
- STACKPILOT_LOG_FORMAT: json | console (default: console)

Operator-facing status lines are printed by the CLI console, not by
the logger; logs go to stderr and carry the structured details
(commands, attempts, exit codes).

Usage:
    # Configure at application startup
    from stackpilot.core.logging import configure_logging
    configure_logging()

    # Or with explicit settings
    configure_logging(level="DEBUG", format="json")
"""

import logging
import os
import sys
from typing import Literal

import structlog
from structlog.types import Processor

# Track if logging has been configured
_configured = False


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
    force: bool = False,
) -> None:
    """
    Configure structured logging for the application.

    Should be called once at CLI entry. Subsequent calls are no-ops
    unless force=True.

    Args:
        level: Log level (overrides STACKPILOT_LOG_LEVEL env var)
        format: Output format (overrides STACKPILOT_LOG_FORMAT env var)
        force: Reconfigure even if already configured
    """
    global _configured

    if _configured and not force:
        return

    log_level = (level or os.environ.get("STACKPILOT_LOG_LEVEL", "WARNING")).upper()
    log_format = (format or os.environ.get("STACKPILOT_LOG_FORMAT", "console")).lower()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        log_level = "WARNING"

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        # UTC ISO-8601 timestamps
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Configure stdlib logging to match
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level),
        force=True,
    )
    logging.getLogger("stackpilot").setLevel(getattr(logging, log_level))

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to *name*."""
    return structlog.get_logger(name)
