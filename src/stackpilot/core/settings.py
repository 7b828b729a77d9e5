"""Tool-level settings for stackpilot.

``StackPilotSettings`` holds the knobs that belong to the orchestrator
itself rather than to a deployed stack: where the stacks live, which
compose CLI to call, and how to log. Values come from ``STACKPILOT_*``
environment variables.

Stack configuration (passwords, memory limits, hostnames) is *not*
read here; it is validated per stack by
:func:`stackpilot.deploy.config.validate_configuration`.

Examples:
    >>> from stackpilot.core.settings import StackPilotSettings
    >>> settings = StackPilotSettings(compose_command="docker-compose")
    >>> settings.compose_argv()
    ['docker-compose']
"""

from __future__ import annotations

import shlex
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StackPilotSettings(BaseSettings):
    """Settings shared by every stackpilot command.

    Fields
    ──────
    project_dir      : Directory holding the stack's compose/env files
    compose_command  : Compose CLI invocation (``docker compose`` or ``docker-compose``)
    log_level        : Structlog log level
    log_format       : ``console`` or ``json``
    command_timeout  : Seconds before a captured external command is abandoned
    """

    model_config = SettingsConfigDict(
        env_prefix="STACKPILOT_",
        extra="ignore",
    )

    project_dir: Path = Field(
        default_factory=Path.cwd,
        description="Directory holding the stack's compose and env files",
    )
    compose_command: str = Field(
        default="docker compose",
        description="Compose CLI invocation",
    )
    log_level: str = "WARNING"
    log_format: str = "console"
    command_timeout: int = Field(
        default=600,
        description="Timeout in seconds for captured external commands",
    )

    def compose_argv(self) -> list[str]:
        """Split ``compose_command`` into argv form."""
        return shlex.split(self.compose_command)


def get_settings(**overrides: object) -> StackPilotSettings:
    """Build settings from the environment with keyword overrides on top."""
    values = {k: v for k, v in overrides.items() if v is not None}
    return StackPilotSettings(**values)
