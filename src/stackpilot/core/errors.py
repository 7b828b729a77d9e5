"""
Structured error types for stackpilot.

Every failure the orchestrator can report is a subclass of
``StackPilotError``. Each error carries a category, a retryable flag and
an ``ErrorContext`` with the stack/service/step it happened in, so the
CLI can print a single clear line and the logs can carry the details.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                      StackPilotError                          │
        │            (category, retryable, context, cause)              │
        ├──────────────────────────────────────────────────────────────┤
        │  ConfigError         PreflightError       BuildError          │
        │  (CONFIG)            (CONFIG)             (BUILD)             │
        │                                                               │
        │  ActivationError     HealthTimeoutError   VerificationMismatch│
        │  (ACTIVATION)        (HEALTH)             (VERIFICATION)      │
        │                                                               │
        │  CommandError        BackupError          OrchestrationError  │
        │  (COMMAND)           (STORAGE)            (INTERNAL)          │
        └──────────────────────────────────────────────────────────────┘

Propagation:
    - ``ConfigError`` and ``BuildError`` abort the whole plan.
    - ``ActivationError`` aborts the remaining activations; services
      already started keep running.
    - ``HealthTimeoutError`` is raised after the diagnostic log dump.
    - ``VerificationMismatch`` is always downgraded to a warning.

Usage:
    from stackpilot.core.errors import ConfigError

    raise ConfigError(
        "Missing required environment variables",
        missing=["REDIS_PASSWORD"],
    ).with_context(stack="redis")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    CONFIG = "CONFIG"  # Missing/malformed input, missing tools
    BUILD = "BUILD"  # Image build failures
    ACTIVATION = "ACTIVATION"  # Service failed to start
    HEALTH = "HEALTH"  # Health predicate never became true
    VERIFICATION = "VERIFICATION"  # Replica did not reflect the probe
    COMMAND = "COMMAND"  # Generic external command failure
    STORAGE = "STORAGE"  # Backup / file system errors
    INTERNAL = "INTERNAL"  # Bugs, illegal state transitions
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only the fields that are set end up in ``to_dict()``, so the same
    context can describe a validation failure (``stack`` only) or a
    timeout (``stack``, ``service``, ``step``, ``run_id``).
    """

    stack: str | None = None
    service: str | None = None
    step: str | None = None
    run_id: str | None = None
    command: str | None = None
    exit_code: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["stack", "service", "step", "run_id", "command", "exit_code"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class StackPilotError(Exception):
    """
    Base exception for all stackpilot errors.

    Subclasses set ``default_category`` and ``default_retryable``.
    ``with_context()`` adds metadata fluently; unknown keys go to
    ``context.metadata``.

    Examples:
        >>> error = StackPilotError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(service="redis").context.service
        'redis'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> StackPilotError:
        """
        Add context to this error (fluent API).

        Usage:
            raise BuildError("Build failed").with_context(stack="redis")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS (never retried, fixed by the operator)
# =============================================================================


class ConfigError(StackPilotError):
    """
    Missing or malformed configuration.

    Raised before any side effect. ``missing`` lists absent variables,
    ``malformed`` maps a variable name to the reason it was rejected.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        missing: list[str] | None = None,
        malformed: dict[str, str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.missing = list(missing or [])
        self.malformed = dict(malformed or {})

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.missing:
            result["missing"] = self.missing
        if self.malformed:
            result["malformed"] = self.malformed
        return result


class PreflightError(ConfigError):
    """A required external tool (docker, compose) is not available."""

    def __init__(self, message: str, *, tools: list[str] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.tools = list(tools or [])


# =============================================================================
# DEPLOYMENT ERRORS
# =============================================================================


class BuildError(StackPilotError):
    """The external image builder failed. Fatal for the whole plan."""

    default_category = ErrorCategory.BUILD
    default_retryable = False


class ActivationError(StackPilotError):
    """
    A service failed to start.

    ``started`` lists the services that were already running when the
    failure happened; they are not stopped automatically.
    """

    default_category = ErrorCategory.ACTIVATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        service: str,
        started: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.service = service
        self.started = list(started or [])
        self.context.service = service


class HealthTimeoutError(StackPilotError):
    """The health predicate of a service never became true."""

    default_category = ErrorCategory.HEALTH
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        service: str,
        attempts: int,
        last_state: str = "unknown",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.service = service
        self.attempts = attempts
        self.last_state = last_state
        self.context.service = service

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["attempts"] = self.attempts
        result["last_state"] = self.last_state
        return result


class VerificationMismatch(StackPilotError):
    """
    One or more secondaries did not reflect the probe write.

    Never fatal: asynchronous replication makes a transient mismatch
    expected. The orchestrator downgrades it to a warning.
    """

    default_category = ErrorCategory.VERIFICATION
    default_retryable = True

    def __init__(self, message: str, *, services: list[str] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.services = list(services or [])


class CommandError(StackPilotError):
    """An external command exited non-zero outside the deploy path."""

    default_category = ErrorCategory.COMMAND
    default_retryable = False


class BackupError(StackPilotError):
    """A backup step failed."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


class OrchestrationError(StackPilotError):
    """Illegal state transition or misuse of the orchestrator."""

    default_category = ErrorCategory.INTERNAL
    default_retryable = False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "StackPilotError",
    "ConfigError",
    "PreflightError",
    "BuildError",
    "ActivationError",
    "HealthTimeoutError",
    "VerificationMismatch",
    "CommandError",
    "BackupError",
    "OrchestrationError",
]
