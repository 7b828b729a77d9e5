"""Result models for stackpilot deployments.

``DeploymentResult`` records one invocation: the state machine's
history, per-service statuses, the replication report and the error
that ended the run, if any.

State machine::

    INIT → VALIDATED → BUILT → ACTIVATING → AWAITING_HEALTH → VERIFYING → REPORTED → DONE
      ⤷ FAILED (from any non-terminal state)

Transitions are strictly forward; anything else raises
``OrchestrationError``. ``exit_code`` is 0 exactly when the final state
is DONE.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from stackpilot.core.errors import OrchestrationError, StackPilotError
from stackpilot.deploy.replication import VerificationReport


class DeploymentState(str, Enum):
    INIT = "INIT"
    VALIDATED = "VALIDATED"
    BUILT = "BUILT"
    ACTIVATING = "ACTIVATING"
    AWAITING_HEALTH = "AWAITING_HEALTH"
    VERIFYING = "VERIFYING"
    REPORTED = "REPORTED"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (DeploymentState.DONE, DeploymentState.FAILED)


_FORWARD: list[DeploymentState] = [
    DeploymentState.INIT,
    DeploymentState.VALIDATED,
    DeploymentState.BUILT,
    DeploymentState.ACTIVATING,
    DeploymentState.AWAITING_HEALTH,
    DeploymentState.VERIFYING,
    DeploymentState.REPORTED,
    DeploymentState.DONE,
]


def can_transition(current: DeploymentState, new: DeploymentState) -> bool:
    """Whether ``current → new`` is a legal transition."""
    if current.terminal:
        return False
    if new is DeploymentState.FAILED:
        return True
    return _FORWARD.index(new) == _FORWARD.index(current) + 1


ServiceState = Literal["pending", "running", "healthy", "unhealthy", "exited", "starting", "not_found"]


class ServiceStatus(BaseModel):
    """Status of a single service in the plan."""

    name: str
    role: str
    endpoint: str
    status: ServiceState = "pending"
    attempts: int = 0
    error: str | None = None


class DeploymentResult(BaseModel):
    """Result of one deployment invocation."""

    run_id: str
    stack: str
    mode: str
    state: DeploymentState = DeploymentState.INIT
    history: list[DeploymentState] = Field(default_factory=lambda: [DeploymentState.INIT])
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0
    services: list[ServiceStatus] = Field(default_factory=list)
    image: str | None = None
    build_args: dict[str, str] = Field(default_factory=dict)
    verification: VerificationReport | None = None
    connection_info: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    error_type: str | None = None
    failed_state: DeploymentState | None = None

    @property
    def exit_code(self) -> int:
        return 0 if self.state is DeploymentState.DONE else 1

    @property
    def succeeded(self) -> bool:
        return self.state is DeploymentState.DONE

    def transition(self, new: DeploymentState) -> None:
        """Move to *new* or raise ``OrchestrationError``."""
        if not can_transition(self.state, new):
            raise OrchestrationError(
                f"Illegal state transition {self.state.value} -> {new.value}"
            ).with_context(stack=self.stack, run_id=self.run_id)
        if new is DeploymentState.FAILED:
            self.failed_state = self.state
        self.state = new
        self.history.append(new)

    def fail(self, error: BaseException) -> None:
        """Record *error* and move to FAILED."""
        self.error = error.message if isinstance(error, StackPilotError) else (str(error) or type(error).__name__)
        self.error_type = type(error).__name__
        self.transition(DeploymentState.FAILED)
        self.mark_complete()

    def service(self, name: str) -> ServiceStatus | None:
        for status in self.services:
            if status.name == name:
                return status
        return None

    def mark_complete(self) -> None:
        """Finalise timestamps and duration."""
        self.completed_at = datetime.now(UTC).isoformat()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()

    @property
    def summary(self) -> str:
        healthy = sum(1 for s in self.services if s.status in ("running", "healthy"))
        return f"{healthy}/{len(self.services)} services healthy"
