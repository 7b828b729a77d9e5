"""Health polling.

``await_healthy`` polls a predicate at a fixed interval until it
succeeds or max_attempts polls have failed:

- first success returns immediately;
- on failure exactly ``max_attempts`` polls are made with
  ``max_attempts - 1`` sleeps between them, so the total wait never
  exceeds ``max_attempts * interval``;
- on exhaustion ``on_timeout`` runs exactly once (the diagnostic log
  dump), then ``HealthTimeoutError`` is raised.

``probe_for`` builds the predicate for a service from its
``HealthProbe``.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import NamedTuple

from stackpilot.core.errors import HealthTimeoutError, StackPilotError
from stackpilot.core.logging import get_logger
from stackpilot.deploy.compose import ComposeProject, map_compose_status
from stackpilot.deploy.services import HealthProbe, ServiceSpec

logger = get_logger(__name__)


class ProbeOutcome(NamedTuple):
    healthy: bool
    state: str


Predicate = Callable[[], "ProbeOutcome | bool"]


@dataclass
class HealthPoll:
    """Progress of one service's health wait."""

    service: str
    max_attempts: int
    interval: float
    attempts: int = 0
    last_state: str = "unknown"
    healthy: bool = False


def await_healthy(
    service: str,
    predicate: Predicate,
    max_attempts: int,
    interval: float,
    *,
    sleep: Callable[[float], None] = time.sleep,
    on_timeout: Callable[[HealthPoll], None] | None = None,
) -> HealthPoll:
    """Poll *predicate* until it reports healthy.

    Raises:
        HealthTimeoutError: after ``max_attempts`` failed polls.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    poll = HealthPoll(service=service, max_attempts=max_attempts, interval=interval)
    for attempt in range(1, max_attempts + 1):
        poll.attempts = attempt
        try:
            outcome = predicate()
        except StackPilotError as exc:
            outcome = ProbeOutcome(False, f"error: {exc.message}")
        if isinstance(outcome, bool):
            outcome = ProbeOutcome(outcome, "healthy" if outcome else "unhealthy")
        poll.last_state = outcome.state

        logger.debug(
            "health.poll",
            service=service,
            attempt=attempt,
            max_attempts=max_attempts,
            state=outcome.state,
        )
        if outcome.healthy:
            poll.healthy = True
            return poll
        if attempt < max_attempts:
            sleep(interval)

    logger.warning("health.timeout", service=service, attempts=poll.attempts, last_state=poll.last_state)
    if on_timeout is not None:
        try:
            on_timeout(poll)
        except StackPilotError as exc:
            logger.warning("health.dump_failed", service=service, error=exc.message)

    raise HealthTimeoutError(
        f"{service} failed to become healthy after {poll.attempts} attempts (last state: {poll.last_state})",
        service=service,
        attempts=poll.attempts,
        last_state=poll.last_state,
    )


def probe_for(
    compose: ComposeProject,
    spec: ServiceSpec,
    *,
    profiles: Iterable[str] = (),
    password: str | None = None,
) -> Predicate:
    """Build the health predicate for *spec*."""
    profiles = list(profiles)

    if spec.health is HealthProbe.NONE:
        return lambda: ProbeOutcome(True, "unchecked")

    if spec.health is HealthProbe.PING:

        def ping() -> ProbeOutcome:
            result = compose.exec(spec.name, spec.ping_cmd, password=password, profiles=profiles)
            answer = result.stdout.strip()
            if result.ok and answer == spec.ping_expect:
                return ProbeOutcome(True, answer)
            return ProbeOutcome(False, answer or f"exit {result.returncode}")

        return ping

    def status() -> ProbeOutcome:
        entry = compose.service_state(spec.name, profiles)
        state = map_compose_status(entry) if entry else "not_found"
        if spec.health is HealthProbe.COMPOSE:
            return ProbeOutcome(state == "healthy", state)
        return ProbeOutcome(state in ("running", "healthy"), state)

    return status
