"""Replication verification.

After a primary/secondary stack is healthy, a throwaway key is written
to the primary, given a fixed propagation delay, and read back from
every secondary. The outcome is a ``VerificationReport``; it never
decides whether the deployment succeeded. Replication is asynchronous,
so a mismatch is reported as a warning.

The probe key is deleted from the primary whatever happened in between.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

from pydantic import BaseModel, Field

from stackpilot.core.errors import VerificationMismatch
from stackpilot.core.logging import get_logger
from stackpilot.deploy.compose import ComposeProject
from stackpilot.deploy.services import ServiceSpec

logger = get_logger(__name__)

DEFAULT_PROBE_KEY = "test_key"
DEFAULT_PROBE_VALUE = "replication_works"
DEFAULT_PROPAGATION_DELAY = 2.0


class VerificationRecord(BaseModel):
    """Probe read-back from one secondary."""

    service: str
    expected: str
    observed: str | None = None
    match: bool = False


class VerificationReport(BaseModel):
    """Outcome of one replication probe."""

    primary: str
    probe_key: str = DEFAULT_PROBE_KEY
    records: list[VerificationRecord] = Field(default_factory=list)
    write_ok: bool = True
    cleanup_ok: bool = True
    error: str | None = None

    @property
    def matched(self) -> list[VerificationRecord]:
        return [r for r in self.records if r.match]

    @property
    def mismatched(self) -> list[VerificationRecord]:
        return [r for r in self.records if not r.match]

    @property
    def ok(self) -> bool:
        return self.write_ok and not self.mismatched

    def check(self) -> None:
        """Raise ``VerificationMismatch`` unless every secondary matched."""
        if not self.write_ok:
            raise VerificationMismatch(
                f"Could not write probe key to {self.primary}: {self.error or 'unknown error'}",
                services=[self.primary],
            )
        if self.mismatched:
            names = [r.service for r in self.mismatched]
            raise VerificationMismatch(
                f"Replication not confirmed on: {', '.join(names)}",
                services=names,
            )


def verify_replication(
    compose: ComposeProject,
    primary: ServiceSpec,
    secondaries: Sequence[ServiceSpec],
    *,
    probe_key: str = DEFAULT_PROBE_KEY,
    probe_value: str = DEFAULT_PROBE_VALUE,
    delay: float = DEFAULT_PROPAGATION_DELAY,
    password: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> VerificationReport:
    """Write the probe to *primary* and read it back from *secondaries*."""
    report = VerificationReport(primary=primary.name, probe_key=probe_key)
    try:
        written = compose.exec(primary.name, ["redis-cli", "SET", probe_key, probe_value], password=password)
        if not written.ok or written.stdout.strip() != "OK":
            report.write_ok = False
            report.error = written.stderr.strip() or written.stdout.strip() or f"exit {written.returncode}"
            logger.warning("replication.write_failed", primary=primary.name, error=report.error)
            return report

        sleep(delay)

        for secondary in secondaries:
            read = compose.exec(secondary.name, ["redis-cli", "GET", probe_key], password=password)
            observed = read.stdout.strip() if read.ok else None
            record = VerificationRecord(
                service=secondary.name,
                expected=probe_value,
                observed=observed,
                match=observed == probe_value,
            )
            report.records.append(record)
            logger.debug("replication.read", service=secondary.name, match=record.match)
    finally:
        deleted = compose.exec(primary.name, ["redis-cli", "DEL", probe_key], password=password)
        report.cleanup_ok = deleted.ok
        if not deleted.ok:
            logger.warning("replication.cleanup_failed", primary=primary.name, key=probe_key)

    return report
