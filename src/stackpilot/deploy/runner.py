"""External command boundary.

Every side effect stackpilot has on the host (docker, compose, git)
goes through a ``CommandRunner``. Only exit codes and stdout text are
inspected. Tests substitute a scripted fake with the same ``run`` /
``run_to_file`` / ``which`` surface.

Secrets are redacted from the debug log of every command line.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from stackpilot.core.errors import CommandError
from stackpilot.core.logging import get_logger

logger = get_logger(__name__)

REDACTED = "****"


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every occurrence of each secret in *text*."""
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        text = text.replace(secret, REDACTED)
    return text


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class CommandRunner:
    """Runs external commands via ``subprocess``.

    Args:
        timeout: Seconds before a captured command is abandoned.
        secrets: Values redacted from logged command lines.
    """

    timeout: int = 600
    secrets: list[str] = field(default_factory=list)

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        capture: bool = True,
        timeout: int | None = None,
    ) -> CommandResult:
        """Run *args* and return its result.

        With ``capture=False`` the command is attached to the terminal
        (``logs -f``, interactive shells) and no timeout applies.

        A missing executable yields exit code 127 rather than an
        exception, matching what a shell would report.

        Raises:
            CommandError: The command exceeded its timeout.
        """
        argv = [str(a) for a in args]
        logger.debug("command.run", cmd=redact(" ".join(argv), self.secrets), cwd=str(cwd or ""))
        full_env = {**os.environ, **env} if env is not None else None
        try:
            if not capture:
                completed = subprocess.run(argv, cwd=cwd, env=full_env)
                return CommandResult(argv, completed.returncode)
            completed = subprocess.run(
                argv,
                cwd=cwd,
                env=full_env,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
            )
        except FileNotFoundError as exc:
            logger.debug("command.not_found", executable=argv[0])
            return CommandResult(argv, 127, stderr=str(exc))
        except subprocess.TimeoutExpired as exc:
            raise CommandError(
                f"Command timed out after {timeout or self.timeout}s: {argv[0]}",
                cause=exc,
            ).with_context(command=redact(" ".join(argv), self.secrets)) from exc

        if completed.returncode != 0:
            logger.debug("command.failed", cmd=argv[0], exit_code=completed.returncode)
        return CommandResult(argv, completed.returncode, completed.stdout or "", completed.stderr or "")

    def run_to_file(
        self,
        args: Sequence[str],
        path: Path,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run *args* with stdout written to *path*.

        Raises:
            CommandError: *path* cannot be opened, or the command timed out.
        """
        argv = [str(a) for a in args]
        logger.debug("command.run_to_file", cmd=redact(" ".join(argv), self.secrets), path=str(path))
        full_env = {**os.environ, **env} if env is not None else None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fh = path.open("w", encoding="utf-8")
        except OSError as exc:
            raise CommandError(f"Cannot write {path}: {exc.strerror or exc}", cause=exc) from exc
        try:
            with fh:
                completed = subprocess.run(
                    argv,
                    cwd=cwd,
                    env=full_env,
                    stdout=fh,
                    stderr=subprocess.PIPE,
                    text=True,
                    timeout=self.timeout,
                )
        except FileNotFoundError as exc:
            return CommandResult(argv, 127, stderr=str(exc))
        except subprocess.TimeoutExpired as exc:
            raise CommandError(f"Command timed out after {self.timeout}s: {argv[0]}", cause=exc) from exc
        return CommandResult(argv, completed.returncode, stderr=completed.stderr or "")

    def which(self, tool: str) -> str | None:
        return shutil.which(tool)
