"""
Shared pytest fixtures for stackpilot tests.

This module provides:
- ``FakeRunner``: a scripted stand-in for ``CommandRunner``. Rules match
  a contiguous fragment of the argv; later rules win; unmatched
  commands succeed with empty output. Every call and its env are recorded.
- ``FakeSleep``: records requested durations instead of sleeping.
- A temporary project directory per test.

No test needs Docker.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from stackpilot.core.logging import configure_logging
from stackpilot.deploy.runner import CommandResult


def _contains(argv: Sequence[str], fragment: Sequence[str]) -> bool:
    n = len(fragment)
    return any(list(argv[i : i + n]) == list(fragment) for i in range(len(argv) - n + 1))


class FakeRunner:
    """Scripted command runner."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.envs: list[dict[str, str]] = []
        self.secrets: list[str] = []
        self.missing_tools: set[str] = set()
        self._rules: list[tuple[tuple[str, ...], list[CommandResult]]] = []

    def on(self, *fragment: str, stdout: str = "", returncode: int = 0, stderr: str = "") -> FakeRunner:
        """Answer every command containing *fragment* with one result."""
        self._rules.append((fragment, [CommandResult(list(fragment), returncode, stdout, stderr)]))
        return self

    def on_sequence(self, *fragment: str, results: Sequence[tuple[int, str]]) -> FakeRunner:
        """Answer successive matching commands in order; the last result repeats."""
        scripted = [CommandResult(list(fragment), rc, out) for rc, out in results]
        self._rules.append((fragment, scripted))
        return self

    def _answer(self, argv: list[str]) -> CommandResult:
        for fragment, results in reversed(self._rules):
            if _contains(argv, fragment):
                result = results.pop(0) if len(results) > 1 else results[0]
                return CommandResult(argv, result.returncode, result.stdout, result.stderr)
        return CommandResult(argv, 0)

    def run(self, args, *, cwd=None, env=None, capture=True, timeout=None) -> CommandResult:
        argv = [str(a) for a in args]
        self.calls.append(argv)
        self.envs.append(dict(env or {}))
        return self._answer(argv)

    def run_to_file(self, args, path: Path, *, cwd=None, env=None) -> CommandResult:
        argv = [str(a) for a in args]
        self.calls.append(argv)
        self.envs.append(dict(env or {}))
        result = self._answer(argv)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(result.stdout, encoding="utf-8")
        return CommandResult(argv, result.returncode, stderr=result.stderr)

    def which(self, tool: str) -> str | None:
        return None if tool in self.missing_tools else f"/usr/bin/{tool}"

    def find(self, *fragment: str) -> list[list[str]]:
        return [call for call in self.calls if _contains(call, fragment)]

    def count(self, *fragment: str) -> int:
        return len(self.find(*fragment))

    def env_of(self, *fragment: str) -> dict[str, str]:
        """Env passed to the last command containing *fragment*."""
        for call, env in zip(reversed(self.calls), reversed(self.envs)):
            if _contains(call, fragment):
                return env
        raise AssertionError(f"no command contains {fragment}")


class FakeSleep:
    """Records sleep durations."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture(autouse=True, scope="session")
def _quiet_logging():
    configure_logging(level="WARNING", format="console", force=True)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture
def redis_project(tmp_path: Path) -> Path:
    """Project directory with a valid Redis .env."""
    (tmp_path / ".env").write_text("REDIS_PASSWORD=s3cret-pass\nREDIS_MAXMEMORY=512mb\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def discourse_env() -> dict[str, str]:
    return {
        "DISCOURSE_HOSTNAME": "forum.example.com",
        "DISCOURSE_SECRET_KEY_BASE": "a" * 128,
        "POSTGRES_PASSWORD": "pg-pass",
        "SMTP_ADDRESS": "smtp.example.com",
        "SMTP_USERNAME": "mailer",
        "SMTP_PASSWORD": "smtp-pass",
    }
