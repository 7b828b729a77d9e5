"""Docker Compose integration.

Two halves:

- ``ComposeProject`` wraps the compose CLI for one stack (build, up,
  ps, exec, logs, down). Every call goes through a ``CommandRunner``;
  profiles and the env file are added to each invocation.
- ``generate_compose`` renders a stack's registry entry into a compose
  YAML descriptor, used by ``init`` to scaffold a missing compose file.

Key Concepts:
    parse_ps_output: ``compose ps --format json`` prints either a JSON
        array or one object per line depending on the compose version;
        both are accepted.
    map_compose_status: folds compose State/Health into the status
        vocabulary of ``ServiceStatus``.
    REDISCLI_AUTH: the Redis password is handed to ``redis-cli`` through
        the exec environment, never on its command line.

Tags:
    compose, docker, yaml, generation, subprocess
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from stackpilot.core.logging import get_logger
from stackpilot.deploy.runner import CommandResult, CommandRunner
from stackpilot.deploy.services import HealthProbe, StackSpec

if TYPE_CHECKING:
    from stackpilot.deploy.config import DeploymentConfig

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# ps output
# ---------------------------------------------------------------------------


def parse_ps_output(text: str) -> list[dict[str, Any]]:
    """Parse ``compose ps --format json`` output into a list of entries."""
    text = text.strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("compose.ps_unparsable", chars=len(text))
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    entries = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("compose.ps_line_skipped", line=line[:80])
            continue
        if isinstance(entry, dict):
            entries.append(entry)
    return entries


def map_compose_status(entry: Mapping[str, Any]) -> str:
    """Map a compose ps entry to our status values."""
    health = str(entry.get("Health") or "").lower()
    state = str(entry.get("State") or "").lower()
    if health in ("healthy", "unhealthy", "starting"):
        return health
    if state == "running":
        return "running"
    if "exit" in state or state == "dead":
        return "exited"
    if state in ("created", "restarting"):
        return "starting"
    return "not_found"


# ---------------------------------------------------------------------------
# Compose CLI wrapper
# ---------------------------------------------------------------------------


class ComposeProject:
    """The compose CLI bound to one stack's compose file and env file."""

    def __init__(
        self,
        runner: CommandRunner,
        *,
        project_dir: Path,
        compose_file: str,
        env_file: str | None = None,
        compose_command: Sequence[str] = ("docker", "compose"),
        env: Mapping[str, str] | None = None,
    ):
        self.runner = runner
        self.project_dir = project_dir
        self.compose_file = compose_file
        self.env_file = env_file
        self.compose_command = list(compose_command)
        self.env = dict(env or {})

    @classmethod
    def from_config(cls, config: DeploymentConfig, runner: CommandRunner) -> ComposeProject:
        return cls(
            runner,
            project_dir=config.project_dir,
            compose_file=config.compose_file,
            env_file=config.env_file,
            compose_command=config.compose_command,
            env=config.values,
        )

    # -- argv helpers -----------------------------------------------------

    def base_args(self, profiles: Iterable[str] = ()) -> list[str]:
        args = [*self.compose_command, "-f", self.compose_file]
        if self.env_file and (self.project_dir / self.env_file).is_file():
            args += ["--env-file", self.env_file]
        for profile in profiles:
            args += ["--profile", profile]
        return args

    def _run(self, args: list[str], *, capture: bool = True, env: Mapping[str, str] | None = None) -> CommandResult:
        return self.runner.run(args, cwd=self.project_dir, env={**self.env, **(env or {})}, capture=capture)

    # -- commands ---------------------------------------------------------

    def build(self, service: str | None = None, build_args: Mapping[str, str] | None = None) -> CommandResult:
        args = [*self.base_args(), "build"]
        for key, value in (build_args or {}).items():
            args += ["--build-arg", f"{key}={value}"]
        if service:
            args.append(service)
        return self._run(args)

    def up(self, service: str, profiles: Iterable[str] = ()) -> CommandResult:
        return self._run([*self.base_args(profiles), "up", "-d", service])

    def ps(self, profiles: Iterable[str] = (), service: str | None = None) -> list[dict[str, Any]]:
        args = [*self.base_args(profiles), "ps", "--format", "json"]
        if service:
            args.append(service)
        result = self._run(args)
        if not result.ok:
            logger.debug("compose.ps_failed", exit_code=result.returncode)
            return []
        return parse_ps_output(result.stdout)

    def ps_table(self, profiles: Iterable[str] = ()) -> CommandResult:
        """Plain ``compose ps`` attached to the terminal."""
        return self._run([*self.base_args(profiles), "ps"], capture=False)

    def service_state(self, service: str, profiles: Iterable[str] = ()) -> dict[str, Any] | None:
        for entry in self.ps(profiles, service=service):
            if entry.get("Service") == service or entry.get("Name") == service:
                return entry
        return None

    def exec(
        self,
        service: str,
        argv: Sequence[str],
        *,
        password: str | None = None,
        interactive: bool = False,
        profiles: Iterable[str] = (),
    ) -> CommandResult:
        """``compose exec`` in *service*.

        *password* is exported as ``REDISCLI_AUTH`` inside the container.
        Only the variable name is forwarded on the command line; its value
        travels in the environment of the compose process.
        Interactive execs get a TTY and are attached to the terminal.
        """
        args = [*self.base_args(profiles), "exec"]
        if not interactive:
            args.append("-T")
        extra_env = {}
        if password:
            args += ["-e", "REDISCLI_AUTH"]
            extra_env["REDISCLI_AUTH"] = password
        args += [service, *argv]
        logger.debug("compose.exec", service=service, argv0=argv[0] if argv else "")
        return self._run(args, capture=not interactive, env=extra_env)

    def exec_to_file(self, service: str, argv: Sequence[str], path: Path) -> CommandResult:
        args = [*self.base_args(), "exec", "-T", service, *argv]
        return self.runner.run_to_file(args, path, cwd=self.project_dir, env=self.env)

    def logs(
        self,
        service: str | None = None,
        *,
        tail: int | None = None,
        follow: bool = False,
        profiles: Iterable[str] = (),
    ) -> CommandResult:
        args = [*self.base_args(profiles), "logs"]
        if tail is not None:
            args += ["--tail", str(tail)]
        if follow:
            args.append("-f")
        if service:
            args.append(service)
        return self._run(args, capture=not follow)

    def down(
        self,
        profiles: Iterable[str] = (),
        *,
        volumes: bool = False,
        remove_orphans: bool = False,
    ) -> CommandResult:
        args = [*self.base_args(profiles), "down"]
        if volumes:
            args.append("-v")
        if remove_orphans:
            args.append("--remove-orphans")
        return self._run(args)


# ---------------------------------------------------------------------------
# Compose file generation
# ---------------------------------------------------------------------------


def _yaml_dumps(data: dict[str, Any]) -> str:
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)


def generate_compose(stack: StackSpec, project_name: str | None = None) -> str:
    """Render *stack* as a compose YAML descriptor.

    Parameters
    ----------
    stack
        Stack whose services are rendered (all profiles included).
    project_name
        Compose project name. Defaults to the stack name.

    Returns
    -------
    str
        YAML string with a header comment, ready to write.
    """
    network = f"{stack.name}-net"
    compose: dict[str, Any] = {
        "name": project_name or stack.name,
        "services": {},
        "networks": {network: {"driver": "bridge"}},
        "volumes": {},
    }
    by_name = {s.name: s for s in stack.services}

    for spec in stack.services:
        service: dict[str, Any] = {}
        if spec.build:
            service["build"] = {"context": ".", "dockerfile": "Dockerfile"}
        service["image"] = spec.image
        service["container_name"] = spec.name

        if spec.command:
            service["command"] = list(spec.command)

        ports = [f"{spec.port}:{spec.container_port}"]
        ports += [f"{port}:{port}" for port in spec.extra_ports.values()]
        service["ports"] = ports

        if stack.requires_env_file or spec.environment:
            if stack.requires_env_file:
                service["env_file"] = [stack.env_file]
            if spec.environment:
                service["environment"] = dict(spec.environment)

        if spec.healthcheck_cmd:
            service["healthcheck"] = {
                "test": ["CMD-SHELL", " ".join(spec.healthcheck_cmd)],
                "interval": "10s",
                "timeout": "5s",
                "retries": 5,
                "start_period": "30s",
            }

        if spec.depends_on:
            service["depends_on"] = {
                dep: {
                    "condition": "service_healthy"
                    if by_name[dep].healthcheck_cmd
                    else "service_started"
                }
                for dep in spec.depends_on
            }

        if spec.profiles:
            service["profiles"] = list(spec.profiles)

        for source, mount in spec.volumes.items():
            service.setdefault("volumes", []).append(f"{source}:{mount}")
            if not source.startswith((".", "/")):
                # Explicit names keep volumes addressable by backup helpers
                compose["volumes"][source] = {"name": source}

        service["networks"] = [network]
        service["restart"] = "unless-stopped"
        compose["services"][spec.name] = service

    if not compose["volumes"]:
        del compose["volumes"]

    probes = sorted({s.health.value for s in stack.services if s.health is not HealthProbe.NONE})
    header = (
        f"# Generated by stackpilot for stack {stack.name}\n"
        f"# Services: {', '.join(s.name for s in stack.services)}\n"
        f"# Profiles: {', '.join(stack.profiles) or 'none'}; probes: {', '.join(probes)}\n\n"
    )
    return header + _yaml_dumps(compose)


def write_compose_file(content: str, path: Path) -> Path:
    """Write compose YAML to *path*, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info("compose.written", path=str(path))
    return path
