"""Day-2 operations on a deployed stack.

Everything the deploy path does not cover: first-time setup with secret
generation, status, backups, a quick benchmark, attached logs and
shells, and stopping the stack.

Key Concepts:
    StackOperations: one object per invocation, bound to a config, a
        runner and a reporter (the same surface as the orchestrator).
    generate_secret: ``base64:N`` → URL-safe token from N random bytes,
        ``hex:N`` → 2N hex characters.
    Backups: ``backups/<YYYYmmdd_HHMMSS>/`` holding the recipe's dumps,
        single files copied out of named volumes and volume tarballs,
        made through a throwaway helper container.

Tags:
    operations, init, status, backup, benchmark, secrets
"""

from __future__ import annotations

import os
import secrets
import shlex
import shutil
import time
from collections.abc import Callable, Mapping
from datetime import datetime
from pathlib import Path

from stackpilot.core.envfile import write_env_file
from stackpilot.core.errors import BackupError, CommandError
from stackpilot.core.logging import get_logger
from stackpilot.deploy.compose import ComposeProject, generate_compose, map_compose_status, write_compose_file
from stackpilot.deploy.config import DeploymentConfig
from stackpilot.deploy.orchestrator import Reporter, teardown
from stackpilot.deploy.results import ServiceStatus
from stackpilot.deploy.runner import CommandRunner
from stackpilot.deploy.services import StackSpec

logger = get_logger(__name__)

INFO_LINES = 20


def generate_secret(kind: str) -> str:
    """Generate a secret from a ``<encoding>:<bytes>`` spec."""
    encoding, _, size = kind.partition(":")
    nbytes = int(size or 32)
    if encoding == "hex":
        return secrets.token_hex(nbytes)
    if encoding == "base64":
        return secrets.token_urlsafe(nbytes)
    raise ValueError(f"Unknown secret kind: {kind!r}")


def generated_environ(
    stack: StackSpec,
    environ: Mapping[str, str] | None = None,
    existing: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """*environ* plus freshly generated values for the stack's missing secrets.

    Secrets already set in *environ* or *existing* (a previous env file)
    are kept.
    """
    env = dict(os.environ if environ is None else environ)
    existing = existing or {}
    for key, kind in stack.secrets.items():
        if not env.get(key) and not existing.get(key):
            env[key] = generate_secret(kind)
    return env


class _NotConfigured(dict):
    def __missing__(self, key: str) -> str:
        return "Not configured"


class StackOperations:
    """Operations outside the deploy path for one stack."""

    def __init__(
        self,
        config: DeploymentConfig,
        runner: CommandRunner | None = None,
        *,
        reporter: Reporter | None = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.spec = config.stack_spec
        self.runner = runner or CommandRunner(secrets=config.secret_values())
        self.compose = ComposeProject.from_config(config, self.runner)
        self.notify = reporter or (lambda level, message: None)
        self.sleep = sleep
        self.now = now

    @property
    def password(self) -> str | None:
        auth_env = self.spec.primary.auth_env
        return (self.config.values.get(auth_env) or None) if auth_env else None

    # -- init -------------------------------------------------------------

    def init(self) -> dict[str, str]:
        """Create the env file, data directories and compose file.

        Returns the secrets generated for the operator (printed once).
        An existing env file is never overwritten.
        """
        project_dir = self.config.project_dir
        env_path = self.config.env_path
        generated: dict[str, str] = {}

        if env_path.exists():
            self.notify("warning", f"{self.spec.env_file} file already exists")
        else:
            generated = {key: generate_secret(kind) for key, kind in self.spec.secrets.items()}
            example = project_dir / self.spec.env_example
            if example.is_file():
                shutil.copyfile(example, env_path)
                env_path.chmod(0o600)
                self.notify("success", f"Created {self.spec.env_file} from {self.spec.env_example}")
                self.notify("warning", f"Please edit {self.spec.env_file} with your configuration")
            else:
                values = {key: generated.get(key, "") for key in self.spec.required_env}
                for key, value in generated.items():
                    values.setdefault(key, value)
                write_env_file(env_path, {f"{self.spec.title} Configuration": values})
                self.notify("success", f"Created {self.spec.env_file} with generated secrets")
                empty = [key for key, value in values.items() if not value]
                if empty:
                    self.notify("warning", f"Fill in: {', '.join(empty)}")

        for directory in self.spec.data_dirs:
            (project_dir / directory).mkdir(parents=True, exist_ok=True)
        if self.spec.data_dirs:
            self.notify("success", "Data directories created")

        if not self.config.compose_path.exists():
            write_compose_file(generate_compose(self.spec), self.config.compose_path)
            self.notify("success", f"Created {self.spec.compose_file}")

        for key, value in generated.items():
            self.notify("info", f"Generated {key}: {value}")
        logger.info("ops.init", stack=self.spec.name, generated=sorted(generated))
        return generated

    # -- status -----------------------------------------------------------

    def service_statuses(self) -> list[ServiceStatus]:
        entries = {
            entry.get("Service") or entry.get("Name"): entry
            for entry in self.compose.ps(self.spec.profiles)
        }
        statuses = []
        for spec in self.spec.services:
            entry = entries.get(spec.name)
            statuses.append(
                ServiceStatus(
                    name=spec.name,
                    role=spec.role.value,
                    endpoint=spec.endpoint,
                    status=map_compose_status(entry) if entry else "not_found",
                )
            )
        return statuses

    def status(self) -> list[ServiceStatus]:
        """Service table, health script, info script head and access hints."""
        statuses = self.service_statuses()
        primary = self.spec.primary.name
        running = any(s.name == primary and s.status in ("running", "healthy") for s in statuses)

        if running and self.spec.health_script:
            health = self.compose.exec(primary, self.spec.health_script, password=self.password)
            level = "success" if health.ok else "warning"
            self.notify(level, "Health check passed" if health.ok else "Health check failed")
            if health.stdout.strip():
                self.notify("detail", health.stdout.rstrip())

        if running and self.spec.info_script:
            info = self.compose.exec(primary, self.spec.info_script, password=self.password)
            if info.ok and info.stdout.strip():
                self.notify("detail", "\n".join(info.stdout.splitlines()[:INFO_LINES]))

        hints = _NotConfigured(self.config.values)
        for line in self.spec.access_info:
            self.notify("info", line.format_map(hints))
        return statuses

    # -- backup -----------------------------------------------------------

    def _helper(self, volume: str, backup_dir: Path, *command: str, read_only: bool = False):
        mount = f"{volume}:/data:ro" if read_only else f"{volume}:/data"
        recipe = self.spec.backup
        image = recipe.helper_image if recipe else "alpine"
        return self.runner.run(
            ["docker", "run", "--rm", "-v", mount, "-v", f"{backup_dir.resolve()}:/backup", image, *command]
        )

    def backup(self) -> Path:
        """Run the stack's backup recipe into a timestamped directory.

        Raises:
            BackupError: a dump or archive step failed.
        """
        recipe = self.spec.backup
        if recipe is None:
            raise BackupError(f"No backup recipe for stack {self.spec.name!r}")

        backup_dir = self.config.project_dir / "backups" / self.now().strftime("%Y%m%d_%H%M%S")
        backup_dir.mkdir(parents=True, exist_ok=True)
        self.notify("info", f"Creating backup in {backup_dir}...")

        for argv in recipe.pre_commands:
            result = self.compose.exec(recipe.service, argv, password=self.password)
            if not result.ok:
                raise BackupError(f"Backup step failed: {argv[-1]}").with_context(
                    service=recipe.service, exit_code=result.returncode
                )
        if recipe.settle_seconds:
            self.sleep(recipe.settle_seconds)

        for dump in recipe.dumps:
            target = backup_dir / dump.filename
            result = self.compose.exec_to_file(dump.service, dump.argv, target)
            if not result.ok:
                raise BackupError(f"Failed to dump {dump.filename}: {result.stderr.strip()}").with_context(
                    service=dump.service, exit_code=result.returncode
                )
            self.notify("success", f"Saved {dump.filename}")

        for volume, path in recipe.volume_files:
            result = self._helper(volume, backup_dir, "cp", f"/data/{path}", "/backup/")
            if result.ok:
                self.notify("success", f"Copied {path}")
            else:
                self.notify("warning", f"No {path} found in {volume}")

        for volume, archive in recipe.volume_archives:
            result = self._helper(
                volume, backup_dir, "tar", "czf", f"/backup/{archive}", "-C", "/data", ".", read_only=True
            )
            if not result.ok:
                raise BackupError(f"Failed to archive volume {volume}").with_context(exit_code=result.returncode)
            self.notify("success", f"Archived {volume} to {archive}")

        self.notify("success", f"Backup completed: {backup_dir}")
        logger.info("ops.backup", stack=self.spec.name, path=str(backup_dir))
        return backup_dir

    # -- test -------------------------------------------------------------

    def benchmark(self) -> str:
        """Ping the primary, then run the stack's benchmark.

        Raises:
            CommandError: the primary is not answering, or the benchmark failed.
        """
        if not self.spec.benchmark_cmd:
            raise CommandError(f"Stack {self.spec.name!r} has no benchmark")
        primary = self.spec.primary
        ping = self.compose.exec(primary.name, primary.ping_cmd, password=self.password)
        if not ping.ok or ping.stdout.strip() != primary.ping_expect:
            raise CommandError(f"{self.spec.title} is not responding")
        self.notify("success", f"{self.spec.title} connection: OK")

        argv = list(self.spec.benchmark_cmd)
        if self.password:
            # the shell inside the container expands the secret
            argv = ["sh", "-c", shlex.join(argv) + ' -a "$REDISCLI_AUTH"']
        self.notify("info", "Running benchmark...")
        result = self.compose.exec(primary.name, argv, password=self.password)
        if not result.ok:
            raise CommandError("Benchmark failed").with_context(exit_code=result.returncode)
        if result.stdout.strip():
            self.notify("detail", result.stdout.rstrip())
        return result.stdout

    # -- attached commands ------------------------------------------------

    def logs(self) -> int:
        return self.compose.logs(follow=True, profiles=self.spec.profiles).returncode

    def cli(self) -> int:
        if not self.spec.cli_cmd:
            raise CommandError(f"Stack {self.spec.name!r} has no CLI")
        return self.compose.exec(
            self.spec.primary.name, self.spec.cli_cmd, password=self.password, interactive=True
        ).returncode

    def shell(self) -> int:
        if not self.spec.shell_cmd:
            raise CommandError(f"Stack {self.spec.name!r} has no shell")
        return self.compose.exec(self.spec.primary.name, self.spec.shell_cmd, interactive=True).returncode

    # -- stop -------------------------------------------------------------

    def stop(self) -> None:
        """``compose down`` for every profile; volumes are kept."""
        result = self.compose.down(self.spec.profiles)
        if not result.ok:
            raise CommandError(f"Failed to stop {self.spec.title}").with_context(exit_code=result.returncode)
        self.notify("success", f"{self.spec.title} stopped")

    def cleanup(self) -> bool:
        ok = teardown(self.config, self.runner)
        if ok:
            self.notify("success", "Cleanup completed")
        else:
            self.notify("warning", "Cleanup finished with errors")
        return ok
