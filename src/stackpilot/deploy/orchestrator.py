"""Deployment orchestrator.

Brings every service of a ``DeploymentPlan`` to a verified-healthy
state, or fails fast with one diagnosable error.

Key Concepts:
    prepare_deployment: resolve env → validate → build plan. Pure; a
        ``ConfigError`` here means nothing was executed.
    DeploymentOrchestrator.run: build → activate → await health →
        verify replication → report, driving the ``DeploymentResult``
        state machine. Returns the result; fatal errors end in FAILED.
    teardown: ``compose down -v --remove-orphans`` over every profile,
        then removal of the plan-scoped env file. Idempotent.
    preflight: docker and the compose CLI must be available.

Architecture Decisions:
    - Every side effect goes through the injected ``CommandRunner``;
      every wait goes through the injected ``sleep``.
    - Activation is sequential in plan order. A failed activation leaves
      already-started services running; callers run teardown.
    - Replication mismatches are warnings, never failures.

Related Modules:
    - :mod:`stackpilot.deploy.plan`: the ordered services
    - :mod:`stackpilot.deploy.health`: bounded polling
    - :mod:`stackpilot.deploy.replication`: probe write/read
    - :mod:`stackpilot.cli.deploy`: renders events and results

Tags:
    orchestrator, deployment, state-machine, health, replication
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from stackpilot.core.envfile import write_env_file
from stackpilot.core.errors import (
    ActivationError,
    BuildError,
    ConfigError,
    HealthTimeoutError,
    PreflightError,
    StackPilotError,
    VerificationMismatch,
)
from stackpilot.core.logging import get_logger
from stackpilot.deploy.compose import ComposeProject
from stackpilot.deploy.config import (
    DeploymentConfig,
    DeploymentMode,
    resolve_environment,
    validate_configuration,
)
from stackpilot.deploy.health import HealthPoll, await_healthy, probe_for
from stackpilot.deploy.plan import DeploymentPlan, build_plan
from stackpilot.deploy.replication import VerificationReport, verify_replication
from stackpilot.deploy.results import DeploymentResult, DeploymentState, ServiceStatus
from stackpilot.deploy.runner import REDACTED, CommandRunner
from stackpilot.deploy.services import HealthProbe, ServiceSpec, StackSpec, get_stack

logger = get_logger(__name__)

# (level, message); level is info, success, warning, error or detail
Reporter = Callable[[str, str], None]


def _silent(level: str, message: str) -> None:
    pass


def prepare_deployment(
    stack: StackSpec | str,
    mode: DeploymentMode | str = DeploymentMode.BASIC,
    *,
    project_dir: Path,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> tuple[DeploymentConfig, DeploymentPlan]:
    """Resolve, validate and plan. Executes no external command.

    Raises:
        ConfigError: missing env file, missing/malformed variables, or an
            invalid service graph.
    """
    spec = get_stack(stack) if isinstance(stack, str) else stack
    mode = DeploymentMode(mode)
    env = resolve_environment(spec, project_dir, mode, environ)
    config = validate_configuration(env, spec, mode, project_dir=project_dir, **overrides)
    plan = build_plan(spec, mode)
    return config, plan


def preflight(runner: CommandRunner, compose_command: list[str]) -> None:
    """Check that docker and the compose CLI are usable.

    Raises:
        PreflightError: naming the missing tools.
    """
    missing = []
    executable = compose_command[0]
    if runner.which(executable) is None:
        missing.append(executable)
    elif not runner.run([*compose_command, "version"]).ok:
        missing.append(" ".join(compose_command))
    if missing:
        raise PreflightError(
            f"Required tools not available: {', '.join(missing)}",
            tools=missing,
        )
    logger.debug("preflight.ok", compose=" ".join(compose_command))


def teardown(config: DeploymentConfig, runner: CommandRunner) -> bool:
    """Stop and remove every service of the stack, volumes included.

    Safe to call repeatedly: absent containers and files are not errors.
    Returns whether the compose command succeeded.
    """
    spec = config.stack_spec
    compose = ComposeProject.from_config(config, runner)
    result = compose.down(spec.profiles, volumes=True, remove_orphans=True)
    if not result.ok:
        logger.warning("teardown.down_failed", stack=spec.name, exit_code=result.returncode)
    if not spec.requires_env_file:
        config.env_path.unlink(missing_ok=True)
    logger.info("teardown.complete", stack=spec.name, ok=result.ok)
    return result.ok


class DeploymentOrchestrator:
    """Runs one deployment plan.

    Parameters
    ----------
    config
        Validated configuration.
    plan
        Ordered services to activate.
    runner
        External command boundary.
    sleep
        Called for every poll interval and the propagation delay.
    reporter
        Receives operator-facing progress lines.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        plan: DeploymentPlan,
        *,
        runner: CommandRunner | None = None,
        sleep: Callable[[float], None] = time.sleep,
        reporter: Reporter | None = None,
    ) -> None:
        self.config = config
        self.plan = plan
        self.runner = runner or CommandRunner(secrets=config.secret_values())
        self.sleep = sleep
        self.notify = reporter or _silent
        self.compose = ComposeProject.from_config(config, self.runner)
        self.result = DeploymentResult(
            run_id=config.run_id,
            stack=config.stack,
            mode=config.mode.value,
            services=[
                ServiceStatus(name=s.name, role=s.role.value, endpoint=s.endpoint)
                for s in plan.services
            ],
        )
        self._log = logger.bind(stack=config.stack, run_id=config.run_id)

    @property
    def password(self) -> str | None:
        auth_env = self.plan.primary.auth_env
        return self.config.values.get(auth_env) if auth_env else None

    # -- driver -----------------------------------------------------------

    def run(self) -> DeploymentResult:
        """Execute the plan. Fatal errors end in FAILED, never propagate."""
        result = self.result
        self._log.info("deploy.start", mode=self.config.mode.value, services=list(self.plan.service_names))
        try:
            result.transition(DeploymentState.VALIDATED)
            for warning in self.config.warnings:
                result.warnings.append(warning)
                self.notify("warning", warning)

            self.build_artifact()
            result.transition(DeploymentState.BUILT)

            result.transition(DeploymentState.ACTIVATING)
            self.activate()

            result.transition(DeploymentState.AWAITING_HEALTH)
            self.await_all_healthy()

            result.transition(DeploymentState.VERIFYING)
            self.verify()

            result.transition(DeploymentState.REPORTED)
            self.report()

            result.transition(DeploymentState.DONE)
            result.mark_complete()
            self._log.info("deploy.done", duration=result.duration_seconds)
        except StackPilotError as exc:
            self._log.error("deploy.failed", state=result.state.value, **exc.to_dict())
            self._diagnose(exc)
            result.fail(exc)
        except OSError as exc:
            self._log.error("deploy.failed", state=result.state.value, error=str(exc))
            result.fail(exc)
        except KeyboardInterrupt as exc:
            result.fail(exc)
            raise
        return result

    # -- steps ------------------------------------------------------------

    def _vcs_ref(self) -> str:
        git = self.runner.run(["git", "rev-parse", "--short", "HEAD"], cwd=self.config.project_dir)
        return git.stdout.strip() if git.ok and git.stdout.strip() else "unknown"

    def build_artifact(self) -> str | None:
        """Build the stack's image with BUILD_DATE and VCS_REF build args.

        Raises:
            BuildError: the builder exited non-zero.
        """
        spec = self.config.stack_spec
        build_args = {
            "BUILD_DATE": self.config.build_date or datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "VCS_REF": self.config.vcs_ref or self._vcs_ref(),
        }
        self.result.build_args = build_args

        if not spec.requires_env_file:
            self.write_plan_env(build_args)

        if spec.build_service is None:
            return None

        self.notify("info", f"Building {spec.title} image...")
        built = self.compose.build(spec.build_service, build_args)
        if not built.ok:
            detail = built.stderr.strip().splitlines()[-1:] or [f"exit {built.returncode}"]
            raise BuildError(f"Failed to build {spec.title} image: {detail[0]}").with_context(
                stack=spec.name, service=spec.build_service, step="build", exit_code=built.returncode
            )
        image = spec.service(spec.build_service).image
        self.result.image = image
        self.notify("success", f"Image built successfully: {image}")
        return image

    def write_plan_env(self, build_args: Mapping[str, str]) -> Path:
        """Write the plan-scoped env file (0600) for stacks that generate one.

        Raises:
            ConfigError: the file could not be written.
        """
        spec = self.config.stack_spec
        values = self.config.values
        generated = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")

        sections: dict[str, dict[str, str]] = {
            f"{spec.title} Configuration - Generated {generated}": {
                key: values.get(key, "") for key in spec.required_env
            },
        }
        for title, defaults in spec.env_defaults.items():
            sections[title] = {key: values.get(key, default) for key, default in defaults.items()}
        for profile in sorted(self.plan.profiles):
            defaults = spec.profile_env.get(profile)
            if defaults:
                sections[f"{profile.capitalize()} Configuration"] = {
                    key: values.get(key, default) for key, default in defaults.items()
                }
        sections["Build Metadata"] = dict(build_args)

        try:
            path = write_env_file(self.config.env_path, sections)
        except OSError as exc:
            reason = exc.strerror or str(exc)
            raise ConfigError(
                f"Cannot write {self.config.env_path.name}: {reason}",
                malformed={self.config.env_path.name: reason},
                cause=exc,
            ) from exc
        self._log.debug("deploy.env_written", path=str(path))
        return path

    def activate(self) -> list[str]:
        """Start every service in plan order, one ``up -d`` each.

        Raises:
            ActivationError: on the first service that fails to start.
        """
        started: list[str] = []
        for spec in self.plan.services:
            self.notify("info", f"Starting {spec.name}...")
            up = self.compose.up(spec.name, self.plan.profiles_for(spec))
            status = self.result.service(spec.name)
            if not up.ok:
                if status is not None:
                    status.status = "not_found"
                    status.error = up.stderr.strip() or f"exit {up.returncode}"
                raise ActivationError(
                    f"Failed to start {spec.name}",
                    service=spec.name,
                    started=started,
                ).with_context(stack=self.config.stack, step="activate", exit_code=up.returncode)
            if status is not None:
                status.status = "starting"
            started.append(spec.name)
            self._log.debug("deploy.activated", service=spec.name)
        return started

    def await_healthy(self, spec: ServiceSpec) -> HealthPoll:
        """Poll one service until healthy.

        Raises:
            HealthTimeoutError: after the log tail has been dumped once.
        """
        status = self.result.service(spec.name)
        self.notify("info", f"Waiting for {spec.name} to be healthy...")
        predicate = probe_for(
            self.compose,
            spec,
            profiles=self.plan.profiles_for(spec),
            password=self.password if spec.auth_env else None,
        )
        try:
            poll = await_healthy(
                spec.name,
                predicate,
                self.config.max_attempts,
                self.config.interval_seconds,
                sleep=self.sleep,
                on_timeout=self._dump_logs,
            )
        except HealthTimeoutError as exc:
            if status is not None:
                status.status = "unhealthy"
                status.attempts = exc.attempts
                status.error = f"last state: {exc.last_state}"
            exc.with_context(stack=self.config.stack, run_id=self.config.run_id, step="await_health")
            raise
        if status is not None:
            status.status = "healthy" if spec.health in (HealthProbe.COMPOSE, HealthProbe.PING) else "running"
            status.attempts = poll.attempts
        self.notify("success", f"{spec.name} is healthy")
        return poll

    def await_all_healthy(self) -> None:
        for spec in self.plan.services:
            if spec.health is HealthProbe.NONE:
                continue
            self.await_healthy(spec)

    def verify(self) -> VerificationReport:
        """Check replication; mismatches are recorded as warnings."""
        primary = self.plan.primary
        secondaries = self.plan.secondaries
        if not secondaries:
            report = VerificationReport(primary=primary.name, probe_key=self.config.probe_key)
            self.result.verification = report
            return report

        self.notify("info", "Testing replication...")
        report = verify_replication(
            self.compose,
            primary,
            secondaries,
            probe_key=self.config.probe_key,
            probe_value=self.config.probe_value,
            delay=self.config.propagation_delay,
            password=self.password,
            sleep=self.sleep,
        )
        self.result.verification = report
        try:
            report.check()
        except VerificationMismatch as exc:
            self.result.warnings.append(exc.message)
            self.notify("warning", exc.message)
            self._log.warning("deploy.verification_mismatch", services=exc.services)
        else:
            for record in report.records:
                self.notify("success", f"Replication working on {record.service}")
        return report

    def connection_info(self) -> list[str]:
        """Endpoint lines for the plan, passwords masked."""
        lines = []
        for spec in self.plan.services:
            auth = f":{REDACTED}@" if spec.auth_env and self.config.values.get(spec.auth_env) else ""
            label = spec.label or spec.name
            lines.append(f"{label}: {spec.url_scheme}://{auth}{spec.endpoint}{spec.url_path}")
            for extra_label, port in spec.extra_ports.items():
                lines.append(f"{extra_label}: localhost:{port}")
        return lines

    def report(self) -> None:
        self.result.connection_info = self.connection_info()
        self.notify("success", f"{self.config.stack_spec.title} deployment completed successfully!")

    # -- diagnostics ------------------------------------------------------

    def _dump_logs(self, poll: HealthPoll) -> None:
        self.notify("warning", f"{poll.service} failed to become healthy. Last {self.config.log_tail} log lines:")
        logs = self.compose.logs(poll.service, tail=self.config.log_tail)
        text = logs.stdout.rstrip() or logs.stderr.rstrip()
        if text:
            self.notify("detail", text)

    def _diagnose(self, exc: StackPilotError) -> None:
        """Best-effort log tail for failures that did not dump one already."""
        if isinstance(exc, ActivationError):
            logs = self.compose.logs(exc.service, tail=self.config.log_tail)
            if logs.ok and logs.stdout.strip():
                self.notify("detail", logs.stdout.rstrip())
            if exc.started:
                self.notify(
                    "warning",
                    f"Services left running: {', '.join(exc.started)}. Run teardown to remove them.",
                )

    def teardown(self) -> bool:
        return teardown(self.config, self.runner)
