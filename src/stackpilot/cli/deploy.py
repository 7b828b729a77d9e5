"""
CLI: ``stackpilot redis|discourse|replication``: stack commands.

Each stack takes a single command word, so an unknown word is reported
with the stack's usage on stderr and exit code 1.

Usage::

    stackpilot redis init               # .env, data dirs, compose file
    stackpilot redis deploy             # basic deployment
    stackpilot redis deploy-ha          # + Sentinel
    stackpilot redis status

    stackpilot discourse deploy
    stackpilot discourse backup

    stackpilot replication sentinel     # master + 2 replicas + 3 sentinels
    stackpilot replication cleanup

    stackpilot stacks                   # list stacks and services
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager

import typer
from rich.table import Table

from stackpilot.cli.console import console, err_console, print_deployment_result, print_error, print_services, printer
from stackpilot.core.errors import StackPilotError
from stackpilot.core.settings import StackPilotSettings
from stackpilot.deploy.config import MODE_ALIASES, DeploymentConfig, DeploymentMode, resolve_environment
from stackpilot.deploy.operations import StackOperations, generated_environ
from stackpilot.deploy.orchestrator import DeploymentOrchestrator, prepare_deployment, preflight, teardown
from stackpilot.deploy.runner import CommandRunner
from stackpilot.deploy.services import DISCOURSE, REDIS, REDIS_REPLICATION, STACKS, StackSpec

REDIS_COMMANDS: dict[str, str] = {
    "init": "Initialize configuration and directories",
    "validate": "Validate configuration",
    "build": "Build Docker image",
    "deploy": "Deploy basic Redis",
    "deploy-monitoring": "Deploy Redis with monitoring",
    "deploy-ha": "Deploy Redis with Sentinel (HA)",
    "status": "Show service status",
    "backup": "Create backup",
    "test": "Run connectivity and performance tests",
    "logs": "Show logs",
    "cli": "Connect to Redis CLI",
    "stop": "Stop all services",
    "help": "Show this help message",
}

DISCOURSE_COMMANDS: dict[str, str] = {
    "init": "Initialize configuration and directories",
    "validate": "Validate configuration",
    "build": "Build Docker image",
    "deploy": "Deploy Discourse",
    "status": "Show service status",
    "backup": "Create backup",
    "logs": "Show logs",
    "shell": "Open shell in Discourse container",
    "stop": "Stop all services",
    "help": "Show this help message",
}

REPLICATION_MODES: dict[str, str] = {
    "basic": "Master + 2 replicas",
    "sentinel": "Master + 2 replicas + 3 Sentinels",
    "monitoring": "Master + 2 replicas + Prometheus exporter",
    "full": "Everything, including HAProxy",
    "cleanup": "Remove all services, volumes and the generated env file",
}


def _settings(ctx: typer.Context) -> StackPilotSettings:
    if isinstance(ctx.obj, StackPilotSettings):
        return ctx.obj
    return StackPilotSettings()


def _usage(stack: str, commands: dict[str, str]) -> str:
    lines = [f"Usage: stackpilot {stack} {{{'|'.join(commands)}}}", "", "Commands:"]
    width = max(len(name) for name in commands)
    lines += [f"  {name.ljust(width)}  {description}" for name, description in commands.items()]
    return "\n".join(lines)


def _reject(stack: str, word: str, commands: dict[str, str]) -> None:
    printer.error(f"Unknown command: {word}")
    err_console.print(_usage(stack, commands), markup=False)
    raise typer.Exit(code=1)


@contextmanager
def _guard() -> Iterator[None]:
    """Map expected failures and Ctrl-C to one [ERROR] line and exit 1."""
    try:
        yield
    except StackPilotError as exc:
        print_error(exc)
        raise typer.Exit(code=1) from exc
    except OSError as exc:
        printer.error(f"{exc.strerror or exc}: {exc.filename}" if exc.filename else str(exc))
        raise typer.Exit(code=1) from exc
    except KeyboardInterrupt as exc:
        printer.error("Deployment interrupted")
        raise typer.Exit(code=1) from exc


def _deploy(settings: StackPilotSettings, stack: StackSpec, mode: DeploymentMode, environ=None) -> None:
    config, plan = prepare_deployment(
        stack,
        mode,
        project_dir=settings.project_dir,
        environ=environ,
        compose_command=settings.compose_argv(),
    )
    runner = CommandRunner(timeout=settings.command_timeout, secrets=config.secret_values())
    preflight(runner, config.compose_command)

    printer.info(f"Deploying {stack.title} ({mode.value} mode)...")
    orchestrator = DeploymentOrchestrator(config, plan, runner=runner, reporter=printer)
    result = orchestrator.run()
    print_deployment_result(result)
    for warning in result.warnings:
        printer.warning(warning)
    if result.exit_code:
        printer.error(result.error or "Deployment failed")
        raise typer.Exit(code=result.exit_code)


def _operations(settings: StackPilotSettings, stack: StackSpec) -> StackOperations:
    values = resolve_environment(stack, settings.project_dir, require_file=False)
    config = DeploymentConfig.for_stack(
        stack,
        project_dir=settings.project_dir,
        values=values,
        compose_command=settings.compose_argv(),
    )
    runner = CommandRunner(timeout=settings.command_timeout, secrets=config.secret_values())
    return StackOperations(config, runner, reporter=printer)


def _run_stack_command(ctx: typer.Context, stack: StackSpec, command: str, commands: dict[str, str]) -> None:
    cli_name = stack.name
    if command == "help":
        console.print(_usage(cli_name, commands), markup=False)
        return
    if command not in commands:
        _reject(cli_name, command, commands)

    settings = _settings(ctx)
    with _guard():
        if command in MODE_ALIASES:
            _deploy(settings, stack, MODE_ALIASES[command])
            return

        if command == "validate":
            config, _ = prepare_deployment(stack, project_dir=settings.project_dir)
            for warning in config.warnings:
                printer.warning(warning)
            printer.success("Configuration validated")
            return

        if command == "build":
            config, plan = prepare_deployment(
                stack, project_dir=settings.project_dir, compose_command=settings.compose_argv()
            )
            runner = CommandRunner(timeout=settings.command_timeout, secrets=config.secret_values())
            preflight(runner, config.compose_command)
            DeploymentOrchestrator(config, plan, runner=runner, reporter=printer).build_artifact()
            return

        ops = _operations(settings, stack)
        handlers: dict[str, Callable[[], object]] = {
            "init": ops.init,
            "backup": ops.backup,
            "test": ops.benchmark,
            "stop": ops.stop,
        }
        if command == "status":
            ops.compose.ps_table(stack.profiles)
            print_services(ops.status())
        elif command in ("logs", "cli", "shell"):
            code = getattr(ops, command)()
            if code:
                raise typer.Exit(code=code)
        else:
            handlers[command]()


def redis(
    ctx: typer.Context,
    command: str = typer.Argument("help", help="Command to run (see 'help')."),
) -> None:
    """Manage the single-instance Redis stack."""
    _run_stack_command(ctx, REDIS, command, REDIS_COMMANDS)


def discourse(
    ctx: typer.Context,
    command: str = typer.Argument("help", help="Command to run (see 'help')."),
) -> None:
    """Manage the Discourse stack."""
    _run_stack_command(ctx, DISCOURSE, command, DISCOURSE_COMMANDS)


def replication(
    ctx: typer.Context,
    mode: str = typer.Argument(..., help="basic, sentinel, monitoring, full or cleanup."),
) -> None:
    """Deploy Redis master/replica replication, or clean it up."""
    if mode not in REPLICATION_MODES:
        _reject("replication", mode, REPLICATION_MODES)

    settings = _settings(ctx)
    with _guard():
        if mode == "cleanup":
            config = DeploymentConfig.for_stack(
                REDIS_REPLICATION,
                project_dir=settings.project_dir,
                compose_command=settings.compose_argv(),
            )
            runner = CommandRunner(timeout=settings.command_timeout)
            printer.info("Cleaning up replication deployment...")
            if teardown(config, runner):
                printer.success("Cleanup completed")
            else:
                printer.warning("Cleanup finished with errors")
            return

        existing = resolve_environment(REDIS_REPLICATION, settings.project_dir, require_file=False, environ={})
        env = generated_environ(REDIS_REPLICATION, existing=existing)
        _deploy(settings, REDIS_REPLICATION, DeploymentMode(mode), environ=env)


def stacks() -> None:
    """List available stacks and their services."""
    table = Table(title="Available Stacks")
    table.add_column("Stack", style="bold cyan")
    table.add_column("Service")
    table.add_column("Role")
    table.add_column("Port")
    table.add_column("Profiles")

    for name, spec in STACKS.items():
        for index, service in enumerate(spec.services):
            table.add_row(
                name if index == 0 else "",
                service.name,
                service.role.value,
                str(service.port),
                ", ".join(service.profiles) or "—",
            )
    console.print(table)
