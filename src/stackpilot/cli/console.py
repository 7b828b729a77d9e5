"""
CLI output helpers: status lines, result tables and error lines.

Status lines carry an ``[INFO]``, ``[SUCCESS]``, ``[WARNING]`` or
``[ERROR]`` prefix. Errors go to stderr, everything else to stdout.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stackpilot.core.errors import StackPilotError
from stackpilot.deploy.results import DeploymentResult, ServiceStatus

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

_PREFIX = {
    "info": "[bold blue]\\[INFO][/]",
    "success": "[bold green]\\[SUCCESS][/]",
    "warning": "[bold yellow]\\[WARNING][/]",
    "error": "[bold red]\\[ERROR][/]",
}

_STATUS_STYLE = {
    "running": "green",
    "healthy": "green bold",
    "starting": "yellow",
    "pending": "dim",
    "unhealthy": "red",
    "exited": "red",
    "not_found": "dim",
}


class StatusPrinter:
    """Reporter callable used by the orchestrator and operations."""

    def __call__(self, level: str, message: str) -> None:
        if level == "detail":
            console.print(escape(message))
            return
        target = err_console if level == "error" else console
        target.print(f"{_PREFIX.get(level, _PREFIX['info'])} {escape(message)}")

    def info(self, message: str) -> None:
        self("info", message)

    def success(self, message: str) -> None:
        self("success", message)

    def warning(self, message: str) -> None:
        self("warning", message)

    def error(self, message: str) -> None:
        self("error", message)


printer = StatusPrinter()


def print_error(exc: StackPilotError) -> None:
    """One ``[ERROR]`` line; missing/malformed details follow as plain lines."""
    printer.error(exc.message)
    for var, reason in getattr(exc, "malformed", {}).items():
        err_console.print(f"  {escape(var)}: {escape(reason)}")


def print_services(statuses: list[ServiceStatus], title: str = "Service Status") -> None:
    table = Table(title=title)
    table.add_column("Service", style="bold")
    table.add_column("Role")
    table.add_column("Endpoint")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")

    for svc in statuses:
        style = _STATUS_STYLE.get(svc.status, "white")
        table.add_row(
            svc.name,
            svc.role,
            svc.endpoint,
            f"[{style}]{svc.status}[/{style}]",
            str(svc.attempts) if svc.attempts else "—",
        )
    console.print(table)


def print_deployment_result(result: DeploymentResult) -> None:
    """Pretty-print a DeploymentResult."""
    print_services(result.services)

    report = result.verification
    if report is not None and report.records:
        table = Table(title="Replication")
        table.add_column("Secondary", style="bold")
        table.add_column("Expected")
        table.add_column("Observed")
        table.add_column("Match")
        for record in report.records:
            table.add_row(
                record.service,
                record.expected,
                record.observed if record.observed is not None else "—",
                "[green]yes[/]" if record.match else "[red]no[/]",
            )
        console.print(table)

    if result.connection_info:
        console.print("\n[bold]Connection Information:[/]")
        for line in result.connection_info:
            console.print(f"  {escape(line)}")

    style = "green" if result.succeeded else "red"
    console.print(f"\n[bold {style}]{result.state.value}[/] — {result.summary}")
