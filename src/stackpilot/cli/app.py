"""
Root Typer application for the stackpilot CLI.
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

from stackpilot import __version__
from stackpilot.cli.deploy import discourse, redis, replication, stacks
from stackpilot.core.logging import configure_logging
from stackpilot.core.settings import get_settings

app = Typer(
    name="stackpilot",
    help="stackpilot: health-gated deployments for containerized stacks.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"stackpilot {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr."),
    project_dir: Path | None = typer.Option(
        None, "--project-dir", "-C", help="Directory holding the stack's compose and env files."
    ),
) -> None:
    """stackpilot CLI: build, deploy, verify and operate Redis and Discourse stacks."""
    settings = get_settings(project_dir=project_dir)
    configure_logging(
        level="DEBUG" if verbose else settings.log_level.upper(),
        format=settings.log_format,
        force=True,
    )
    ctx.obj = settings


# ── Stack commands ───────────────────────────────────────────────────────

app.command("redis", help="Manage the single-instance Redis stack.")(redis)
app.command("discourse", help="Manage the Discourse stack.")(discourse)
app.command("replication", help="Deploy Redis replication (basic|sentinel|monitoring|full|cleanup).")(replication)
app.command("stacks", help="List available stacks and services.")(stacks)
