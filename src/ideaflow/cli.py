"""CLI: init, status, submit, approve, reject, pipeline, history, restore, token, serve."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ideaflow.auth.jwt import TokenExpiredError, TokenInvalidError, create_token, verify_token
from ideaflow.auth.permissions import VALID_ROLES, Actor
from ideaflow.config import Config
from ideaflow.core.ideas import IdeaService
from ideaflow.core.lineage import VersionLineageManager
from ideaflow.core.pipeline import PipelineAggregator
from ideaflow.core.transitions import IdeaTransitionService
from ideaflow.models.idea import PIPELINE_STATUSES
from ideaflow.models.result import ServiceResult
from ideaflow.storage.sqlite_store import SQLiteStore

console = Console()

home_option = click.option(
    "--home",
    type=click.Path(file_okay=False),
    default=None,
    help="ideaflow home directory (default: $IDEAFLOW_HOME or ~/.ideaflow)",
)
token_option = click.option("--token", required=True, help="JWT token for authentication")


def _config(home: str | None) -> Config:
    config = Config.load(Path(home).expanduser().resolve() if home else None)
    logging.getLogger().setLevel(config.log_level.upper())
    return config


def _require_db(config: Config) -> None:
    if not config.db_path.exists():
        click.echo(f"Error: No database at {config.db_path}. Run 'ideaflow init' first.", err=True)
        sys.exit(1)


def _actor(config: Config, token: str) -> Actor:
    try:
        return verify_token(token, config.jwt_secret)
    except (TokenExpiredError, TokenInvalidError) as e:
        click.echo(f"Authentication failed: {e}", err=True)
        sys.exit(1)


def _run(config: Config, work: Callable[[SQLiteStore], Awaitable[Any]]) -> Any:
    """Open the store, run ``work`` against it, and close it again."""

    async def _inner() -> Any:
        store = SQLiteStore(config.db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            return await work(store)
        finally:
            await store.close()

    return asyncio.run(_inner())


def _exit_on_error(result: ServiceResult) -> None:
    if not result.ok:
        click.echo(f"Error ({result.error.kind}): {result.error.message}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(package_name="ideaflow")
def main() -> None:
    """ideaflow: idea triage and prototype lineage."""
    # The level comes from the selected home's config, applied in _config
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@main.command()
@home_option
def init(home: str | None) -> None:
    """Initialize the ideaflow home directory and database."""
    config = _config(home)

    async def _init() -> None:
        store = SQLiteStore(config.db_path, wal_mode=config.wal_mode)
        await store.initialize()
        await store.close()
        config.save()

    asyncio.run(_init())
    click.echo(f"Initialized ideaflow at {config.home_path}")
    click.echo(f"Database: {config.db_path}")


@main.command()
@home_option
def status(home: str | None) -> None:
    """Show database statistics."""
    config = _config(home)
    _require_db(config)
    stats = _run(config, lambda store: store.get_stats())
    click.echo(json.dumps(stats, indent=2))


@main.command()
@click.argument("user_id")
@click.option("--role", type=click.Choice(sorted(VALID_ROLES)), default="user")
@click.option("--expires", "exp_minutes", default=60, help="Lifetime in minutes")
@home_option
def token(user_id: str, role: str, exp_minutes: int, home: str | None) -> None:
    """Issue a JWT for USER_ID."""
    config = _config(home)
    click.echo(create_token(user_id, role, config.jwt_secret, exp_minutes=exp_minutes))


@main.command()
@click.option("--title", required=True)
@click.option("--problem", required=True)
@click.option("--solution", required=True)
@click.option("--impact", required=True)
@token_option
@home_option
def submit(title: str, problem: str, solution: str, impact: str, token: str, home: str | None) -> None:
    """Submit a new idea."""
    config = _config(home)
    _require_db(config)
    actor = _actor(config, token)

    result = _run(
        config,
        lambda store: IdeaService(store).submit(
            actor, title=title, problem=problem, solution=solution, impact=impact
        ),
    )
    _exit_on_error(result)
    idea = result.data
    console.print(
        Panel(
            f"[green]✓[/green] Submitted: {idea.title}\nID: {idea.id}\nStatus: {idea.status}",
            title="Idea Submitted",
        )
    )


@main.command()
@click.argument("idea_id")
@token_option
@home_option
def approve(idea_id: str, token: str, home: str | None) -> None:
    """Approve a submitted idea (admin)."""
    config = _config(home)
    _require_db(config)
    actor = _actor(config, token)

    result = _run(config, lambda store: IdeaTransitionService(store, config).approve(idea_id, actor))
    _exit_on_error(result)
    console.print(f"[green]✓[/green] Approved {result.data.title} ({idea_id})")


@main.command()
@click.argument("idea_id")
@click.option("--feedback", required=True, help="Why the idea was rejected (20-500 chars)")
@token_option
@home_option
def reject(idea_id: str, feedback: str, token: str, home: str | None) -> None:
    """Reject a submitted idea with feedback (admin)."""
    config = _config(home)
    _require_db(config)
    actor = _actor(config, token)

    result = _run(
        config,
        lambda store: IdeaTransitionService(store, config).reject(idea_id, feedback, actor),
    )
    _exit_on_error(result)
    console.print(f"[yellow]✗[/yellow] Rejected {result.data.title} ({idea_id})")


@main.command()
@token_option
@home_option
def pipeline(token: str, home: str | None) -> None:
    """Show the idea pipeline (admin)."""
    config = _config(home)
    _require_db(config)
    actor = _actor(config, token)
    if not actor.is_admin:
        click.echo("Error: admin role required", err=True)
        sys.exit(1)

    result = _run(config, lambda store: PipelineAggregator(store, config).pipeline())
    _exit_on_error(result)

    table = Table(title="Idea Pipeline")
    table.add_column("Stage")
    table.add_column("Title")
    table.add_column("Days in stage", justify="right")
    table.add_column("ID", style="dim")
    for stage in PIPELINE_STATUSES:
        for entry in result.data.bucket(stage):
            table.add_row(stage, entry.idea.title, str(entry.days_in_stage), entry.idea.id)
    console.print(table)


@main.command()
@click.argument("prd_id")
@home_option
def history(prd_id: str, home: str | None) -> None:
    """Show the prototype version lineage of a PRD."""
    config = _config(home)
    _require_db(config)

    result = _run(config, lambda store: VersionLineageManager(store).get_version_history(prd_id))
    _exit_on_error(result)
    if not result.data:
        click.echo(f"No prototype versions for {prd_id}")
        return

    table = Table(title=f"Versions of {prd_id}")
    table.add_column("Version", justify="right")
    table.add_column("Status")
    table.add_column("Prompt")
    table.add_column("Created")
    table.add_column("ID", style="dim")
    for proto in result.data:
        table.add_row(
            f"v{proto.version}",
            proto.status,
            proto.refinement_prompt or "",
            proto.created_at,
            proto.id,
        )
    console.print(table)


@main.command()
@click.argument("prototype_id")
@token_option
@home_option
def restore(prototype_id: str, token: str, home: str | None) -> None:
    """Restore a ready prototype version as the newest version."""
    config = _config(home)
    _require_db(config)
    actor = _actor(config, token)

    result = _run(config, lambda store: VersionLineageManager(store).restore(prototype_id, actor))
    _exit_on_error(result)
    proto = result.data
    console.print(
        Panel(
            f"[green]✓[/green] {proto.refinement_prompt}\nNew version: v{proto.version}\nID: {proto.id}",
            title="Version Restored",
        )
    )


@main.command()
@home_option
@click.option("--transport", type=click.Choice(["stdio"]), default="stdio")
def serve(home: str | None, transport: str) -> None:
    """Start the MCP server."""
    config = _config(home)
    _require_db(config)

    from ideaflow.server import create_server

    server = create_server(str(config.db_path), config)
    server.run(transport=transport)  # type: ignore[arg-type]
