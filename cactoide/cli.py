"""Typer CLI for Cactoide."""

from __future__ import annotations

import asyncio
import json

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from . import config
from .config import ConfigError, settings_as_dict, update_config_file
from .federation import fetch_all_federated_events
from .healthcheck import check_database_health
from .instances import load_instance_dashboard
from .scheduler import run_invite_purge
from .seed import seed_fake_data
from .storage import current_revision, head_revision, init_db, upgrade_database

app = typer.Typer(help="Cactoide command-line interface")
config_app = typer.Typer(help="Inspect and update cactoide.toml")
app.add_typer(config_app, name="config")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _exit_if_readonly(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure write access to {config.settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@app.command("runserver")
def runserver(
    host: str | None = typer.Option(None, "--host", help="Host to bind"),
    port: int | None = typer.Option(None, "--port", help="Port to bind"),
):
    """Start the web server."""
    settings = config.settings
    host = host or settings.app_host
    port = port or settings.app_port
    server_config = uvicorn.Config(
        "cactoide.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
        log_level=settings.log_level,
    )
    server = uvicorn.Server(server_config)
    typer.echo(f"Starting {settings.instance_name} on {host}:{port}")
    if settings.federation_enabled:
        typer.echo("Federation API enabled")
    server.run()


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _exit_if_readonly(exc, "upgrade")
        raise

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("check-db")
def check_db(
    retries: int | None = typer.Option(None, "--retries", min=1, help="Maximum attempts"),
) -> None:
    """Probe the database with retries and exponential backoff."""
    result = asyncio.run(check_database_health(max_retries=retries))
    if not result.success:
        typer.secho(
            f"Database unreachable after {result.attempts} attempts: {result.error}",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    typer.secho(
        f"Database reachable (attempts={result.attempts}, {result.duration * 1000:.0f} ms)",
        fg=typer.colors.GREEN,
    )
    revision = current_revision()
    head = head_revision()
    if revision != head:
        typer.echo(f"Schema at {revision or 'untracked'}, latest is {head}; run upgrade-db.")


@app.command("peers")
def peers() -> None:
    """List configured federation peers."""
    instances = config.settings.federation_instances
    if not instances:
        typer.echo("No federation instances configured.")
        return
    for peer in instances:
        label = f" ({peer.name})" if peer.name else ""
        typer.echo(f"{peer.base_url}{label}")


@app.command("federation-events")
def federation_events() -> None:
    """Fetch and print events from every configured peer as JSON."""
    events = asyncio.run(fetch_all_federated_events())
    typer.echo(
        json.dumps(
            [event.model_dump(mode="json", exclude_none=True) for event in events],
            indent=2,
        )
    )


@app.command("instances")
def instances() -> None:
    """Print the health of every configured peer."""
    rows = asyncio.run(load_instance_dashboard())
    if not rows:
        typer.echo("No federation instances configured.")
        return
    colors = {
        "healthy": typer.colors.GREEN,
        "unhealthy": typer.colors.RED,
        "unknown": typer.colors.YELLOW,
    }
    for row in rows:
        latency = f"{row.response_time:.0f} ms" if row.response_time is not None else "-"
        events = row.events if row.events is not None else "-"
        typer.secho(
            f"{row.url}\t{row.name or '-'}\tevents={events}\t{row.health_status}\t{latency}",
            fg=colors[row.health_status],
        )


@app.command("seed-data")
def seed_data(
    events: int | None = typer.Option(None, "--events", min=0, help="Number of events to create"),
    max_rsvps: int | None = typer.Option(
        None, "--max-rsvps", min=0, help="Maximum RSVPs to attach to each event"
    ),
    private_percent: int | None = typer.Option(
        None,
        "--private-percent",
        min=0,
        max=100,
        help="Percentage of events that are private or invite-only (0-100)",
    ),
):
    """Populate the database with fake events for testing."""
    settings = config.settings
    stats = seed_fake_data(
        event_count=settings.seed_events if events is None else events,
        max_rsvps_per_event=(
            settings.seed_rsvps_per_event if max_rsvps is None else max_rsvps
        ),
        private_percentage=(
            settings.seed_private_percent if private_percent is None else private_percent
        ),
    )
    typer.echo(f"Seed complete: {stats['events']} events, {stats['rsvps']} RSVPs created.")


@app.command("purge-invites")
def purge_invites() -> None:
    """Delete invite tokens whose event has already started."""
    init_db()
    removed = run_invite_purge()
    typer.echo(f"Removed {removed} expired invite tokens.")


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration."""
    typer.echo(json.dumps(settings_as_dict(config.settings), indent=2))


@config_app.command("set")
def config_set(key: str, value: str) -> None:
    """Persist KEY=VALUE to the config file and reload settings."""
    if key not in config.DEFAULTS:
        typer.secho(f"Unknown setting: {key}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        new_settings = update_config_file({key: value})
    except ConfigError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"{key} = {getattr(new_settings, key)!r} ({new_settings.config_path})")


if __name__ == "__main__":
    app()
