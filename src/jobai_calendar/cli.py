"""CLI for the JobAI calendar service."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
import uvicorn

from jobai_calendar.config import AppConfig, ConfigError, load_config
from jobai_calendar.core.logging import configure_logging
from jobai_calendar.core.metrics import init_metrics
from jobai_calendar.core.telemetry import init_telemetry
from jobai_calendar.db import Database

logger = logging.getLogger(__name__)

SERVICE_NAME = "jobai-calendar"


def _load(config_path: Path | None) -> AppConfig:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(2)
    log_root = Path(config.logging.log_root) if config.logging.log_root else None
    configure_logging(config.logging.level, config.logging.format, log_root)
    init_metrics(SERVICE_NAME)
    init_telemetry(SERVICE_NAME)
    return config


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to jobai.toml (defaults to $JOBAI_CALENDAR_CONFIG or ./jobai.toml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """JobAI calendar integration service."""
    ctx.obj = config_path


@cli.command()
@click.option("--host", default=None, help="Bind address (overrides [server].host)")
@click.option("--port", type=int, default=None, help="Port (overrides [server].port)")
@click.option("--skip-migrations", is_flag=True, help="Start without upgrading the schema")
@click.pass_obj
def serve(config_path: Path | None, host: str | None, port: int | None, skip_migrations: bool):
    """Run the HTTP API (and the scheduled sync when enabled)."""
    from jobai_calendar.api.app import create_app

    config = _load(config_path)
    if not skip_migrations:
        asyncio.run(_migrate(config))
    app = create_app(config)
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_config=None,
    )


@cli.command()
@click.pass_obj
def migrate(config_path: Path | None) -> None:
    """Create the database if needed and upgrade it to the latest schema."""
    config = _load(config_path)
    asyncio.run(_migrate(config))
    click.echo("Migrations applied")


@cli.command()
@click.option("--user-id", required=True, help="User whose calendars should be synced")
@click.pass_obj
def sync(config_path: Path | None, user_id: str) -> None:
    """Sync all connected calendars for one user and print the result as JSON."""
    config = _load(config_path)
    status = asyncio.run(_sync_user(config, user_id))
    click.echo(json.dumps(status.model_dump(mode="json", by_alias=True), indent=2))
    if not status.success:
        sys.exit(1)


@cli.command("sync-due")
@click.pass_obj
def sync_due(config_path: Path | None) -> None:
    """Sync every user whose calendars are stale, once, then exit."""
    config = _load(config_path)
    count = asyncio.run(_sync_due(config))
    click.echo(f"Synced {count} user(s)")


async def _migrate(config: AppConfig) -> None:
    from jobai_calendar.migrations import run_migrations

    db = Database.from_env(config.database_name)
    await db.provision()
    await run_migrations(db.url)


async def _sync_user(config: AppConfig, user_id: str):
    from jobai_calendar.api.deps import open_runtime

    runtime = await open_runtime(config, start_scheduler=False)
    try:
        return await runtime.service.sync_all_calendars(user_id)
    finally:
        await runtime.close()


async def _sync_due(config: AppConfig) -> int:
    from jobai_calendar.api.deps import open_runtime

    runtime = await open_runtime(config, start_scheduler=False)
    try:
        return await runtime.service.scheduled_sync()
    finally:
        await runtime.close()
