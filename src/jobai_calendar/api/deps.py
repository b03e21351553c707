"""Service wiring and FastAPI dependency functions for the calendar API.

Provides:
- ``CalendarRuntime``: the long-lived objects one process needs (database
  pool, event store, shared HTTP client, provider registry, notification bus,
  sync service and the optional scheduled-sync job).
- ``open_runtime()`` / ``CalendarRuntime.close()``: build and tear down a
  runtime; used by the app lifespan and by the CLI.
- FastAPI dependency functions for injecting the sync service, the provider
  registry and the caller's user id into route handlers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from fastapi import Header

from jobai_calendar.calendar.errors import AuthError
from jobai_calendar.calendar.providers.registry import ProviderRegistry, default_registry
from jobai_calendar.calendar.store import CalendarStore
from jobai_calendar.calendar.sync import CalendarSyncService
from jobai_calendar.config import AppConfig
from jobai_calendar.core.events import CALENDAR_SYNCED, EventBus, Notification
from jobai_calendar.core.metrics import CalendarMetrics
from jobai_calendar.core.scheduler import CronJob
from jobai_calendar.db import Database

logger = logging.getLogger(__name__)

_HTTP_TIMEOUT_SECONDS = 30.0


async def _log_synced(notification: Notification) -> None:
    payload = notification.payload
    logger.info(
        "Calendar synced: user=%s events=%s conflicts=%s",
        payload.get("user_id"),
        payload.get("total_events"),
        payload.get("conflict_count"),
    )


@dataclass
class CalendarRuntime:
    """Everything a running calendar service holds open."""

    config: AppConfig
    database: Database
    http_client: httpx.AsyncClient
    store: CalendarStore
    registry: ProviderRegistry
    bus: EventBus
    service: CalendarSyncService
    sync_job: CronJob | None = None

    async def close(self) -> None:
        """Stop background work and release connections, in reverse start order."""
        if self.sync_job is not None:
            await self.sync_job.stop()
        await self.bus.stop()
        await self.http_client.aclose()
        await self.database.close()
        logger.info("Calendar runtime closed")


async def open_runtime(config: AppConfig, *, start_scheduler: bool = True) -> CalendarRuntime:
    """Connect to the database and assemble the calendar service.

    Parameters
    ----------
    config:
        Loaded application configuration.
    start_scheduler:
        Start the cron-driven stale-user sync when ``[scheduler].enabled``.
        One-shot CLI commands pass False.
    """
    database = Database.from_env(config.database_name)
    await database.provision()
    pool = await database.connect()

    store = CalendarStore(pool)
    http_client = httpx.AsyncClient(timeout=_HTTP_TIMEOUT_SECONDS)
    registry = default_registry(store=store, http_client=http_client, config=config.calendar)

    bus = EventBus()
    bus.subscribe(CALENDAR_SYNCED, _log_synced)
    await bus.start()

    service = CalendarSyncService(
        store=store,
        registry=registry,
        bus=bus,
        config=config.calendar,
        metrics=CalendarMetrics(),
    )

    sync_job = None
    if start_scheduler and config.scheduler.enabled:
        sync_job = CronJob("calendar-sync", config.scheduler.cron, service.scheduled_sync)
        sync_job.start()

    logger.info(
        "Calendar runtime ready: providers=%s scheduler=%s",
        [str(p) for p in registry.available_providers],
        "on" if sync_job is not None else "off",
    )
    return CalendarRuntime(
        config=config,
        database=database,
        http_client=http_client,
        store=store,
        registry=registry,
        bus=bus,
        service=service,
        sync_job=sync_job,
    )


# ---------------------------------------------------------------------------
# Module-level singleton for FastAPI dependency injection
# ---------------------------------------------------------------------------

_runtime: CalendarRuntime | None = None


async def init_dependencies(config: AppConfig) -> CalendarRuntime:
    """Initialize the module-level runtime.  Called once from the app lifespan."""
    global _runtime  # noqa: PLW0603
    _runtime = await open_runtime(config)
    return _runtime


async def shutdown_dependencies() -> None:
    """Close the module-level runtime.  Called during app shutdown."""
    global _runtime  # noqa: PLW0603
    if _runtime is not None:
        await _runtime.close()
        _runtime = None


def get_sync_service() -> CalendarSyncService:
    """FastAPI dependency: provides the CalendarSyncService singleton."""
    if _runtime is None:
        raise RuntimeError("Calendar runtime not initialized; call init_dependencies() first")
    return _runtime.service


def get_provider_registry() -> ProviderRegistry:
    """FastAPI dependency: provides the ProviderRegistry singleton."""
    if _runtime is None:
        raise RuntimeError("Calendar runtime not initialized; call init_dependencies() first")
    return _runtime.registry


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """FastAPI dependency: the authenticated caller, as set by the upstream gateway."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise AuthError("Missing X-User-Id header")
    return user_id
