"""PostgreSQL persistence for calendar integrations and canonical events.

Tables (created by the ``core`` Alembic chain):

- ``calendar_integrations``: one row per ``(user_id, provider)`` holding OAuth
  credentials and sync bookkeeping.  Disconnecting clears the tokens and sets
  ``is_active = false``; the row itself is kept.
- ``calendar_events``: the canonical copy of provider events, upserted on
  ``(user_id, provider, external_id)``.

Raw token values are never logged.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

from jobai_calendar.calendar.models import (
    CalendarEvent,
    CalendarIntegration,
    CalendarProviderName,
    TokenGrant,
)

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_INTEGRATIONS = "calendar_integrations"
_EVENTS = "calendar_events"

_INTEGRATION_COLUMNS = (
    "id::text AS id, user_id, provider, access_token, refresh_token, expires_at, "
    "is_active, last_synced_at, created_at, updated_at"
)
_EVENT_COLUMNS = (
    "id::text AS id, provider, external_id, title, description, location, start_time, "
    "end_time, timezone, is_all_day, status, attendees, reminders, recurrence, color, "
    "html_link, metadata"
)


def _affected_rows(result: str | None) -> int:
    # asyncpg returns a status string like "UPDATE 1"
    if not result:
        return 0
    try:
        return int(result.split()[-1])
    except ValueError:
        return 0


def _load_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_to_integration(row: Any) -> CalendarIntegration:
    return CalendarIntegration(
        id=row["id"],
        user_id=row["user_id"],
        provider=CalendarProviderName(row["provider"]),
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        expires_at=row["expires_at"],
        is_active=row["is_active"],
        last_synced_at=row["last_synced_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_event(row: Any) -> CalendarEvent:
    return CalendarEvent(
        id=row["id"],
        external_id=row["external_id"],
        provider=CalendarProviderName(row["provider"]),
        title=row["title"],
        description=row["description"],
        location=row["location"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        timezone=row["timezone"],
        is_all_day=row["is_all_day"],
        status=row["status"],
        attendees=_load_json(row["attendees"], []),
        reminders=_load_json(row["reminders"], []),
        recurrence=_load_json(row["recurrence"], None),
        color=row["color"],
        html_link=row["html_link"],
        metadata=_load_json(row["metadata"], {}),
    )


class CalendarStore:
    """Async repository over the calendar tables.

    Parameters
    ----------
    pool:
        An asyncpg connection pool.  Each operation acquires a connection for
        the duration of the call.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    # ------------------------------------------------------------------
    # Integrations
    # ------------------------------------------------------------------

    async def get_integration(
        self, user_id: str, provider: CalendarProviderName
    ) -> CalendarIntegration | None:
        """Return the integration row for *user_id*/*provider*, active or not."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_INTEGRATION_COLUMNS} FROM {_INTEGRATIONS} "
                "WHERE user_id = $1 AND provider = $2",
                user_id,
                provider.value,
            )
        return _row_to_integration(row) if row is not None else None

    async def list_active_integrations(self, user_id: str) -> list[CalendarIntegration]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_INTEGRATION_COLUMNS} FROM {_INTEGRATIONS} "
                "WHERE user_id = $1 AND is_active = true ORDER BY provider",
                user_id,
            )
        return [_row_to_integration(row) for row in rows]

    async def upsert_integration(
        self,
        user_id: str,
        provider: CalendarProviderName,
        grant: TokenGrant,
        *,
        connected_at: datetime,
    ) -> None:
        """Create or re-activate an integration after a successful OAuth callback.

        A grant without a refresh token keeps the previously stored one.
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {_INTEGRATIONS}
                    (user_id, provider, access_token, refresh_token, expires_at,
                     is_active, last_synced_at)
                VALUES ($1, $2, $3, $4, $5, true, $6)
                ON CONFLICT (user_id, provider) DO UPDATE SET
                    access_token   = EXCLUDED.access_token,
                    refresh_token  = COALESCE(EXCLUDED.refresh_token,
                                              {_INTEGRATIONS}.refresh_token),
                    expires_at     = EXCLUDED.expires_at,
                    is_active      = true,
                    last_synced_at = EXCLUDED.last_synced_at,
                    updated_at     = now()
                """,
                user_id,
                provider.value,
                grant.access_token,
                grant.refresh_token,
                grant.expires_at,
                connected_at,
            )
        logger.info("Calendar integration connected: user=%s provider=%s", user_id, provider)

    async def update_tokens(
        self, user_id: str, provider: CalendarProviderName, grant: TokenGrant
    ) -> None:
        """Persist a refreshed access token (and rotated refresh token, if any)."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE {_INTEGRATIONS} SET
                    access_token  = $3,
                    refresh_token = COALESCE($4, refresh_token),
                    expires_at    = $5,
                    updated_at    = now()
                WHERE user_id = $1 AND provider = $2
                """,
                user_id,
                provider.value,
                grant.access_token,
                grant.refresh_token,
                grant.expires_at,
            )
        logger.debug("Calendar tokens refreshed: user=%s provider=%s", user_id, provider)

    async def deactivate_integration(self, user_id: str, provider: CalendarProviderName) -> bool:
        """Clear tokens and mark inactive.  Returns False when no row exists."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                f"""
                UPDATE {_INTEGRATIONS} SET
                    is_active     = false,
                    access_token  = NULL,
                    refresh_token = NULL,
                    updated_at    = now()
                WHERE user_id = $1 AND provider = $2
                """,
                user_id,
                provider.value,
            )
        return _affected_rows(result) > 0

    async def mark_synced(
        self,
        user_id: str,
        providers: Sequence[CalendarProviderName],
        *,
        synced_at: datetime,
    ) -> None:
        if not providers:
            return
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE {_INTEGRATIONS} SET last_synced_at = $3, updated_at = now()
                WHERE user_id = $1 AND provider = ANY($2::text[])
                """,
                user_id,
                [provider.value for provider in providers],
                synced_at,
            )

    async def list_users_due_for_sync(self, stale_before: datetime) -> list[str]:
        """Distinct users with an active integration never synced or synced before the cutoff."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT DISTINCT user_id FROM {_INTEGRATIONS}
                WHERE is_active = true
                  AND (last_synced_at IS NULL OR last_synced_at <= $1)
                ORDER BY user_id
                """,
                stale_before,
            )
        return [row["user_id"] for row in rows]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def upsert_events(
        self,
        user_id: str,
        provider: CalendarProviderName,
        events: Iterable[CalendarEvent],
        *,
        synced_at: datetime,
    ) -> int:
        """Insert or update events keyed by ``(user_id, provider, external_id)``.

        Events without an ``external_id`` cannot be matched on later syncs and
        are skipped.  Returns the number of rows written.
        """
        records = []
        for event in events:
            if not event.external_id:
                logger.debug("Skipping event without external_id: title=%r", event.title)
                continue
            records.append(
                (
                    user_id,
                    provider.value,
                    event.external_id,
                    event.title,
                    event.description,
                    event.location,
                    event.start_time,
                    event.end_time,
                    event.timezone,
                    event.is_all_day,
                    event.status.value if event.status is not None else None,
                    json.dumps(event.attendees),
                    json.dumps([r.model_dump(mode="json") for r in event.reminders]),
                    json.dumps(event.recurrence) if event.recurrence is not None else None,
                    event.color,
                    event.html_link,
                    json.dumps(event.metadata, default=str),
                    synced_at,
                )
            )
        if not records:
            return 0

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(
                    f"""
                    INSERT INTO {_EVENTS}
                        (user_id, provider, external_id, title, description, location,
                         start_time, end_time, timezone, is_all_day, status, attendees,
                         reminders, recurrence, color, html_link, metadata, last_synced_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12::jsonb,
                            $13::jsonb, $14::jsonb, $15, $16, $17::jsonb, $18)
                    ON CONFLICT (user_id, provider, external_id) DO UPDATE SET
                        title          = EXCLUDED.title,
                        description    = EXCLUDED.description,
                        location       = EXCLUDED.location,
                        start_time     = EXCLUDED.start_time,
                        end_time       = EXCLUDED.end_time,
                        timezone       = EXCLUDED.timezone,
                        is_all_day     = EXCLUDED.is_all_day,
                        status         = EXCLUDED.status,
                        attendees      = EXCLUDED.attendees,
                        reminders      = EXCLUDED.reminders,
                        recurrence     = EXCLUDED.recurrence,
                        color          = EXCLUDED.color,
                        html_link      = EXCLUDED.html_link,
                        metadata       = EXCLUDED.metadata,
                        last_synced_at = EXCLUDED.last_synced_at,
                        updated_at     = now()
                    """,
                    records,
                )
        logger.debug(
            "Stored calendar events: user=%s provider=%s count=%d",
            user_id,
            provider,
            len(records),
        )
        return len(records)

    async def list_events(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        """Events overlapping ``[start, end)``, ordered by start time."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_EVENT_COLUMNS} FROM {_EVENTS}
                WHERE user_id = $1 AND start_time < $3 AND end_time > $2
                ORDER BY start_time
                """,
                user_id,
                start,
                end,
            )
        return [_row_to_event(row) for row in rows]
