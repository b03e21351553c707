"""Multi-provider sync orchestration, new-event conflict checks and slot search.

``sync_all_calendars`` fans out one task per active integration.  Each task
is isolated: a failure (API error, auth error, timeout, store error) becomes
a per-provider error entry and contributes zero events, while the other
providers carry on.  Only an orchestration-level failure flips
``SyncStatus.success`` to False, recorded under the ``SYSTEM`` tag.

Syncs of the same ``(user_id, provider)`` within this process are
serialized by a per-key ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
import calendar
import logging
import time
import weakref
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from jobai_calendar.calendar.availability import find_available_slots
from jobai_calendar.calendar.conflicts import detect_conflicts, generate_suggestions
from jobai_calendar.calendar.errors import (
    SYSTEM_ERROR_TAG,
    CalendarError,
    ProviderTimeoutError,
    SyncSystemError,
    safe_error_message,
)
from jobai_calendar.calendar.models import (
    CalendarEvent,
    CalendarIntegration,
    CalendarProviderName,
    ConflictCheckResult,
    MeetingTimeSuggestion,
    ProviderSyncResult,
    Slot,
    SyncError,
    SyncStatus,
)
from jobai_calendar.calendar.timezones import (
    MEETING_SUGGESTION_LIMIT,
    ensure_aware,
    find_best_meeting_time,
    overlap_duration,
)
from jobai_calendar.config import CalendarConfig
from jobai_calendar.core.events import CALENDAR_SYNCED
from jobai_calendar.core.logging import bind_user_context, reset_user_context
from jobai_calendar.core.metrics import CalendarMetrics
from jobai_calendar.core.telemetry import get_tracer

if TYPE_CHECKING:
    from jobai_calendar.calendar.providers.registry import ProviderRegistry
    from jobai_calendar.calendar.store import CalendarStore
    from jobai_calendar.core.events import EventBus

logger = logging.getLogger(__name__)

NEW_EVENT_TITLE = "New Event"
NEARBY_SEARCH_DAYS = 3
NEARBY_SLOT_SUGGESTIONS = 3
SLOT_DISPLAY_FORMAT = "%b %d, %H:%M"


def add_months(value: datetime, months: int) -> datetime:
    """Calendar-aware month arithmetic; the day is clamped to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _error_text(exc: BaseException) -> str:
    return safe_error_message(str(exc) or type(exc).__name__)


class CalendarSyncService:
    """Coordinates provider adapters, the event store and conflict analysis."""

    def __init__(
        self,
        *,
        store: CalendarStore,
        registry: ProviderRegistry,
        bus: EventBus | None = None,
        config: CalendarConfig | None = None,
        metrics: CalendarMetrics | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._bus = bus
        self._config = config or CalendarConfig()
        self._metrics = metrics or CalendarMetrics()
        # Entries vanish once no sync holds or awaits the lock.
        self._locks: weakref.WeakValueDictionary[
            tuple[str, CalendarProviderName], asyncio.Lock
        ] = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str, provider: CalendarProviderName) -> asyncio.Lock:
        key = (user_id, provider)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    async def sync_all_calendars(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> SyncStatus:
        """Sync every active integration for *user_id* and report per-provider results.

        Never raises for provider or orchestration failures; they are
        reported on the returned status.
        """
        started = time.monotonic()
        now = datetime.now(UTC)
        start = ensure_aware(start) if start is not None else now
        if end is None:
            end = add_months(start, self._config.sync_window_months)
        end = ensure_aware(end)

        status = SyncStatus(user_id=user_id, start_time=now, window_start=start, window_end=end)
        user_token = bind_user_context(user_id)
        tracer = get_tracer()
        try:
            with tracer.start_as_current_span("calendar.sync_all") as span:
                span.set_attribute("calendar.user_id", user_id)
                try:
                    if end <= start:
                        raise SyncSystemError("Sync window end must be after start")

                    integrations = await self._store.list_active_integrations(user_id)
                    results = await asyncio.gather(
                        *(
                            self._sync_provider(user_id, integration, start, end, status)
                            for integration in integrations
                        )
                    )
                    all_events = [event for events in results for event in events]

                    status.conflicts = detect_conflicts(all_events)
                    for group in status.conflicts:
                        self._metrics.record_conflict(group.severity)

                    succeeded = [entry.provider for entry in status.providers if entry.success]
                    await self._store.mark_synced(user_id, succeeded, synced_at=datetime.now(UTC))

                    if self._bus is not None:
                        self._bus.publish(
                            CALENDAR_SYNCED,
                            {
                                "user_id": user_id,
                                "total_events": status.total_events,
                                "conflict_count": len(status.conflicts),
                            },
                        )
                except Exception as exc:
                    status.success = False
                    status.errors.append(
                        SyncError(provider=SYSTEM_ERROR_TAG, message=_error_text(exc))
                    )
                    logger.error("Calendar sync failed for user %s: %s", user_id, _error_text(exc))
                span.set_attribute("calendar.total_events", status.total_events)
        finally:
            status.end_time = datetime.now(UTC)
            reset_user_context(user_token)
            self._metrics.record_sync_duration((time.monotonic() - started) * 1000)

        logger.info(
            "Calendar sync finished: user=%s providers=%d events=%d conflicts=%d errors=%d",
            user_id,
            len(status.providers),
            status.total_events,
            len(status.conflicts),
            len(status.errors),
        )
        return status

    async def _sync_provider(
        self,
        user_id: str,
        integration: CalendarIntegration,
        start: datetime,
        end: datetime,
        status: SyncStatus,
    ) -> list[CalendarEvent]:
        provider = integration.provider
        timeout = self._config.provider_timeout_seconds
        tracer = get_tracer()
        with tracer.start_as_current_span("calendar.sync_provider") as span:
            span.set_attribute("calendar.provider", str(provider))
            try:
                adapter = self._registry.get(provider)
                lock = self._lock_for(user_id, provider)
                async with lock:
                    try:
                        events = await asyncio.wait_for(
                            adapter.sync_events(user_id, start, end), timeout=timeout
                        )
                    except TimeoutError:
                        raise ProviderTimeoutError(
                            provider=provider, timeout_seconds=timeout
                        ) from None
                    await self._store.upsert_events(
                        user_id, provider, events, synced_at=datetime.now(UTC)
                    )
            except Exception as exc:
                message = _error_text(exc)
                outcome = "timeout" if isinstance(exc, ProviderTimeoutError) else "failure"
                status.providers.append(
                    ProviderSyncResult(
                        provider=provider,
                        success=False,
                        error=message,
                        last_synced_at=integration.last_synced_at,
                    )
                )
                status.errors.append(SyncError(provider=provider.value, message=message))
                self._metrics.record_provider_sync(provider, outcome)
                if isinstance(exc, CalendarError):
                    logger.warning("Failed to sync %s calendar: %s", provider, message)
                else:
                    logger.exception("Unexpected error syncing %s calendar", provider)
                return []

            status.providers.append(
                ProviderSyncResult(
                    provider=provider,
                    success=True,
                    events_count=len(events),
                    last_synced_at=datetime.now(UTC),
                )
            )
            status.total_events += len(events)
            self._metrics.record_provider_sync(provider, "success")
            span.set_attribute("calendar.events_count", len(events))
            return events

    # ------------------------------------------------------------------
    # New-event conflict check
    # ------------------------------------------------------------------

    async def _provider_conflicts(
        self,
        user_id: str,
        integration: CalendarIntegration,
        start: datetime,
        end: datetime,
    ) -> list[CalendarEvent]:
        try:
            adapter = self._registry.get(integration.provider)
            return await asyncio.wait_for(
                adapter.check_conflicts(user_id, start, end),
                timeout=self._config.provider_timeout_seconds,
            )
        except TimeoutError:
            logger.error("Timed out checking conflicts in %s", integration.provider)
        except Exception as exc:
            logger.error(
                "Failed to check conflicts in %s: %s", integration.provider, _error_text(exc)
            )
        return []

    async def check_new_event_conflicts(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        exclude_event_id: str | None = None,
        attendee_timezones: Sequence[str] | None = None,
    ) -> ConflictCheckResult:
        """Check a proposed ``[start, end)`` against every connected calendar.

        Per-provider failures are logged and skipped.  When conflicts exist,
        nearby free slots (within three days of *start*) and the detector's
        heuristics are returned as suggestions.  With *attendee_timezones*,
        free hourly starts after *start* are also ranked by how convenient
        they are for every attendee.
        """
        start = ensure_aware(start)
        end = ensure_aware(end)
        if end <= start:
            raise ValueError("end must be later than start")

        integrations = await self._store.list_active_integrations(user_id)
        results = await asyncio.gather(
            *(self._provider_conflicts(user_id, i, start, end) for i in integrations)
        )
        conflicts = [
            event
            for events in results
            for event in events
            if exclude_event_id is None or event.external_id != exclude_event_id
        ]

        suggestions: list[str] = []
        nearby: list[Slot] = []
        meeting_times: list[MeetingTimeSuggestion] = []
        if conflicts:
            zone = self._config.working_hours.zone
            duration_minutes = max(1, round((end - start).total_seconds() / 60))
            nearby = await self.find_available_slots(
                user_id,
                start,
                duration_minutes,
                start - timedelta(days=NEARBY_SEARCH_DAYS),
                start + timedelta(days=NEARBY_SEARCH_DAYS),
            )
            nearby = nearby[:NEARBY_SLOT_SUGGESTIONS]
            if nearby:
                formatted = ", ".join(
                    slot.start.astimezone(zone).strftime(SLOT_DISPLAY_FORMAT) for slot in nearby
                )
                suggestions.append(f"Available slots nearby: {formatted}")

            if attendee_timezones:
                meeting_times = await self._rank_meeting_times(
                    user_id, attendee_timezones, start, end - start, conflicts
                )
                if meeting_times:
                    formatted = ", ".join(
                        option.start.astimezone(zone).strftime(SLOT_DISPLAY_FORMAT)
                        for option in meeting_times
                    )
                    suggestions.append(f"Best times across attendee timezones: {formatted}")

            proposed = CalendarEvent(title=NEW_EVENT_TITLE, start_time=start, end_time=end)
            suggestions.extend(generate_suggestions(proposed, conflicts))

        return ConflictCheckResult(
            has_conflicts=bool(conflicts),
            conflicts=conflicts,
            suggestions=suggestions,
            suggested_slots=nearby,
            meeting_times=meeting_times,
        )

    async def _rank_meeting_times(
        self,
        user_id: str,
        timezones: Sequence[str],
        after: datetime,
        duration: timedelta,
        conflicts: Sequence[CalendarEvent],
    ) -> list[MeetingTimeSuggestion]:
        hours = self._config.working_hours
        candidates = find_best_meeting_time(
            timezones,
            after=after,
            preferred_start=hours.start,
            preferred_end=hours.end,
            limit=None,
        )
        if not candidates:
            return []

        horizon_end = max(candidate.start for candidate in candidates) + duration
        persisted = await self._store.list_events(user_id, after, horizon_end)
        busy = [event for event in [*persisted, *conflicts] if not event.is_all_day]

        ranked: list[MeetingTimeSuggestion] = []
        for candidate in candidates:
            candidate_end = candidate.start + duration
            if any(
                overlap_duration(candidate.start, candidate_end, event.start_time, event.end_time)
                for event in busy
            ):
                continue
            ranked.append(
                MeetingTimeSuggestion(
                    start=candidate.start,
                    end=candidate_end,
                    scores=candidate.scores,
                    average_score=candidate.average_score,
                )
            )
            if len(ranked) == MEETING_SUGGESTION_LIMIT:
                break
        return ranked

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def find_available_slots(
        self,
        user_id: str,
        requested_start: datetime,
        duration_minutes: int,
        search_start: datetime,
        search_end: datetime,
    ) -> list[Slot]:
        """Free working-hours slots computed from the persisted events.

        *requested_start* is accepted for API symmetry; the search is bounded
        solely by ``[search_start, search_end)``.
        """
        search_start = ensure_aware(search_start)
        search_end = ensure_aware(search_end)
        events = await self._store.list_events(user_id, search_start, search_end)
        slots = find_available_slots(
            events,
            duration_minutes,
            search_start,
            search_end,
            hours=self._config.working_hours,
        )
        logger.debug(
            "Found %d available slots for user=%s (requested_start=%s)",
            len(slots),
            user_id,
            ensure_aware(requested_start).isoformat(),
        )
        return slots

    # ------------------------------------------------------------------
    # Scheduled sync
    # ------------------------------------------------------------------

    async def scheduled_sync(self, now: datetime | None = None) -> int:
        """Re-sync every user whose active integrations are stale.  Returns users attempted."""
        now = now or datetime.now(UTC)
        stale_before = now - timedelta(minutes=self._config.stale_after_minutes)
        user_ids = await self._store.list_users_due_for_sync(stale_before)
        logger.info("Scheduled calendar sync: %d users due", len(user_ids))

        for user_id in user_ids:
            try:
                await self.sync_all_calendars(user_id)
            except Exception:
                logger.exception("Scheduled sync failed for user %s", user_id)
        return len(user_ids)
