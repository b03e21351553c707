"""Free-slot search over a user's events, restricted to working hours."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import datetime, timedelta

from jobai_calendar.calendar.models import CalendarEvent, Slot
from jobai_calendar.calendar.timezones import WorkingHours, ensure_aware

MAX_SLOTS = 10


def _slots_in_gap(
    gap_start: datetime,
    gap_end: datetime,
    duration: timedelta,
    hours: WorkingHours,
) -> Iterator[Slot]:
    """Yield at most one slot per local working day intersecting the gap."""
    zone = hours.zone
    day = gap_start.astimezone(zone).date()
    last_day = gap_end.astimezone(zone).date()
    while day <= last_day:
        open_at, close_at = hours.window_for(day)
        window_start = max(gap_start, open_at)
        window_end = min(gap_end, close_at)
        if window_end - window_start >= duration:
            start = window_start.astimezone(zone)
            yield Slot(start=start, end=start + duration)
        day += timedelta(days=1)


def find_available_slots(
    events: Iterable[CalendarEvent],
    duration_minutes: int,
    search_start: datetime,
    search_end: datetime,
    *,
    hours: WorkingHours | None = None,
    limit: int = MAX_SLOTS,
) -> list[Slot]:
    """Return up to *limit* slots of exactly *duration_minutes* inside working hours.

    Events are walked in start order with a cursor that begins at
    *search_start*; every gap between the cursor and the next event (and the
    tail up to *search_end*) is clipped to each day's working window.  All-day
    events never block time.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    search_start = ensure_aware(search_start)
    search_end = ensure_aware(search_end)
    if search_end <= search_start:
        raise ValueError("search_end must be later than search_start")

    hours = hours or WorkingHours()
    duration = timedelta(minutes=duration_minutes)

    blocking = sorted(
        (
            event
            for event in events
            if not event.is_all_day
            and event.end_time > search_start
            and event.start_time < search_end
        ),
        key=lambda event: event.start_time,
    )

    slots: list[Slot] = []
    cursor = search_start
    for event in blocking:
        if len(slots) >= limit:
            break
        if cursor < event.start_time:
            slots.extend(_slots_in_gap(cursor, event.start_time, duration, hours))
        cursor = max(cursor, event.end_time)

    if len(slots) < limit and cursor < search_end:
        slots.extend(_slots_in_gap(cursor, search_end, duration, hours))

    return slots[:limit]
