"""Conflict detection, severity scoring and resolution suggestions.

Detection sorts timed events by start and, for each base event, scans forward
only until the next candidate starts at or after the base event's end.  Each
base event with at least one overlap yields a ``ConflictGroup``; an overlap
between A and B is therefore reported once, under whichever starts first.

All-day events are ignored.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from jobai_calendar.calendar.models import CalendarEvent, ConflictGroup, ConflictSeverity

_HIGH_PRIORITY_KEYWORDS = ("interview",)
_MEDIUM_PRIORITY_KEYWORDS = ("meeting", "call", "presentation", "review")
_OPTIONAL_KEYWORDS = ("optional", "fyi", "update", "sync")

_BACK_TO_BACK_THRESHOLD_MINUTES = 30


def _title_has(event: CalendarEvent, keywords: Sequence[str]) -> bool:
    title = event.title.lower()
    return any(keyword in title for keyword in keywords)


def detect_conflicts(events: Iterable[CalendarEvent]) -> list[ConflictGroup]:
    """Group overlapping timed events.

    Returns one group per base event that overlaps at least one later-starting
    (or equal-starting) event, in start-time order.
    """
    timed = sorted(
        (event for event in events if not event.is_all_day),
        key=lambda event: event.start_time,
    )

    groups: list[ConflictGroup] = []
    for i, base in enumerate(timed):
        overlapping: list[CalendarEvent] = []
        for candidate in timed[i + 1 :]:
            if candidate.start_time >= base.end_time:
                break
            if base.overlaps(candidate):
                overlapping.append(candidate)

        if overlapping:
            groups.append(
                ConflictGroup(
                    base_event=base,
                    conflicting_events=overlapping,
                    severity=calculate_severity(base, overlapping),
                    suggestions=generate_suggestions(base, overlapping),
                )
            )
    return groups


def calculate_severity(
    base: CalendarEvent, conflicts: Sequence[CalendarEvent]
) -> ConflictSeverity:
    """First matching rule wins: volume, interviews, pairs, then meeting-like titles."""
    involved = [base, *conflicts]

    if len(conflicts) > 2:
        return ConflictSeverity.HIGH
    if any(_title_has(event, _HIGH_PRIORITY_KEYWORDS) for event in involved):
        return ConflictSeverity.HIGH
    if len(conflicts) == 2:
        return ConflictSeverity.MEDIUM
    if any(_title_has(event, _MEDIUM_PRIORITY_KEYWORDS) for event in involved):
        return ConflictSeverity.MEDIUM
    return ConflictSeverity.LOW


def generate_suggestions(base: CalendarEvent, conflicts: Sequence[CalendarEvent]) -> list[str]:
    """Independent heuristics; each that applies contributes one suggestion."""
    involved = [base, *conflicts]
    suggestions: list[str] = []

    shortest = min(involved, key=lambda event: event.duration)
    shortest_minutes = round(shortest.duration.total_seconds() / 60)
    suggestions.append(
        f'Consider rescheduling "{shortest.title}" ({shortest_minutes} min) '
        "as it's the shortest event"
    )

    if len(conflicts) == 1:
        gap_minutes = abs((base.start_time - conflicts[0].end_time).total_seconds()) / 60
        if 0 < gap_minutes < _BACK_TO_BACK_THRESHOLD_MINUTES:
            suggestions.append(
                "Events are close - consider making them back-to-back to save time"
            )

    locations = {event.location for event in involved if event.location}
    if len(locations) >= 2:
        suggestions.append(
            "Different locations detected - consider virtual attendance for one event"
        )

    optional = next((event for event in involved if _title_has(event, _OPTIONAL_KEYWORDS)), None)
    if optional is not None:
        suggestions.append(
            f'"{optional.title}" might be optional - consider delegating or skipping'
        )

    return suggestions
