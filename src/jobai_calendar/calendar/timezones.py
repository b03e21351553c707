"""Timezone and working-hours helpers."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

MEETING_SEARCH_HOURS = 48
MEETING_MIN_AVERAGE_SCORE = 60
MEETING_SUGGESTION_LIMIT = 5

# (first hour, end hour, score) tiers below the preferred window, best first.
_FALLBACK_SCORE_TIERS = ((8, 20, 70), (7, 22, 40))
_PREFERRED_SCORE = 100
_NIGHT_SCORE = 10


@dataclass(frozen=True)
class WorkingHours:
    """Daily working window, expressed as wall-clock times in ``timezone``."""

    start: time = time(9, 0)
    end: time = time(18, 0)
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(
                f"Working hours start ({self.start}) must be earlier than end ({self.end})"
            )
        coerce_zoneinfo(self.timezone)

    @property
    def zone(self) -> ZoneInfo:
        return coerce_zoneinfo(self.timezone)

    def window_for(self, day: date) -> tuple[datetime, datetime]:
        """Return the aware [open, close) instants of the working window on *day*."""
        zone = self.zone
        return (
            datetime.combine(day, self.start, tzinfo=zone),
            datetime.combine(day, self.end, tzinfo=zone),
        )


def coerce_zoneinfo(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name, raising ``ValueError`` when unknown."""
    normalized = name.strip() if isinstance(name, str) else ""
    if not normalized:
        raise ValueError("Timezone must be a non-empty IANA timezone name")
    try:
        return ZoneInfo(normalized)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Invalid timezone: {name!r}") from exc


def is_valid_timezone(name: str) -> bool:
    try:
        coerce_zoneinfo(name)
    except ValueError:
        return False
    return True


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_working_hours(value: datetime, hours: WorkingHours) -> bool:
    """True when *value* falls on a local weekday inside its working window."""
    local = ensure_aware(value).astimezone(hours.zone)
    if local.weekday() >= 5:
        return False
    open_at, close_at = hours.window_for(local.date())
    return open_at <= local < close_at


def overlap_duration(
    first_start: datetime,
    first_end: datetime,
    second_start: datetime,
    second_end: datetime,
) -> timedelta:
    """Length of the intersection of two ranges (zero when disjoint)."""
    start = max(first_start, second_start)
    end = min(first_end, second_end)
    if end <= start:
        return timedelta(0)
    return end - start


@dataclass(frozen=True)
class MeetingTimeCandidate:
    """A proposed meeting start with its per-timezone convenience scores."""

    start: datetime
    scores: dict[str, int] = field(default_factory=dict)

    @property
    def average_score(self) -> float:
        if not self.scores:
            return 0.0
        return sum(self.scores.values()) / len(self.scores)


def _meeting_score(candidate: datetime, preferred: WorkingHours) -> int:
    if is_working_hours(candidate, preferred):
        return _PREFERRED_SCORE
    hour = candidate.astimezone(preferred.zone).hour
    for first, last, score in _FALLBACK_SCORE_TIERS:
        if first <= hour < last:
            return score
    return _NIGHT_SCORE


def find_best_meeting_time(
    timezones: Sequence[str],
    *,
    after: datetime,
    preferred_start: time = time(9, 0),
    preferred_end: time = time(17, 0),
    search_hours: int = MEETING_SEARCH_HOURS,
    limit: int | None = MEETING_SUGGESTION_LIMIT,
) -> list[MeetingTimeCandidate]:
    """Rank hourly starts by how convenient they are across *timezones*.

    Candidates are the top of each hour for *search_hours* hours, beginning
    with the first full hour after *after*.  Each timezone scores a candidate
    100 inside its weekday preferred window, 70 between 08:00 and 20:00 local,
    40 between 07:00 and 22:00, and 10 otherwise.  Candidates averaging below
    60 are dropped; the rest are returned best first, ties in time order.
    """
    zones = list(dict.fromkeys(name.strip() for name in timezones))
    if not zones:
        raise ValueError("At least one timezone is required")
    preferences = {
        name: WorkingHours(start=preferred_start, end=preferred_end, timezone=name)
        for name in zones
    }

    base = ensure_aware(after).astimezone(UTC).replace(minute=0, second=0, microsecond=0)
    base += timedelta(hours=1)

    candidates: list[MeetingTimeCandidate] = []
    for offset in range(search_hours):
        proposed = base + timedelta(hours=offset)
        scores = {name: _meeting_score(proposed, preferences[name]) for name in zones}
        candidate = MeetingTimeCandidate(start=proposed, scores=scores)
        if candidate.average_score >= MEETING_MIN_AVERAGE_SCORE:
            candidates.append(candidate)

    candidates.sort(key=lambda candidate: -candidate.average_score)
    return candidates if limit is None else candidates[:limit]
