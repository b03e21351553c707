"""Canonical calendar models shared by providers, the sync service and the API.

All models serialize with camelCase aliases (``startTime``, ``externalId``)
and accept either camelCase or snake_case on input.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from jobai_calendar.calendar.errors import UnsupportedProviderError
from jobai_calendar.calendar.timezones import coerce_zoneinfo, ensure_aware, overlap_duration

DEFAULT_EVENT_TITLE = "Untitled Event"


class CalendarProviderName(enum.StrEnum):
    """Supported calendar providers."""

    GOOGLE = "google"
    OUTLOOK = "outlook"

    @classmethod
    def parse(cls, raw: str) -> CalendarProviderName:
        """Resolve a provider id case-insensitively (``GOOGLE``, ``google``)."""
        normalized = raw.strip().lower() if isinstance(raw, str) else ""
        try:
            return cls(normalized)
        except ValueError:
            raise UnsupportedProviderError(str(raw)) from None


class EventStatus(enum.StrEnum):
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class ReminderMethod(enum.StrEnum):
    EMAIL = "email"
    POPUP = "popup"


class ConflictSeverity(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    ConflictSeverity.LOW: 0,
    ConflictSeverity.MEDIUM: 1,
    ConflictSeverity.HIGH: 2,
}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Reminder(CamelModel):
    method: ReminderMethod = ReminderMethod.POPUP
    minutes: int = Field(ge=0)


def _normalize_optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class CalendarEvent(CamelModel):
    """Canonical event shape shared across provider implementations."""

    id: str | None = None
    external_id: str | None = None
    provider: CalendarProviderName | None = None
    title: str = DEFAULT_EVENT_TITLE
    description: str | None = None
    location: str | None = None
    start_time: datetime
    end_time: datetime
    timezone: str | None = None
    is_all_day: bool = False
    recurrence: list[str] | None = None
    attendees: list[str] = Field(default_factory=list)
    reminders: list[Reminder] = Field(default_factory=list)
    color: str | None = None
    html_link: str | None = None
    status: EventStatus | None = None
    created: datetime | None = None
    updated: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("title", mode="before")
    @classmethod
    def _default_title(cls, value: Any) -> Any:
        if value is None:
            return DEFAULT_EVENT_TITLE
        if isinstance(value, str) and not value.strip():
            return DEFAULT_EVENT_TITLE
        return value

    @field_validator("description", "location")
    @classmethod
    def _normalize_text(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)

    @field_validator("start_time", "end_time", "created", "updated")
    @classmethod
    def _require_aware(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return ensure_aware(value)

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str | None) -> str | None:
        normalized = _normalize_optional_text(value)
        if normalized is None:
            return None
        coerce_zoneinfo(normalized)
        return normalized

    @model_validator(mode="after")
    def _validate_bounds(self) -> CalendarEvent:
        if self.is_all_day:
            if self.end_time < self.start_time:
                raise ValueError("end_time must not be before start_time for all-day events")
        elif self.start_time >= self.end_time:
            raise ValueError("start_time must be earlier than end_time")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    def overlaps(self, other: CalendarEvent) -> bool:
        return overlap_duration(
            self.start_time, self.end_time, other.start_time, other.end_time
        ) > timedelta(0)


class CalendarEventUpdate(CamelModel):
    """Partial update; only fields that are set are merged into the provider event."""

    title: str | None = None
    description: str | None = None
    location: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    timezone: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _require_aware(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return ensure_aware(value)

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str | None) -> str | None:
        normalized = _normalize_optional_text(value)
        if normalized is not None:
            coerce_zoneinfo(normalized)
        return normalized

    @model_validator(mode="after")
    def _validate_bounds(self) -> CalendarEventUpdate:
        if (
            self.start_time is not None
            and self.end_time is not None
            and self.start_time >= self.end_time
        ):
            raise ValueError("start_time must be earlier than end_time")
        return self

    def changes(self) -> dict[str, Any]:
        """Fields explicitly supplied by the caller."""
        return self.model_dump(exclude_unset=True)

    def apply_to(self, event: CalendarEvent) -> CalendarEvent:
        """Merge supplied fields onto *event*, re-validating the result."""
        merged = event.model_dump()
        merged.update(self.changes())
        return CalendarEvent.model_validate(merged)


class CalendarIntegration(BaseModel):
    """A user's stored connection to one provider."""

    id: str | None = None
    user_id: str
    provider: CalendarProviderName
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
    is_active: bool = True
    last_synced_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __repr__(self) -> str:
        return (
            f"CalendarIntegration(user_id={self.user_id!r}, provider={self.provider.value!r}, "
            f"is_active={self.is_active}, expires_at={self.expires_at!r})"
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and ensure_aware(self.expires_at) <= now


class TokenGrant(BaseModel):
    """Tokens returned by a provider's OAuth token endpoint."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def __repr__(self) -> str:
        return (
            f"TokenGrant(expires_at={self.expires_at!r}, "
            f"has_refresh_token={self.refresh_token is not None})"
        )


class ProviderSyncResult(CamelModel):
    provider: CalendarProviderName
    success: bool
    events_count: int | None = None
    error: str | None = None
    last_synced_at: datetime | None = None


class SyncError(CamelModel):
    provider: str
    message: str


class ConflictGroup(CamelModel):
    base_event: CalendarEvent
    conflicting_events: list[CalendarEvent]
    severity: ConflictSeverity
    suggestions: list[str] = Field(default_factory=list)


class SyncStatus(CamelModel):
    """Outcome of one ``sync_all_calendars`` run; returned, never persisted.

    ``start_time``/``end_time`` bracket the run itself; the synced range is
    ``window_start``/``window_end``.
    """

    user_id: str
    start_time: datetime
    end_time: datetime | None = None
    window_start: datetime
    window_end: datetime
    success: bool = True
    providers: list[ProviderSyncResult] = Field(default_factory=list)
    total_events: int = 0
    conflicts: list[ConflictGroup] = Field(default_factory=list)
    errors: list[SyncError] = Field(default_factory=list)


class Slot(CamelModel):
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


class MeetingTimeSuggestion(CamelModel):
    """A free start time ranked by convenience across attendee timezones."""

    start: datetime
    end: datetime
    scores: dict[str, int] = Field(default_factory=dict)
    average_score: float


class ConflictCheckResult(CamelModel):
    has_conflicts: bool
    conflicts: list[CalendarEvent] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    suggested_slots: list[Slot] = Field(default_factory=list)
    meeting_times: list[MeetingTimeSuggestion] = Field(default_factory=list)
