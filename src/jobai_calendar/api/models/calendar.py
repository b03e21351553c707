"""Request/response bodies for the ``/calendar`` endpoints.

Bodies use camelCase on the wire (``startDate``, ``excludeEventId``) and also
accept snake_case.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import ConfigDict, Field, field_validator, model_validator

from jobai_calendar.calendar.models import CalendarEvent, CamelModel, Reminder
from jobai_calendar.calendar.timezones import ensure_aware, is_valid_timezone


def _aware(value: datetime | None) -> datetime | None:
    """Naive datetimes are read as UTC so window bounds always compare."""
    return ensure_aware(value) if value is not None else None


class _RequestModel(CamelModel):
    model_config = ConfigDict(extra="forbid")


class AuthUrlResponse(CamelModel):
    auth_url: str


class SuccessResponse(CamelModel):
    success: bool = True


class OAuthCallbackRequest(_RequestModel):
    code: str = Field(min_length=1)
    state: str = Field(min_length=1)

    @field_validator("code", "state")
    @classmethod
    def _strip(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("must be a non-empty string")
        return normalized


class SyncRequest(_RequestModel):
    start_date: datetime | None = None
    end_date: datetime | None = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _require_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)

    @model_validator(mode="after")
    def _validate_window(self) -> SyncRequest:
        if (
            self.start_date is not None
            and self.end_date is not None
            and self.end_date <= self.start_date
        ):
            raise ValueError("endDate must be later than startDate")
        return self


class CreateEventRequest(_RequestModel):
    title: str | None = None
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

    def to_event(self) -> CalendarEvent:
        return CalendarEvent.model_validate(self.model_dump(exclude_none=True))


class ConflictCheckRequest(_RequestModel):
    start_time: datetime
    end_time: datetime
    exclude_event_id: str | None = None
    attendee_timezones: list[str] = Field(default_factory=list, max_length=20)

    @field_validator("start_time", "end_time")
    @classmethod
    def _require_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)

    @field_validator("attendee_timezones")
    @classmethod
    def _known_timezones(cls, value: list[str]) -> list[str]:
        unknown = [name for name in value if not is_valid_timezone(name)]
        if unknown:
            raise ValueError(f"Unknown timezone(s): {', '.join(unknown)}")
        return [name.strip() for name in value]

    @model_validator(mode="after")
    def _validate_window(self) -> ConflictCheckRequest:
        if self.end_time <= self.start_time:
            raise ValueError("endTime must be later than startTime")
        return self


class AvailableSlotsRequest(_RequestModel):
    duration: int = Field(gt=0, le=24 * 60, description="Slot length in minutes")
    search_start: datetime
    search_end: datetime

    @field_validator("search_start", "search_end")
    @classmethod
    def _require_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)

    @model_validator(mode="after")
    def _validate_window(self) -> AvailableSlotsRequest:
        if self.search_end <= self.search_start:
            raise ValueError("searchEnd must be later than searchStart")
        return self
