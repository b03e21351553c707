"""Google Calendar v3 adapter."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time
from typing import Any
from urllib.parse import quote, urlencode

from pydantic import ValidationError

from jobai_calendar.calendar.errors import ProviderAPIError
from jobai_calendar.calendar.models import (
    CalendarEvent,
    CalendarEventUpdate,
    CalendarProviderName,
    EventStatus,
    Reminder,
    ReminderMethod,
)
from jobai_calendar.calendar.providers.base import CalendarProviderAdapter
from jobai_calendar.calendar.timezones import coerce_zoneinfo, ensure_aware

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
GOOGLE_CALENDAR_SCOPES = (
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
)
PRIMARY_CALENDAR_ID = "primary"
MAX_RESULTS = 250

DEFAULT_REMINDERS = (
    Reminder(method=ReminderMethod.EMAIL, minutes=24 * 60),
    Reminder(method=ReminderMethod.POPUP, minutes=30),
)


def _google_rfc3339(value: datetime) -> str:
    return ensure_aware(value).astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_google_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    return ensure_aware(datetime.fromisoformat(normalized))


def _parse_boundary(payload: Any, fallback_timezone: str) -> tuple[datetime, bool]:
    """Return ``(instant, is_all_day)`` for a Google start/end object."""
    if not isinstance(payload, dict):
        raise ValueError("Google event boundary must be an object")

    date_time_value = payload.get("dateTime")
    if isinstance(date_time_value, str) and date_time_value.strip():
        return _parse_google_datetime(date_time_value), False

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        zone_name = payload.get("timeZone") or fallback_timezone
        day = date.fromisoformat(date_value.strip())
        return datetime.combine(day, time.min, tzinfo=coerce_zoneinfo(zone_name)), True

    raise ValueError("Google event boundary is missing dateTime/date")


def _boundary_payload(value: datetime, *, is_all_day: bool, timezone: str) -> dict[str, str]:
    if is_all_day:
        return {"date": value.astimezone(coerce_zoneinfo(timezone)).date().isoformat()}
    return {"dateTime": ensure_aware(value).isoformat(), "timeZone": timezone}


def google_event_to_calendar_event(
    payload: dict[str, Any], *, default_timezone: str = "UTC"
) -> CalendarEvent | None:
    """Convert a Google event resource; cancelled or id-less events return None."""
    event_id = payload.get("id")
    if not isinstance(event_id, str) or not event_id.strip():
        return None
    status = payload.get("status")
    if status == EventStatus.CANCELLED:
        return None

    start_payload = payload.get("start")
    timezone = (
        start_payload.get("timeZone") if isinstance(start_payload, dict) else None
    ) or default_timezone
    start_time, is_all_day = _parse_boundary(start_payload, timezone)
    end_time, _ = _parse_boundary(payload.get("end"), timezone)

    attendees = [
        attendee["email"]
        for attendee in payload.get("attendees") or []
        if isinstance(attendee, dict) and isinstance(attendee.get("email"), str)
    ]
    reminders_payload = payload.get("reminders")
    reminders: list[Reminder] = []
    if isinstance(reminders_payload, dict):
        for override in reminders_payload.get("overrides") or []:
            if isinstance(override, dict) and override.get("method") in ReminderMethod:
                reminders.append(
                    Reminder(method=override["method"], minutes=int(override.get("minutes", 0)))
                )

    return CalendarEvent(
        external_id=event_id,
        provider=CalendarProviderName.GOOGLE,
        title=payload.get("summary"),
        description=payload.get("description"),
        location=payload.get("location"),
        start_time=start_time,
        end_time=end_time,
        timezone=timezone,
        is_all_day=is_all_day,
        recurrence=payload.get("recurrence"),
        attendees=attendees,
        reminders=reminders,
        color=payload.get("colorId"),
        html_link=payload.get("htmlLink"),
        status=status if status in EventStatus else None,
        created=_parse_google_datetime(payload["created"]) if payload.get("created") else None,
        updated=_parse_google_datetime(payload["updated"]) if payload.get("updated") else None,
        metadata={
            key: payload[key] for key in ("iCalUID", "recurringEventId", "etag") if key in payload
        },
    )


def calendar_event_to_google_payload(
    event: CalendarEvent, *, default_timezone: str = "UTC"
) -> dict[str, Any]:
    """Build a Google event resource; missing reminders fall back to email/1d + popup/30m."""
    timezone = event.timezone or default_timezone
    reminders = event.reminders or list(DEFAULT_REMINDERS)
    payload: dict[str, Any] = {
        "summary": event.title,
        "start": _boundary_payload(
            event.start_time, is_all_day=event.is_all_day, timezone=timezone
        ),
        "end": _boundary_payload(event.end_time, is_all_day=event.is_all_day, timezone=timezone),
        "attendees": [{"email": email} for email in event.attendees],
        "reminders": {
            "useDefault": False,
            "overrides": [{"method": r.method.value, "minutes": r.minutes} for r in reminders],
        },
    }
    if event.description is not None:
        payload["description"] = event.description
    if event.location is not None:
        payload["location"] = event.location
    if event.color is not None:
        payload["colorId"] = event.color
    if event.recurrence:
        payload["recurrence"] = list(event.recurrence)
    return payload


class GoogleCalendarAdapter(CalendarProviderAdapter):
    """Google Calendar adapter operating on the user's primary calendar."""

    token_url = GOOGLE_OAUTH_TOKEN_URL

    @property
    def name(self) -> CalendarProviderName:
        return CalendarProviderName.GOOGLE

    def get_auth_url(self, user_id: str) -> str:
        query = urlencode(
            {
                "client_id": self._oauth.client_id,
                "redirect_uri": self._oauth.redirect_uri,
                "response_type": "code",
                "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
                "access_type": "offline",
                "prompt": "consent",
                "state": user_id,
            }
        )
        return f"{GOOGLE_OAUTH_AUTHORIZE_URL}?{query}"

    def _token_request_data(self, *, grant_type: str, value: str) -> dict[str, str]:
        data = {
            "client_id": self._oauth.client_id,
            "client_secret": self._oauth.client_secret,
            "grant_type": grant_type,
        }
        if grant_type == "authorization_code":
            data["code"] = value
            data["redirect_uri"] = self._oauth.redirect_uri
        else:
            data["refresh_token"] = value
        return data

    def _events_url(self, event_id: str | None = None) -> str:
        url = f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/{PRIMARY_CALENDAR_ID}/events"
        if event_id is not None:
            url = f"{url}/{quote(event_id, safe='')}"
        return url

    def _to_event(self, payload: dict[str, Any]) -> CalendarEvent:
        event = google_event_to_calendar_event(payload, default_timezone=self._default_timezone)
        if event is None:
            raise ProviderAPIError(
                provider=self.name,
                status_code=None,
                message="Google returned an event without an id or a cancelled event",
            )
        return event

    async def create_event(self, user_id: str, event: CalendarEvent) -> CalendarEvent:
        payload = await self._request_json(
            user_id,
            "POST",
            self._events_url(),
            json_body=calendar_event_to_google_payload(
                event, default_timezone=self._default_timezone
            ),
        )
        created = self._to_event(payload)
        logger.info("Google event created: user=%s event_id=%s", user_id, created.external_id)
        return created

    async def update_event(
        self, user_id: str, event_id: str, update: CalendarEventUpdate
    ) -> CalendarEvent:
        existing = await self._request_json(user_id, "GET", self._events_url(event_id))
        changes = update.changes()
        existing_start = existing.get("start") if isinstance(existing.get("start"), dict) else {}
        timezone = (
            changes.get("timezone") or existing_start.get("timeZone") or self._default_timezone
        )

        merged = dict(existing)
        if "title" in changes:
            merged["summary"] = changes["title"]
        if "description" in changes:
            merged["description"] = changes["description"]
        if "location" in changes:
            merged["location"] = changes["location"]
        if "start_time" in changes:
            merged["start"] = _boundary_payload(
                changes["start_time"], is_all_day=False, timezone=timezone
            )
        elif "timezone" in changes and isinstance(merged.get("start"), dict):
            merged["start"] = {**merged["start"], "timeZone": timezone}
        if "end_time" in changes:
            merged["end"] = _boundary_payload(
                changes["end_time"], is_all_day=False, timezone=timezone
            )
        elif "timezone" in changes and isinstance(merged.get("end"), dict):
            merged["end"] = {**merged["end"], "timeZone": timezone}

        payload = await self._request_json(
            user_id, "PUT", self._events_url(event_id), json_body=merged
        )
        return self._to_event(payload)

    async def delete_event(self, user_id: str, event_id: str) -> None:
        try:
            await self._request_json(user_id, "DELETE", self._events_url(event_id))
        except ProviderAPIError as exc:
            if exc.status_code in (404, 410):
                logger.debug(
                    "Google event already deleted: user=%s event_id=%s", user_id, event_id
                )
                return
            raise

    async def _list_events(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        payload = await self._request_json(
            user_id,
            "GET",
            self._events_url(),
            params={
                "timeMin": _google_rfc3339(start),
                "timeMax": _google_rfc3339(end),
                "singleEvents": "true",
                "showDeleted": "false",
                "orderBy": "startTime",
                "maxResults": MAX_RESULTS,
            },
        )
        items = payload.get("items", [])
        if not isinstance(items, list):
            raise ProviderAPIError(
                provider=self.name,
                status_code=None,
                message="events list payload has no items array",
            )

        events: list[CalendarEvent] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                event = google_event_to_calendar_event(
                    item, default_timezone=self._default_timezone
                )
            except (ValueError, ValidationError) as exc:
                logger.warning("Skipping malformed Google event %s: %s", item.get("id"), exc)
                continue
            if event is not None:
                events.append(event)
        return events

    async def sync_events(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        return await self._list_events(user_id, start, end)

    async def check_conflicts(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        start = ensure_aware(start)
        end = ensure_aware(end)
        return [
            event
            for event in await self._list_events(user_id, start, end)
            if not event.is_all_day and event.start_time < end and event.end_time > start
        ]
