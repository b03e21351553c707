"""Microsoft Graph (Outlook) calendar adapter.

Writes send UTC wall-clock times with ``timeZone: "UTC"``; reads ask Graph to
render times in UTC via the ``Prefer: outlook.timezone`` header, so every
``dateTime`` returned is an offset-less UTC string.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
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
from jobai_calendar.calendar.timezones import ensure_aware

logger = logging.getLogger(__name__)

MICROSOFT_AUTHORITY_URL = "https://login.microsoftonline.com"
GRAPH_API_BASE_URL = "https://graph.microsoft.com/v1.0"
OUTLOOK_SCOPES = ("offline_access", "Calendars.ReadWrite", "User.Read")
DEFAULT_REMINDER_MINUTES = 15
MAX_RESULTS = 250

_UTC_PREFER_HEADER = {"Prefer": 'outlook.timezone="UTC"'}
# Graph emits 7 fractional digits; datetime accepts at most 6.
_FRACTION_PATTERN = re.compile(r"(\.\d{6})\d+")


def _graph_datetime(value: datetime) -> dict[str, str]:
    utc_value = ensure_aware(value).astimezone(UTC).replace(tzinfo=None)
    return {"dateTime": utc_value.isoformat(timespec="seconds"), "timeZone": "UTC"}


def _parse_graph_datetime(payload: Any) -> datetime:
    if not isinstance(payload, dict) or not isinstance(payload.get("dateTime"), str):
        raise ValueError("Graph event boundary is missing dateTime")
    raw = _FRACTION_PATTERN.sub(r"\1", payload["dateTime"].strip())
    if raw.endswith("Z"):
        raw = raw[:-1]
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        # Only UTC is requested via the Prefer header.
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_optional_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    raw = _FRACTION_PATTERN.sub(r"\1", value.strip())
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return ensure_aware(datetime.fromisoformat(raw))


def outlook_event_to_calendar_event(payload: dict[str, Any]) -> CalendarEvent | None:
    """Convert a Graph event resource; cancelled or id-less events return None."""
    event_id = payload.get("id")
    if not isinstance(event_id, str) or not event_id.strip():
        return None
    if payload.get("isCancelled"):
        return None

    body = payload.get("body")
    location = payload.get("location")
    attendees = [
        attendee["emailAddress"]["address"]
        for attendee in payload.get("attendees") or []
        if isinstance(attendee, dict)
        and isinstance(attendee.get("emailAddress"), dict)
        and isinstance(attendee["emailAddress"].get("address"), str)
    ]
    reminders: list[Reminder] = []
    if payload.get("isReminderOn") and isinstance(payload.get("reminderMinutesBeforeStart"), int):
        reminders.append(
            Reminder(method=ReminderMethod.POPUP, minutes=payload["reminderMinutesBeforeStart"])
        )

    return CalendarEvent(
        external_id=event_id,
        provider=CalendarProviderName.OUTLOOK,
        title=payload.get("subject"),
        description=body.get("content") if isinstance(body, dict) else None,
        location=location.get("displayName") if isinstance(location, dict) else None,
        start_time=_parse_graph_datetime(payload.get("start")),
        end_time=_parse_graph_datetime(payload.get("end")),
        timezone="UTC",
        is_all_day=bool(payload.get("isAllDay", False)),
        attendees=attendees,
        reminders=reminders,
        html_link=payload.get("webLink"),
        status=(
            EventStatus.TENTATIVE if payload.get("showAs") == "tentative" else EventStatus.CONFIRMED
        ),
        created=_parse_optional_timestamp(payload.get("createdDateTime")),
        updated=_parse_optional_timestamp(payload.get("lastModifiedDateTime")),
        metadata={
            key: payload[key]
            for key in ("showAs", "seriesMasterId", "iCalUId", "originalStartTimeZone")
            if key in payload
        },
    )


def calendar_event_to_outlook_payload(event: CalendarEvent) -> dict[str, Any]:
    reminder_minutes = event.reminders[0].minutes if event.reminders else DEFAULT_REMINDER_MINUTES
    payload: dict[str, Any] = {
        "subject": event.title,
        "body": {"contentType": "HTML", "content": event.description or ""},
        "start": _graph_datetime(event.start_time),
        "end": _graph_datetime(event.end_time),
        "isAllDay": event.is_all_day,
        "attendees": [
            {"emailAddress": {"address": email}, "type": "required"} for email in event.attendees
        ],
        "isReminderOn": True,
        "reminderMinutesBeforeStart": reminder_minutes,
        "showAs": "busy",
    }
    if event.location is not None:
        payload["location"] = {"displayName": event.location}
    return payload


class OutlookCalendarAdapter(CalendarProviderAdapter):
    """Outlook/Microsoft 365 adapter operating on the signed-in user's default calendar."""

    @property
    def name(self) -> CalendarProviderName:
        return CalendarProviderName.OUTLOOK

    @property
    def _authority(self) -> str:
        return f"{MICROSOFT_AUTHORITY_URL}/{self._oauth.tenant or 'common'}/oauth2/v2.0"

    @property
    def token_url(self) -> str:  # type: ignore[override]
        return f"{self._authority}/token"

    def get_auth_url(self, user_id: str) -> str:
        query = urlencode(
            {
                "client_id": self._oauth.client_id,
                "response_type": "code",
                "redirect_uri": self._oauth.redirect_uri,
                "response_mode": "query",
                "scope": " ".join(OUTLOOK_SCOPES),
                "state": user_id,
            }
        )
        return f"{self._authority}/authorize?{query}"

    def _token_request_data(self, *, grant_type: str, value: str) -> dict[str, str]:
        data = {
            "client_id": self._oauth.client_id,
            "client_secret": self._oauth.client_secret,
            "grant_type": grant_type,
            "scope": " ".join(OUTLOOK_SCOPES),
        }
        if grant_type == "authorization_code":
            data["code"] = value
            data["redirect_uri"] = self._oauth.redirect_uri
        else:
            data["refresh_token"] = value
        return data

    def _event_url(self, event_id: str | None = None) -> str:
        if event_id is None:
            return f"{GRAPH_API_BASE_URL}/me/events"
        return f"{GRAPH_API_BASE_URL}/me/events/{quote(event_id, safe='')}"

    def _to_event(self, payload: dict[str, Any]) -> CalendarEvent:
        event = outlook_event_to_calendar_event(payload)
        if event is None:
            raise ProviderAPIError(
                provider=self.name,
                status_code=None,
                message="Graph returned a cancelled event or one without an id",
            )
        return event

    async def create_event(self, user_id: str, event: CalendarEvent) -> CalendarEvent:
        payload = await self._request_json(
            user_id,
            "POST",
            self._event_url(),
            json_body=calendar_event_to_outlook_payload(event),
            extra_headers=_UTC_PREFER_HEADER,
        )
        created = self._to_event(payload)
        logger.info("Outlook event created: user=%s event_id=%s", user_id, created.external_id)
        return created

    async def update_event(
        self, user_id: str, event_id: str, update: CalendarEventUpdate
    ) -> CalendarEvent:
        # Fetch first so a missing event surfaces as a 404 before any write.
        await self._request_json(
            user_id, "GET", self._event_url(event_id), extra_headers=_UTC_PREFER_HEADER
        )
        changes = update.changes()
        patch: dict[str, Any] = {}
        if "title" in changes:
            patch["subject"] = changes["title"]
        if "description" in changes:
            patch["body"] = {"contentType": "HTML", "content": changes["description"] or ""}
        if "location" in changes:
            patch["location"] = {"displayName": changes["location"] or ""}
        if "start_time" in changes:
            patch["start"] = _graph_datetime(changes["start_time"])
        if "end_time" in changes:
            patch["end"] = _graph_datetime(changes["end_time"])

        payload = await self._request_json(
            user_id,
            "PATCH",
            self._event_url(event_id),
            json_body=patch,
            extra_headers=_UTC_PREFER_HEADER,
        )
        return self._to_event(payload)

    async def delete_event(self, user_id: str, event_id: str) -> None:
        try:
            await self._request_json(user_id, "DELETE", self._event_url(event_id))
        except ProviderAPIError as exc:
            if exc.status_code == 404:
                logger.debug(
                    "Outlook event already deleted: user=%s event_id=%s", user_id, event_id
                )
                return
            raise

    async def _calendar_view(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        payload = await self._request_json(
            user_id,
            "GET",
            f"{GRAPH_API_BASE_URL}/me/calendarview",
            params={
                "startDateTime": ensure_aware(start).astimezone(UTC).isoformat(),
                "endDateTime": ensure_aware(end).astimezone(UTC).isoformat(),
                "$orderby": "start/dateTime",
                "$top": MAX_RESULTS,
            },
            extra_headers=_UTC_PREFER_HEADER,
        )
        items = payload.get("value", [])
        if not isinstance(items, list):
            raise ProviderAPIError(
                provider=self.name,
                status_code=None,
                message="calendarView payload has no value array",
            )
        return [item for item in items if isinstance(item, dict)]

    def _convert_items(self, items: list[dict[str, Any]]) -> list[CalendarEvent]:
        events: list[CalendarEvent] = []
        for item in items:
            try:
                event = outlook_event_to_calendar_event(item)
            except (ValueError, ValidationError) as exc:
                logger.warning("Skipping malformed Outlook event %s: %s", item.get("id"), exc)
                continue
            if event is not None:
                events.append(event)
        return events

    async def sync_events(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        return self._convert_items(await self._calendar_view(user_id, start, end))

    async def check_conflicts(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        start = ensure_aware(start)
        end = ensure_aware(end)
        items = await self._calendar_view(user_id, start, end)
        busy = [item for item in items if item.get("showAs") == "busy"]
        return [
            event
            for event in self._convert_items(busy)
            if not event.is_all_day and event.start_time < end and event.end_time > start
        ]
