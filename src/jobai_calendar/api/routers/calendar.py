"""Calendar integration endpoints.

Provides:

- ``router``: user-scoped calendar endpoints at ``/calendar``

The caller is identified by the ``X-User-Id`` header.  OAuth, event CRUD and
disconnect go straight to the provider adapter; sync, conflict checks and
slot search go through ``CalendarSyncService``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from jobai_calendar.api.deps import (
    get_current_user_id,
    get_provider_registry,
    get_sync_service,
)
from jobai_calendar.api.models.calendar import (
    AuthUrlResponse,
    AvailableSlotsRequest,
    ConflictCheckRequest,
    CreateEventRequest,
    OAuthCallbackRequest,
    SuccessResponse,
    SyncRequest,
)
from jobai_calendar.calendar.errors import AuthError
from jobai_calendar.calendar.models import (
    CalendarEvent,
    CalendarEventUpdate,
    ConflictCheckResult,
    Slot,
    SyncStatus,
)
from jobai_calendar.calendar.providers.registry import ProviderRegistry
from jobai_calendar.calendar.sync import CalendarSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar"])


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/{provider}", response_model=AuthUrlResponse)
async def get_auth_url(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    registry: ProviderRegistry = Depends(get_provider_registry),
) -> AuthUrlResponse:
    """Return the provider's OAuth consent URL for the caller."""
    adapter = registry.get(provider)
    return AuthUrlResponse(auth_url=adapter.get_auth_url(user_id))


@router.post("/callback/{provider}", response_model=SuccessResponse)
async def oauth_callback(
    provider: str,
    body: OAuthCallbackRequest,
    user_id: str = Depends(get_current_user_id),
    registry: ProviderRegistry = Depends(get_provider_registry),
) -> SuccessResponse:
    """Exchange the authorization code and store the caller's integration."""
    adapter = registry.get(provider)
    if body.state != user_id:
        raise AuthError("OAuth state does not match the authenticated user", provider=provider)
    await adapter.handle_callback(body.code, user_id)
    logger.info("Connected %s calendar for user %s", adapter.name, user_id)
    return SuccessResponse()


@router.delete("/disconnect/{provider}", response_model=SuccessResponse)
async def disconnect(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    registry: ProviderRegistry = Depends(get_provider_registry),
) -> SuccessResponse:
    adapter = registry.get(provider)
    await adapter.disconnect(user_id)
    return SuccessResponse()


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


@router.post("/sync", response_model=SyncStatus)
async def sync_calendars(
    body: SyncRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
) -> SyncStatus:
    """Sync every connected calendar; per-provider failures are reported, not raised."""
    body = body or SyncRequest()
    return await service.sync_all_calendars(user_id, body.start_date, body.end_date)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@router.post("/events/{provider}", response_model=CalendarEvent)
async def create_event(
    provider: str,
    body: CreateEventRequest,
    user_id: str = Depends(get_current_user_id),
    registry: ProviderRegistry = Depends(get_provider_registry),
) -> CalendarEvent:
    adapter = registry.get(provider)
    return await adapter.create_event(user_id, body.to_event())


@router.put("/events/{provider}/{event_id}", response_model=CalendarEvent)
async def update_event(
    provider: str,
    event_id: str,
    body: CalendarEventUpdate,
    user_id: str = Depends(get_current_user_id),
    registry: ProviderRegistry = Depends(get_provider_registry),
) -> CalendarEvent:
    """Merge the supplied fields into the provider's copy of the event."""
    adapter = registry.get(provider)
    return await adapter.update_event(user_id, event_id, body)


@router.delete("/events/{provider}/{event_id}", response_model=SuccessResponse)
async def delete_event(
    provider: str,
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: ProviderRegistry = Depends(get_provider_registry),
) -> SuccessResponse:
    adapter = registry.get(provider)
    await adapter.delete_event(user_id, event_id)
    return SuccessResponse()


# ---------------------------------------------------------------------------
# Scheduling assistance
# ---------------------------------------------------------------------------


@router.post("/conflicts/check", response_model=ConflictCheckResult)
async def check_conflicts(
    body: ConflictCheckRequest,
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
) -> ConflictCheckResult:
    return await service.check_new_event_conflicts(
        user_id,
        body.start_time,
        body.end_time,
        body.exclude_event_id,
        attendee_timezones=body.attendee_timezones,
    )


@router.post("/slots/available", response_model=list[Slot])
async def available_slots(
    body: AvailableSlotsRequest,
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
) -> list[Slot]:
    return await service.find_available_slots(
        user_id,
        body.search_start,
        body.duration,
        body.search_start,
        body.search_end,
    )
