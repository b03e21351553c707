"""Fixtures for the calendar API tests.

The app is created with ``manage_runtime=False`` so no database is opened;
the sync service and provider registry are swapped in through
``app.dependency_overrides``.
"""

from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI

from jobai_calendar.api.app import create_app
from jobai_calendar.api.deps import get_provider_registry, get_sync_service
from jobai_calendar.calendar.models import CalendarProviderName
from jobai_calendar.calendar.providers.registry import ProviderRegistry
from jobai_calendar.calendar.sync import CalendarSyncService
from jobai_calendar.config import AppConfig
from jobai_calendar.testing import StaticProviderAdapter


@pytest.fixture
async def google(store):
    adapter = StaticProviderAdapter(CalendarProviderName.GOOGLE, store=store)
    yield adapter
    await adapter.aclose()


@pytest.fixture
async def outlook(store):
    adapter = StaticProviderAdapter(CalendarProviderName.OUTLOOK, store=store)
    yield adapter
    await adapter.aclose()


@pytest.fixture
def registry(google, outlook) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(google)
    registry.register(outlook)
    return registry


@pytest.fixture
def service(store, registry) -> CalendarSyncService:
    return CalendarSyncService(store=store, registry=registry)


@pytest.fixture
def app(service, registry) -> FastAPI:
    app = create_app(AppConfig(), manage_runtime=False)
    app.dependency_overrides[get_sync_service] = lambda: service
    app.dependency_overrides[get_provider_registry] = lambda: registry
    return app


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
        headers={"X-User-Id": "u1"},
    ) as client:
        yield client
