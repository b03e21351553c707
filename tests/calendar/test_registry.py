"""Tests for ProviderRegistry and default_registry wiring."""

from __future__ import annotations

import httpx
import pytest

from jobai_calendar.calendar.errors import UnsupportedProviderError
from jobai_calendar.calendar.models import CalendarProviderName
from jobai_calendar.calendar.providers.google import GoogleCalendarAdapter
from jobai_calendar.calendar.providers.outlook import OutlookCalendarAdapter
from jobai_calendar.calendar.providers.registry import ProviderRegistry, default_registry
from jobai_calendar.config import CalendarConfig, OAuthClientConfig
from jobai_calendar.testing import StaticProviderAdapter

pytestmark = pytest.mark.unit


class TestProviderRegistry:
    def test_register_and_get(self):
        registry = ProviderRegistry()
        adapter = StaticProviderAdapter(CalendarProviderName.GOOGLE)
        registry.register(adapter)

        assert registry.get(CalendarProviderName.GOOGLE) is adapter
        assert registry.get("Google") is adapter
        assert CalendarProviderName.GOOGLE in registry
        assert len(registry) == 1
        assert list(registry) == [adapter]

    def test_duplicate_registration_rejected(self):
        registry = ProviderRegistry()
        registry.register(StaticProviderAdapter(CalendarProviderName.GOOGLE))
        with pytest.raises(ValueError, match="already registered"):
            registry.register(StaticProviderAdapter(CalendarProviderName.GOOGLE))

    def test_unknown_name_is_unsupported(self):
        with pytest.raises(UnsupportedProviderError):
            ProviderRegistry().get("icloud")

    def test_known_but_unregistered_is_unsupported(self):
        registry = ProviderRegistry()
        registry.register(StaticProviderAdapter(CalendarProviderName.GOOGLE))
        with pytest.raises(UnsupportedProviderError) as exc_info:
            registry.get("outlook")
        assert exc_info.value.provider == "outlook"

    def test_available_providers_sorted(self):
        registry = ProviderRegistry()
        registry.register(StaticProviderAdapter(CalendarProviderName.OUTLOOK))
        registry.register(StaticProviderAdapter(CalendarProviderName.GOOGLE))
        assert registry.available_providers == [
            CalendarProviderName.GOOGLE,
            CalendarProviderName.OUTLOOK,
        ]


class TestDefaultRegistry:
    def test_wires_both_adapters(self, store):
        config = CalendarConfig(
            google=OAuthClientConfig(client_id="g-id", redirect_uri="https://app.test/g"),
            outlook=OAuthClientConfig(client_id="o-id", tenant="contoso"),
        )
        registry = default_registry(store=store, http_client=httpx.AsyncClient(), config=config)

        assert isinstance(registry.get("google"), GoogleCalendarAdapter)
        assert isinstance(registry.get("outlook"), OutlookCalendarAdapter)
        assert "client_id=g-id" in registry.get("google").get_auth_url("u1")
        assert "/contoso/" in registry.get("outlook").get_auth_url("u1")
