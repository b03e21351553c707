"""Provider-id → adapter mapping used by the sync service and the HTTP layer."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING

from jobai_calendar.calendar.errors import UnsupportedProviderError
from jobai_calendar.calendar.models import CalendarProviderName
from jobai_calendar.calendar.providers.base import CalendarProviderAdapter
from jobai_calendar.calendar.providers.google import GoogleCalendarAdapter
from jobai_calendar.calendar.providers.outlook import OutlookCalendarAdapter

if TYPE_CHECKING:
    import httpx

    from jobai_calendar.calendar.store import CalendarStore
    from jobai_calendar.config import CalendarConfig

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of calendar provider adapters keyed by provider name."""

    def __init__(self) -> None:
        self._adapters: dict[CalendarProviderName, CalendarProviderAdapter] = {}

    def register(self, adapter: CalendarProviderAdapter) -> None:
        if adapter.name in self._adapters:
            raise ValueError(f"Provider already registered: {adapter.name}")
        self._adapters[adapter.name] = adapter
        logger.debug("Registered calendar provider: %s", adapter.name)

    def get(self, provider: CalendarProviderName | str) -> CalendarProviderAdapter:
        name = (
            provider
            if isinstance(provider, CalendarProviderName)
            else CalendarProviderName.parse(provider)
        )
        try:
            return self._adapters[name]
        except KeyError:
            raise UnsupportedProviderError(str(provider)) from None

    def __contains__(self, provider: object) -> bool:
        return provider in self._adapters

    def __iter__(self) -> Iterator[CalendarProviderAdapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)

    @property
    def available_providers(self) -> list[CalendarProviderName]:
        return sorted(self._adapters)


def default_registry(
    *,
    store: CalendarStore,
    http_client: httpx.AsyncClient,
    config: CalendarConfig,
) -> ProviderRegistry:
    """Build a registry with the Google and Outlook adapters wired to *config*."""
    registry = ProviderRegistry()
    common = {
        "store": store,
        "http_client": http_client,
        "default_timezone": config.default_timezone,
        "max_retries": config.max_rate_limit_retries,
        "backoff_seconds": config.retry_backoff_seconds,
    }
    registry.register(GoogleCalendarAdapter(oauth=config.google, **common))
    registry.register(OutlookCalendarAdapter(oauth=config.outlook, **common))
    return registry
