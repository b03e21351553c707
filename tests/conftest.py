"""Shared test fixtures for the jobai_calendar test suite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import pytest

from jobai_calendar.calendar.models import CalendarEvent, CalendarProviderName
from jobai_calendar.testing import InMemoryCalendarStore


@pytest.fixture
def make_event() -> Callable[..., CalendarEvent]:
    """Factory for timed canonical events with unique external ids."""
    counter = iter(range(1, 10_000))

    def _make(
        start: datetime,
        end: datetime,
        title: str = "Focus time",
        *,
        external_id: str | None = None,
        provider: CalendarProviderName | None = CalendarProviderName.GOOGLE,
        **fields,
    ) -> CalendarEvent:
        return CalendarEvent(
            external_id=external_id or f"evt-{next(counter)}",
            provider=provider,
            title=title,
            start_time=start,
            end_time=end,
            **fields,
        )

    return _make


@pytest.fixture
def store() -> InMemoryCalendarStore:
    return InMemoryCalendarStore()
