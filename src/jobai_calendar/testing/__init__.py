"""Test support utilities for the jobai_calendar package.

Exports in-memory stand-ins for the event store and provider adapters so the
sync service, the HTTP layer and downstream consumers can be exercised
without PostgreSQL or network access.  Nothing here depends on pytest.
"""

from __future__ import annotations

from jobai_calendar.testing.fakes import InMemoryCalendarStore, StaticProviderAdapter

__all__ = ["InMemoryCalendarStore", "StaticProviderAdapter"]
