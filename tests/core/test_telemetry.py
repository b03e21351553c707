"""Tests for jobai_calendar.core.telemetry and the spans emitted by sync."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

import jobai_calendar.core.telemetry as _telemetry_mod
from jobai_calendar.calendar.models import CalendarEvent, CalendarProviderName
from jobai_calendar.calendar.providers.registry import ProviderRegistry
from jobai_calendar.calendar.sync import CalendarSyncService
from jobai_calendar.core.telemetry import get_tracer, init_telemetry
from jobai_calendar.testing import StaticProviderAdapter

pytestmark = pytest.mark.unit


def _reset_otel_global_state():
    """Reset the global tracer provider and this module's install guard."""
    trace._TRACER_PROVIDER_SET_ONCE = trace.Once()
    trace._TRACER_PROVIDER = None
    _telemetry_mod._tracer_provider_installed = False


@pytest.fixture(autouse=True)
def _clean_tracer_provider():
    _reset_otel_global_state()
    yield
    _reset_otel_global_state()


@pytest.fixture
def exporter() -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return exporter


class TestInitTelemetry:
    def test_noop_without_endpoint(self, monkeypatch):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
        tracer = init_telemetry("jobai-calendar-test")
        with tracer.start_as_current_span("noop") as span:
            span.set_attribute("k", "v")
        assert _telemetry_mod._tracer_provider_installed is False

    def test_installs_provider_once(self, monkeypatch):
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
        init_telemetry("jobai-calendar-test")
        first = trace.get_tracer_provider()
        init_telemetry("jobai-calendar-test")

        assert _telemetry_mod._tracer_provider_installed is True
        assert isinstance(first, TracerProvider)
        assert trace.get_tracer_provider() is first
        first.shutdown()

    def test_get_tracer_uses_current_provider(self, exporter):
        with get_tracer().start_as_current_span("calendar.test"):
            pass
        assert [s.name for s in exporter.get_finished_spans()] == ["calendar.test"]


class TestSyncSpans:
    async def test_sync_emits_parent_and_provider_spans(self, exporter, store):
        store.connect("u1", CalendarProviderName.GOOGLE)
        start = datetime(2025, 1, 6, 9, tzinfo=UTC)
        registry = ProviderRegistry()
        registry.register(
            StaticProviderAdapter(
                CalendarProviderName.GOOGLE,
                [
                    CalendarEvent(
                        external_id="g1", start_time=start, end_time=start.replace(hour=10)
                    )
                ],
                store=store,
            )
        )
        service = CalendarSyncService(store=store, registry=registry)

        await service.sync_all_calendars("u1", start.replace(hour=0), start.replace(day=7))

        spans = {s.name: s for s in exporter.get_finished_spans()}
        parent = spans["calendar.sync_all"]
        child = spans["calendar.sync_provider"]
        assert child.parent.span_id == parent.context.span_id
        assert child.attributes["calendar.provider"] == "google"
        assert child.attributes["calendar.events_count"] == 1
        assert parent.attributes["calendar.total_events"] == 1
        assert parent.attributes["calendar.user_id"] == "u1"
