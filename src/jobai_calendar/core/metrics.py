"""OpenTelemetry metrics instruments for calendar sync.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter instance around.

Initialization
--------------
Call ``init_metrics(service_name)`` once during startup.  When
OTEL_EXPORTER_OTLP_ENDPOINT is not set, the global no-op MeterProvider is
used and all recordings are silent no-ops.

Instruments
-----------
  jobai.calendar.provider_sync_total      Counter  (labels: provider, outcome)
      Provider sync attempts by outcome (success|failure|timeout).

  jobai.calendar.sync_duration_ms         Histogram
      End-to-end ``sync_all_calendars`` duration in milliseconds.

  jobai.calendar.conflicts_detected_total Counter  (label: severity)
      Conflict groups produced by sync runs.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "jobai_calendar"


def init_metrics(service_name: str) -> metrics.Meter:
    """Initialize OpenTelemetry metrics.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, configures a real MeterProvider
    with a periodic OTLP gRPC exporter.  Otherwise, the global no-op
    MeterProvider is used.
    """
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    exporter = OTLPMetricExporter(endpoint=endpoint)
    reader = PeriodicExportingMetricReader(exporter, export_interval_millis=15_000)
    provider = MeterProvider(resource=resource, metric_readers=[reader])

    metrics.set_meter_provider(provider)
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    """Return a Meter from the current global provider (no-op before init)."""
    return metrics.get_meter(_METER_NAME)


def _provider_sync_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="jobai.calendar.provider_sync_total",
        description="Provider sync attempts by outcome",
        unit="syncs",
    )


def _sync_duration_ms() -> metrics.Histogram:
    return get_meter().create_histogram(
        name="jobai.calendar.sync_duration_ms",
        description="Duration of a full multi-provider calendar sync",
        unit="ms",
    )


def _conflicts_detected_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="jobai.calendar.conflicts_detected_total",
        description="Conflict groups detected during calendar syncs",
        unit="conflicts",
    )


class CalendarMetrics:
    """Convenience wrapper around the calendar sync instruments.

    Safe to construct before ``init_metrics`` is called; instruments are
    resolved on first use.
    """

    def __init__(self) -> None:
        self.__provider_sync: metrics.Counter | None = None
        self.__sync_duration: metrics.Histogram | None = None
        self.__conflicts: metrics.Counter | None = None

    @property
    def _provider_sync(self) -> metrics.Counter:
        if self.__provider_sync is None:
            self.__provider_sync = _provider_sync_total()
        return self.__provider_sync

    @property
    def _sync_duration(self) -> metrics.Histogram:
        if self.__sync_duration is None:
            self.__sync_duration = _sync_duration_ms()
        return self.__sync_duration

    @property
    def _conflicts(self) -> metrics.Counter:
        if self.__conflicts is None:
            self.__conflicts = _conflicts_detected_total()
        return self.__conflicts

    def record_provider_sync(self, provider: str, outcome: str) -> None:
        self._provider_sync.add(1, {"provider": str(provider), "outcome": outcome})

    def record_sync_duration(self, duration_ms: float) -> None:
        self._sync_duration.record(duration_ms)

    def record_conflict(self, severity: str) -> None:
        self._conflicts.add(1, {"severity": str(severity)})
