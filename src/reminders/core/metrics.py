"""OpenTelemetry metrics instruments for reminder reconciliation.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter instance around.

Initialization
--------------
Call ``init_metrics(service_name)`` once during process startup. When
OTEL_EXPORTER_OTLP_ENDPOINT is not set, the global no-op MeterProvider is used
and all recordings are silent.

Instruments
-----------
  reminders.passes_total                    Counter  (label: outcome)
      Reconciliation passes by outcome (skipped, completed, degraded,
      aborted, superseded).

  reminders.notifications_scheduled_total   Counter
      Events that gained a live reminder.

  reminders.events_cancelled_total          Counter
      Events whose reminders were cancelled.

  reminders.gateway_errors_total            Counter  (label: operation=schedule|cancel)
      Failed gateway batch calls.

  reminders.pass_duration_ms                Histogram
      Duration of non-skipped passes, gateway calls included.

All instruments carry a ``binding`` label.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "reminders"


def init_metrics(service_name: str) -> metrics.Meter:
    """Initialize OpenTelemetry metrics for the process.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, configures a MeterProvider with a
    periodic OTLP exporter. Otherwise the global no-op provider is kept.
    """
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    # The exporter package is optional; only needed when an endpoint is configured.
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


def _passes_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="reminders.passes_total",
        description="Reconciliation passes by outcome",
        unit="passes",
    )


def _notifications_scheduled_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="reminders.notifications_scheduled_total",
        description="Events that gained a live reminder notification",
        unit="events",
    )


def _events_cancelled_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="reminders.events_cancelled_total",
        description="Events whose reminder notifications were cancelled",
        unit="events",
    )


def _gateway_errors_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="reminders.gateway_errors_total",
        description="Failed scheduling gateway batch calls",
        unit="errors",
    )


def _pass_duration_ms() -> metrics.Histogram:
    return get_meter().create_histogram(
        name="reminders.pass_duration_ms",
        description="Duration of reconciliation passes including gateway calls",
        unit="ms",
    )


class ReminderMetrics:
    """Recording helpers for one binding.

    Instruments are resolved on first use so that a MeterProvider installed
    after construction (e.g. in tests) is still picked up.
    """

    def __init__(self, binding: str) -> None:
        self._attrs = {"binding": binding}
        self.__passes: metrics.Counter | None = None
        self.__scheduled: metrics.Counter | None = None
        self.__cancelled: metrics.Counter | None = None
        self.__gateway_errors: metrics.Counter | None = None
        self.__duration: metrics.Histogram | None = None

    @property
    def _passes(self) -> metrics.Counter:
        if self.__passes is None:
            self.__passes = _passes_total()
        return self.__passes

    @property
    def _scheduled(self) -> metrics.Counter:
        if self.__scheduled is None:
            self.__scheduled = _notifications_scheduled_total()
        return self.__scheduled

    @property
    def _cancelled(self) -> metrics.Counter:
        if self.__cancelled is None:
            self.__cancelled = _events_cancelled_total()
        return self.__cancelled

    @property
    def _gateway_errors(self) -> metrics.Counter:
        if self.__gateway_errors is None:
            self.__gateway_errors = _gateway_errors_total()
        return self.__gateway_errors

    @property
    def _duration(self) -> metrics.Histogram:
        if self.__duration is None:
            self.__duration = _pass_duration_ms()
        return self.__duration

    def record_pass(self, outcome: str) -> None:
        self._passes.add(1, {**self._attrs, "outcome": outcome})

    def record_scheduled(self, count: int) -> None:
        if count:
            self._scheduled.add(count, self._attrs)

    def record_cancelled(self, count: int) -> None:
        if count:
            self._cancelled.add(count, self._attrs)

    def record_gateway_error(self, operation: str) -> None:
        self._gateway_errors.add(1, {**self._attrs, "operation": operation})

    def record_pass_duration(self, duration_ms: float) -> None:
        self._duration.record(duration_ms, self._attrs)
