"""Tests for structured logging module."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from reminders.core.binding import EventNotificationBinding
from reminders.core.logging import (
    _NOISE_LOGGERS,
    _binding_context,
    add_binding_context,
    add_otel_context,
    configure_logging,
    get_binding_context,
    set_binding_context,
)
from tests._fakes import NOW, FakeGateway, make_event

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging and binding context between tests."""
    token = _binding_context.set(None)
    yield
    _binding_context.reset(token)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# ContextVar accessors
# ---------------------------------------------------------------------------


class TestBindingContext:
    def test_set_and_get(self):
        set_binding_context("family-calendar")
        assert get_binding_context() == "family-calendar"

    def test_default_is_none(self):
        assert get_binding_context() is None


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


class TestAddBindingContext:
    def test_injects_binding_name(self):
        set_binding_context("work")
        result = add_binding_context(None, "info", {"event": "test"})
        assert result["binding"] == "work"

    def test_handles_unset_context(self):
        result = add_binding_context(None, "info", {"event": "test"})
        assert result["binding"] is None


class TestAddOtelContext:
    def test_zeroed_ids_when_no_span(self):
        result = add_otel_context(None, "info", {"event": "test"})
        assert result["trace_id"] == "0" * 32
        assert result["span_id"] == "0" * 16

    def test_real_ids_when_span_active(self):
        from opentelemetry.sdk.trace import TracerProvider

        provider = TracerProvider()
        tracer = provider.get_tracer("test")
        with tracer.start_as_current_span("reminders.reconcile"):
            result = add_otel_context(None, "info", {"event": "test"})
            assert result["trace_id"] != "0" * 32
            assert len(result["trace_id"]) == 32
            assert len(result["span_id"]) == 16
        provider.shutdown()


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_text_format_installs_console_renderer(self):
        configure_logging(fmt="text")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_format_installs_json_renderer(self):
        configure_logging(fmt="json")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_reconfigure_does_not_stack_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_sets_binding_context(self):
        configure_logging(binding_name="family-calendar")
        assert get_binding_context() == "family-calendar"

    def test_noise_loggers_suppressed(self):
        configure_logging(level="DEBUG")
        for name in _NOISE_LOGGERS:
            assert logging.getLogger(name).level >= logging.WARNING

    def test_log_level_applied(self):
        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_json_record_carries_binding(self, capsys):
        configure_logging(fmt="json", binding_name="family-calendar")

        logging.getLogger("reminders.test").warning("Reminder batch failed: %s", "boom")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "Reminder batch failed: boom"
        assert record["binding"] == "family-calendar"
        assert record["level"] == "warning"
        assert record["logger"] == "reminders.test"


# ---------------------------------------------------------------------------
# Binding passes
# ---------------------------------------------------------------------------


class TestBindingPassRecords:
    async def test_records_from_a_pass_carry_the_binding_name(self, capsys):
        configure_logging(fmt="json")
        binding = EventNotificationBinding(
            FakeGateway(), name="family-calendar", debounce_s=0.01, clock=lambda: NOW
        )

        await binding.attach([make_event("A")])
        await binding.wait_idle()
        await binding.detach()

        records = [json.loads(line) for line in capsys.readouterr().err.strip().splitlines()]
        summaries = [r for r in records if r["event"].startswith("Reconciled family-calendar")]
        assert len(summaries) == 1
        assert summaries[0]["binding"] == "family-calendar"
        assert get_binding_context() is None

    async def test_concurrent_bindings_log_their_own_name(self, capsys):
        configure_logging(fmt="json")
        bindings = [
            EventNotificationBinding(FakeGateway(), name=name, debounce_s=0.01, clock=lambda: NOW)
            for name in ("work", "home")
        ]

        for binding in bindings:
            await binding.attach([make_event("A")])
        for binding in bindings:
            await binding.wait_idle()
            await binding.detach()

        records = [json.loads(line) for line in capsys.readouterr().err.strip().splitlines()]
        for name in ("work", "home"):
            (summary,) = [r for r in records if r["event"].startswith(f"Reconciled {name}:")]
            assert summary["binding"] == name
