"""Tests for the attach/deliver/detach lifecycle of EventNotificationBinding."""

from __future__ import annotations

import asyncio

import pytest

from reminders.config import BindingConfig
from reminders.core.binding import BindingStateError, EventNotificationBinding, bind
from reminders.core.engine import PassOutcome
from tests._fakes import NOW, FakeGateway, make_event

pytestmark = pytest.mark.unit


def _binding(gateway: FakeGateway, **kwargs) -> EventNotificationBinding:
    kwargs.setdefault("debounce_s", 0.01)
    return EventNotificationBinding(gateway, name="test", clock=lambda: NOW, **kwargs)


class TestAttach:
    async def test_attach_returns_fresh_state(self, gateway):
        binding = _binding(gateway)

        state = await binding.attach()

        assert binding.attached
        assert state.known_scheduled == {}
        assert state.last_fingerprint == ""
        await binding.detach()

    async def test_initial_events_are_reconciled(self, gateway):
        binding = _binding(gateway)

        await binding.attach([make_event("A"), make_event("B")])
        await binding.wait_idle()

        assert binding.scheduled_count == 2
        assert binding.last_result is not None
        assert binding.last_result.outcome == PassOutcome.COMPLETED
        await binding.detach()

    async def test_double_attach_raises(self, gateway):
        binding = _binding(gateway)
        await binding.attach()

        with pytest.raises(BindingStateError, match="already attached"):
            await binding.attach()
        await binding.detach()

    async def test_deliver_before_attach_raises(self, gateway):
        binding = _binding(gateway)

        with pytest.raises(BindingStateError, match="not attached"):
            binding.deliver([make_event("A")])

    def test_engine_access_while_detached_raises(self, gateway):
        binding = _binding(gateway)

        assert binding.scheduled_count == 0
        with pytest.raises(BindingStateError):
            _ = binding.state


class TestDeliver:
    async def test_burst_of_deliveries_runs_one_pass(self, gateway):
        binding = _binding(gateway, debounce_s=0.05)
        await binding.attach()

        binding.deliver([make_event("A")])
        binding.deliver([make_event("A"), make_event("B")])
        binding.deliver([make_event("B")])
        await binding.wait_idle()

        assert gateway.schedule_calls == [["B"]]
        assert gateway.cancel_calls == []
        await binding.detach()

    async def test_disabled_binding_never_reconciles(self, gateway):
        binding = _binding(gateway, enabled=False)
        await binding.attach([make_event("A")])

        binding.deliver([make_event("B")])
        await binding.wait_idle()

        assert gateway.calls == 0
        assert binding.last_result is None
        await binding.detach()

    async def test_refresh_retries_failed_events(self, gateway):
        binding = _binding(gateway)
        gateway.empty_for.add("A")
        await binding.attach([make_event("A")])
        await binding.wait_idle()
        gateway.empty_for.clear()

        binding.refresh()
        await binding.wait_idle()

        assert gateway.schedule_calls == [["A"], ["A"]]
        assert binding.state.is_scheduled("A")
        await binding.detach()

    async def test_refresh_during_in_flight_pass_is_not_lost(self):
        class _FailsFirstGateway(FakeGateway):
            async def schedule_batch(self, events):
                first = not self.schedule_calls
                batch = await super().schedule_batch(events)
                return {event_id: [] for event_id in batch} if first else batch

        gateway = _FailsFirstGateway()
        gateway.block = asyncio.Event()
        binding = _binding(gateway)
        await binding.attach([make_event("A")])
        await asyncio.sleep(0.05)

        binding.refresh()
        gateway.block.set()
        await binding.wait_idle()

        assert gateway.schedule_calls == [["A"], ["A"]]
        assert binding.last_result is not None
        assert binding.last_result.outcome == PassOutcome.COMPLETED
        assert binding.state.is_scheduled("A")
        await binding.detach()

    async def test_from_config(self, gateway):
        config = BindingConfig(name="family", enabled=True, debounce_ms=10)
        binding = EventNotificationBinding.from_config(gateway, config, clock=lambda: NOW)

        await binding.attach([make_event("A")])
        await binding.wait_idle()

        assert binding.name == "family"
        assert binding.engine.name == "family"
        assert binding.scheduled_count == 1
        await binding.detach()


class TestDetach:
    async def test_detach_drops_pending_pass(self, gateway):
        binding = _binding(gateway, debounce_s=0.05)
        await binding.attach()

        binding.deliver([make_event("A")])
        await binding.detach()
        await asyncio.sleep(0.1)

        assert gateway.calls == 0
        assert not binding.attached

    async def test_detach_is_idempotent(self, gateway):
        binding = _binding(gateway)
        await binding.attach([make_event("A")])
        await binding.wait_idle()

        await binding.detach()
        await binding.detach()

        assert binding.scheduled_count == 0
        assert gateway.cancel_calls == []

    async def test_detach_supersedes_in_flight_pass(self, gateway):
        binding = _binding(gateway)
        gateway.block = asyncio.Event()
        await binding.attach([make_event("A")])
        await asyncio.sleep(0.05)
        engine = binding.engine

        await binding.detach()
        gateway.block.set()
        await asyncio.sleep(0.01)

        assert binding.last_result is not None
        assert binding.last_result.outcome == PassOutcome.SUPERSEDED
        assert engine.state.known_scheduled == {}

    async def test_reattach_starts_from_scratch(self, gateway):
        binding = _binding(gateway)
        await binding.attach([make_event("A")])
        await binding.wait_idle()
        await binding.detach()

        state = await binding.attach([make_event("A")])
        await binding.wait_idle()

        assert gateway.schedule_calls == [["A"], ["A"]]
        assert state.is_scheduled("A")
        await binding.detach()


class TestContextManagers:
    async def test_async_with_detaches_on_exit(self, gateway):
        binding = _binding(gateway)

        async with binding as active:
            assert active.attached
            active.deliver([make_event("A")])
            await active.wait_idle()

        assert not binding.attached

    async def test_bind_detaches_on_error(self, gateway):
        captured: list[EventNotificationBinding] = []

        with pytest.raises(RuntimeError, match="host failed"):
            async with bind(
                gateway,
                [make_event("A")],
                name="test",
                debounce_s=0.05,
                clock=lambda: NOW,
            ) as binding:
                captured.append(binding)
                raise RuntimeError("host failed")

        await asyncio.sleep(0.1)
        assert not captured[0].attached
        assert gateway.calls == 0
