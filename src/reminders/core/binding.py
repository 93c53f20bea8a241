"""Event-notification binding: attach/detach lifecycle around engine + trigger.

A binding ties one live event source to one ``ReconciliationEngine``. The host
calls ``deliver()`` on every observed change to its event list; the binding
debounces the snapshots and lets the engine reconcile the newest one.

``attach()`` creates fresh state and returns it; ``detach()`` discards any
pending pass, supersedes an in-flight one and clears local tracking. Use
``bind()`` (or the binding itself as an async context manager) so that detach
runs on every teardown path, error paths included.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import datetime

from reminders.config import BindingConfig
from reminders.core.engine import PassResult, ReconciliationEngine
from reminders.core.logging import set_binding_context
from reminders.core.metrics import ReminderMetrics
from reminders.core.trigger import DEFAULT_WINDOW_SECONDS, DebouncedTrigger
from reminders.gateway.base import SchedulingGateway
from reminders.models import Event, ReconciliationState

logger = logging.getLogger(__name__)


class BindingStateError(RuntimeError):
    """Raised when a binding is used outside its attached lifetime."""


class EventNotificationBinding:
    """Keeps reminders for one event source in step with its event list.

    Parameters
    ----------
    gateway:
        Batched scheduling capability shared by every pass of this binding.
    name:
        Binding name used in logs, spans and metric labels.
    enabled:
        Disabled bindings accept deliveries but never reconcile.
    debounce_s:
        Quiescence window before a pass runs.
    clock:
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        gateway: SchedulingGateway,
        *,
        name: str = "default",
        enabled: bool = True,
        debounce_s: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], datetime] | None = None,
        metrics: ReminderMetrics | None = None,
    ) -> None:
        self._gateway = gateway
        self._name = name
        self._enabled = enabled
        self._debounce_s = debounce_s
        self._clock = clock
        self._metrics = metrics
        self._engine: ReconciliationEngine | None = None
        self._trigger: DebouncedTrigger[list[Event]] | None = None
        self._last_snapshot: list[Event] | None = None
        self.last_result: PassResult | None = None

    @classmethod
    def from_config(
        cls,
        gateway: SchedulingGateway,
        config: BindingConfig,
        **kwargs,
    ) -> EventNotificationBinding:
        """Build a binding from the ``[reminders]`` config section."""
        return cls(
            gateway,
            name=config.name,
            enabled=config.enabled,
            debounce_s=config.debounce_s,
            **kwargs,
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def attached(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> ReconciliationEngine:
        if self._engine is None:
            raise BindingStateError(f"Binding {self._name!r} is not attached")
        return self._engine

    @property
    def state(self) -> ReconciliationState:
        return self.engine.state

    @property
    def scheduled_count(self) -> int:
        return self._engine.scheduled_count if self._engine is not None else 0

    async def attach(self, initial_events: Iterable[Event] | None = None) -> ReconciliationState:
        """Start tracking; *initial_events* is delivered as the first snapshot."""
        if self._engine is not None:
            raise BindingStateError(f"Binding {self._name!r} is already attached")

        self._engine = ReconciliationEngine(
            self._gateway,
            name=self._name,
            clock=self._clock,
            metrics=self._metrics,
        )
        self._trigger = DebouncedTrigger(
            self._run_pass,
            window_s=self._debounce_s,
            name=self._name,
        )
        logger.info(
            "Binding %s attached (enabled=%s, debounce_s=%.3f)",
            self._name,
            self._enabled,
            self._debounce_s,
        )
        if initial_events is not None:
            self.deliver(initial_events)
        return self._engine.state

    def deliver(self, events: Iterable[Event]) -> None:
        """Hand the current event list to the binding (non-blocking)."""
        if self._trigger is None:
            raise BindingStateError(f"Binding {self._name!r} is not attached")
        snapshot = list(events)
        self._last_snapshot = snapshot
        if not self._enabled:
            logger.debug("Binding %s disabled; not reconciling", self._name)
            return
        self._trigger.deliver(snapshot)

    def refresh(self) -> None:
        """Re-run the last snapshot without the fingerprint gate.

        Retries events whose previous schedule attempt failed even though
        their content did not change.
        """
        engine = self.engine
        engine.force_refresh()
        if self._last_snapshot is not None:
            self.deliver(self._last_snapshot)

    async def _run_pass(self, snapshot: list[Event]) -> None:
        engine = self._engine
        if engine is None:
            return
        set_binding_context(self._name)
        self.last_result = await engine.reconcile(snapshot)

    async def wait_idle(self) -> None:
        """Wait for any armed timer and in-flight pass to settle."""
        if self._trigger is not None:
            await self._trigger.wait_idle()

    async def detach(self) -> None:
        """Stop tracking. Best-effort and idempotent; never raises to the host.

        Platform notifications stay scheduled; only local tracking is dropped.
        """
        trigger, self._trigger = self._trigger, None
        engine, self._engine = self._engine, None
        self._last_snapshot = None
        if trigger is not None:
            try:
                await trigger.aclose()
            except Exception:
                logger.exception("Failed to close trigger for binding %s", self._name)
        if engine is not None:
            engine.detach()

    async def __aenter__(self) -> EventNotificationBinding:
        if self._engine is None:
            await self.attach()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.detach()


@asynccontextmanager
async def bind(
    gateway: SchedulingGateway,
    initial_events: Iterable[Event] | None = None,
    **kwargs,
) -> AsyncIterator[EventNotificationBinding]:
    """Attach a binding for the duration of the ``async with`` block."""
    binding = EventNotificationBinding(gateway, **kwargs)
    await binding.attach(initial_events)
    try:
        yield binding
    finally:
        await binding.detach()
