"""Reconciliation engine — keeps scheduled reminders in step with an event snapshot.

One pass:

1. Fingerprint the snapshot; stop if it matches the last processed one.
2. ``to_schedule`` = future events (``start_time > now``) with no record.
3. ``to_cancel`` = recorded event ids absent from the snapshot.
4. One ``schedule_batch`` call for ``to_schedule``; events that came back
   with at least one handle get a record.
5. One ``cancel_batch`` call for ``to_cancel``; on success their records go.
6. Advance the fingerprint, even when a gateway call failed.

Deduplication relies only on the engine's own records, never on the
platform's live schedule. Gateway failures are caught at the pass boundary,
logged, counted and returned on the ``PassResult``; they never reach the host.
Nothing is retried inside a pass: a failed schedule is attempted again only
when the snapshot content changes or after ``force_refresh()``.

Passes are serialized with an ``asyncio.Lock``. ``detach()`` bumps a
generation counter; a pass that was awaiting the gateway when the binding was
detached runs to completion, but its bookkeeping result is discarded.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from opentelemetry import trace

from reminders.core.fingerprint import FingerprintComputationError, fingerprint
from reminders.core.metrics import ReminderMetrics
from reminders.gateway.base import GatewayCancelError, GatewayScheduleError, SchedulingGateway
from reminders.models import Event, ReconciliationState

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class PassOutcome(enum.StrEnum):
    """How a reconciliation pass ended."""

    SKIPPED = "skipped"
    COMPLETED = "completed"
    DEGRADED = "degraded"
    ABORTED = "aborted"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class ReconciliationPlan:
    """The delta a pass would apply."""

    to_schedule: list[Event]
    to_cancel: list[str]

    @property
    def is_empty(self) -> bool:
        return not self.to_schedule and not self.to_cancel


@dataclass
class PassResult:
    """Observable outcome of one pass.

    ``scheduled`` and ``cancelled`` list event ids whose bookkeeping changed;
    ``failed`` lists events the gateway returned no handle for; ``errors``
    holds the gateway or fingerprint errors caught at the pass boundary.
    """

    outcome: PassOutcome
    fingerprint: str | None = None
    scheduled: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)


def _coerce_handles(value: object) -> list[str] | None:
    """Return the handles in *value*, or ``None`` if it is not a sequence of strings."""
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        return None
    if not all(isinstance(handle, str) for handle in value):
        return None
    return list(value)


def plan_pass(
    events: Sequence[Event],
    state: ReconciliationState,
    now: datetime,
) -> ReconciliationPlan:
    """Compute the schedule/cancel delta for *events* against *state*."""
    to_schedule = [
        event
        for event in events
        if event.start_time > now and not state.is_scheduled(event.id)
    ]
    current_ids = {event.id for event in events}
    to_cancel = [event_id for event_id in state.known_scheduled if event_id not in current_ids]
    return ReconciliationPlan(to_schedule=to_schedule, to_cancel=to_cancel)


class ReconciliationEngine:
    """Owns one ``ReconciliationState`` and applies passes against a gateway.

    Parameters
    ----------
    gateway:
        Batched scheduling capability.
    name:
        Binding name used in logs, spans and metric labels.
    state:
        Starting state; a fresh one is created when omitted.
    clock:
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        gateway: SchedulingGateway,
        *,
        name: str = "default",
        state: ReconciliationState | None = None,
        clock: Callable[[], datetime] | None = None,
        metrics: ReminderMetrics | None = None,
    ) -> None:
        self._gateway = gateway
        self._name = name
        self._state = state if state is not None else ReconciliationState()
        self._clock = clock or _utc_now
        self._metrics = metrics or ReminderMetrics(binding=name)
        self._lock = asyncio.Lock()
        self._generation = 0
        self._force_next = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> ReconciliationState:
        return self._state

    @property
    def scheduled_count(self) -> int:
        return self._state.scheduled_count

    @property
    def busy(self) -> bool:
        """True while a pass holds the engine."""
        return self._lock.locked()

    def force_refresh(self) -> None:
        """Let the next pass run even if the snapshot is unchanged.

        The request is applied by the pass itself under the engine lock, so a
        pass that is already in flight cannot overwrite it.
        """
        self._force_next = True

    def detach(self) -> None:
        """Clear local tracking and supersede any in-flight pass.

        Platform notifications are not cancelled.
        """
        self._generation += 1
        self._force_next = False
        dropped = self._state.scheduled_count
        self._state.clear()
        logger.info("Binding %s detached; dropped %d tracked event(s)", self._name, dropped)

    async def reconcile(
        self,
        events: Iterable[Event],
        *,
        now: datetime | None = None,
    ) -> PassResult:
        """Run one pass over *events*. Never raises for gateway or input errors."""
        snapshot = list(events)
        now = now or self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        async with self._lock:
            return await self._run_pass(snapshot, now, self._generation)

    async def _run_pass(
        self,
        events: list[Event],
        now: datetime,
        generation: int,
    ) -> PassResult:
        state = self._state

        try:
            current_fingerprint = fingerprint(events)
        except FingerprintComputationError as exc:
            logger.error("Reconciliation pass for %s aborted: %s", self._name, exc)
            self._metrics.record_pass(PassOutcome.ABORTED)
            return PassResult(outcome=PassOutcome.ABORTED, errors=[exc])

        if not self._force_next and current_fingerprint == state.last_fingerprint:
            logger.debug("Event snapshot for %s unchanged; skipping pass", self._name)
            self._metrics.record_pass(PassOutcome.SKIPPED)
            return PassResult(outcome=PassOutcome.SKIPPED, fingerprint=current_fingerprint)
        self._force_next = False

        started = time.monotonic()
        tracer = trace.get_tracer("reminders")
        with tracer.start_as_current_span("reminders.reconcile") as span:
            span.set_attribute("binding", self._name)
            span.set_attribute("events", len(events))

            plan = plan_pass(events, state, now)
            span.set_attribute("to_schedule", len(plan.to_schedule))
            span.set_attribute("to_cancel", len(plan.to_cancel))

            result = PassResult(outcome=PassOutcome.COMPLETED, fingerprint=current_fingerprint)
            new_records = await self._schedule(plan.to_schedule, result)
            cancelled = await self._cancel(plan.to_cancel, result)

            if generation != self._generation:
                logger.info(
                    "Reconciliation pass for %s superseded by detach; discarding result",
                    self._name,
                )
                result.outcome = PassOutcome.SUPERSEDED
                result.scheduled.clear()
                result.cancelled.clear()
                self._metrics.record_pass(result.outcome)
                return result

            for event_id, handles in new_records.items():
                state.record(event_id, handles)
            state.forget(cancelled)
            state.last_fingerprint = current_fingerprint

            result.scheduled = list(new_records)
            result.cancelled = cancelled
            if result.errors:
                result.outcome = PassOutcome.DEGRADED

            span.set_attribute("scheduled", len(result.scheduled))
            span.set_attribute("cancelled", len(result.cancelled))

        self._metrics.record_pass(result.outcome)
        self._metrics.record_scheduled(len(result.scheduled))
        self._metrics.record_cancelled(len(result.cancelled))
        self._metrics.record_pass_duration((time.monotonic() - started) * 1000)

        if not plan.is_empty:
            logger.info(
                "Reconciled %s: scheduled=%d, failed=%d, cancelled=%d, tracked=%d, outcome=%s",
                self._name,
                len(result.scheduled),
                len(result.failed),
                len(result.cancelled),
                state.scheduled_count,
                result.outcome,
            )
        return result

    async def _schedule(self, events: list[Event], result: PassResult) -> dict[str, list[str]]:
        if not events:
            return {}

        requested_ids = [event.id for event in events]
        try:
            batch = await self._gateway.schedule_batch(events)
        except Exception as exc:
            error = (
                exc
                if isinstance(exc, GatewayScheduleError)
                else GatewayScheduleError(
                    f"schedule_batch failed for {len(events)} event(s): {exc}",
                    event_ids=requested_ids,
                )
            )
            if error is not exc:
                error.__cause__ = exc
            self._schedule_failed(error, result)
            return {}

        if not isinstance(batch, Mapping):
            self._schedule_failed(
                GatewayScheduleError(
                    f"schedule_batch returned {type(batch).__name__}, expected a mapping",
                    event_ids=requested_ids,
                ),
                result,
            )
            return {}

        unexpected = set(batch) - set(requested_ids)
        if unexpected:
            logger.warning(
                "Gateway returned handles for %d unrequested event(s); ignoring",
                len(unexpected),
            )

        new_records: dict[str, list[str]] = {}
        malformed: list[str] = []
        for event_id in requested_ids:
            handles = _coerce_handles(batch.get(event_id))
            if handles is None:
                malformed.append(event_id)
                result.failed.append(event_id)
            elif handles:
                new_records[event_id] = handles
            else:
                result.failed.append(event_id)

        if malformed:
            self._schedule_failed(
                GatewayScheduleError(
                    f"schedule_batch returned malformed handles for {len(malformed)} event(s)",
                    event_ids=malformed,
                ),
                result,
            )
        if result.failed:
            logger.warning(
                "No reminder scheduled for %d event(s) in %s: %s",
                len(result.failed),
                self._name,
                ", ".join(result.failed),
            )
        return new_records

    def _schedule_failed(self, error: GatewayScheduleError, result: PassResult) -> None:
        logger.warning("Failed to schedule reminder batch for %s: %s", self._name, error)
        self._metrics.record_gateway_error("schedule")
        result.errors.append(error)

    async def _cancel(self, event_ids: list[str], result: PassResult) -> list[str]:
        if not event_ids:
            return []

        try:
            await self._gateway.cancel_batch(event_ids)
        except Exception as exc:
            error = (
                exc
                if isinstance(exc, GatewayCancelError)
                else GatewayCancelError(
                    f"cancel_batch failed for {len(event_ids)} event(s): {exc}",
                    event_ids=event_ids,
                )
            )
            if error is not exc:
                error.__cause__ = exc
            logger.warning("Failed to cancel reminder batch for %s: %s", self._name, exc)
            self._metrics.record_gateway_error("cancel")
            result.errors.append(error)
            return []
        return list(event_ids)
