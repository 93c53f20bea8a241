"""Debounced trigger — coalesces bursts of snapshots into one callback run.

Every ``deliver()`` stores the snapshot and restarts a quiescence timer. When
the window elapses without a new delivery, the most recent snapshot is handed
to the callback; snapshots superseded inside the window are never processed.

At most one callback runs at a time. If the window elapses again while a run
is still awaiting (e.g. on gateway calls), the newest snapshot waits and runs
once the current run settles; older waiting snapshots are replaced, not queued.

``aclose()`` cancels the timer and discards any waiting snapshot. A run that
is already in progress is not cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_WINDOW_SECONDS = 0.1

_NOTHING: Any = object()


class DebouncedTrigger(Generic[T]):
    """Runs ``callback(snapshot)`` after ``window_s`` of quiescence."""

    def __init__(
        self,
        callback: Callable[[T], Awaitable[Any]],
        *,
        window_s: float = DEFAULT_WINDOW_SECONDS,
        name: str = "trigger",
    ) -> None:
        if window_s < 0:
            raise ValueError("window_s must be >= 0")
        self._callback = callback
        self._window_s = window_s
        self._name = name
        self._latest: Any = _NOTHING
        self._ready: Any = _NOTHING
        self._timer: asyncio.Task | None = None
        self._runner: asyncio.Task | None = None
        self._closed = False
        self.runs = 0

    @property
    def window_s(self) -> float:
        return self._window_s

    @property
    def pending(self) -> bool:
        """True while a timer is armed or a snapshot is waiting to run."""
        timer_armed = self._timer is not None and not self._timer.done()
        return timer_armed or self._ready is not _NOTHING

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, snapshot: T) -> None:
        """Record *snapshot* and restart the quiescence timer."""
        if self._closed:
            logger.debug("Trigger %s closed; ignoring delivery", self._name)
            return

        self._latest = snapshot
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            logger.debug("Trigger %s reset", self._name)
        self._timer = asyncio.create_task(
            self._fire_after_window(),
            name=f"debounce-{self._name}",
        )

    async def _fire_after_window(self) -> None:
        await asyncio.sleep(self._window_s)
        self._timer = None

        self._ready, self._latest = self._latest, _NOTHING
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(
                self._run_ready(),
                name=f"debounce-run-{self._name}",
            )

    async def _run_ready(self) -> None:
        while self._ready is not _NOTHING and not self._closed:
            snapshot, self._ready = self._ready, _NOTHING
            self.runs += 1
            try:
                await self._callback(snapshot)
            except Exception:
                logger.exception("Trigger %s callback failed", self._name)

    async def wait_idle(self) -> None:
        """Wait until no timer is armed and no run is in progress."""
        while True:
            if self._timer is not None and not self._timer.done():
                await asyncio.wait({self._timer})
                continue
            if self._runner is not None and not self._runner.done():
                await asyncio.wait({self._runner})
                continue
            return

    async def aclose(self) -> None:
        """Discard any pending snapshot and stop accepting deliveries."""
        self._closed = True
        self._latest = _NOTHING
        self._ready = _NOTHING
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            await asyncio.wait({timer})
