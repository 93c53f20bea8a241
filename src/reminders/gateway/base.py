"""Contracts between the reconciliation engine and the notification platform.

Two layers:
- ``SchedulingGateway``: the batched create/cancel capability the engine calls
- ``NotificationPlatform``: a per-notification scheduling primitive (local OS
  scheduler, push service, ...) that ``BatchingReminderGateway`` adapts to the
  batched contract
"""

from __future__ import annotations

import abc
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from reminders.models import Event


class GatewayError(RuntimeError):
    """Base error for failed gateway batch calls."""


class GatewayScheduleError(GatewayError):
    """Raised when a whole ``schedule_batch`` call fails."""

    def __init__(self, message: str, *, event_ids: Sequence[str] = ()) -> None:
        self.event_ids = tuple(event_ids)
        super().__init__(message)


class GatewayCancelError(GatewayError):
    """Raised when a ``cancel_batch`` call fails.

    Partial success is not distinguished: the caller treats the whole batch
    as not cancelled.
    """

    def __init__(self, message: str, *, event_ids: Sequence[str] = ()) -> None:
        self.event_ids = tuple(event_ids)
        super().__init__(message)


class NotificationPlatformError(RuntimeError):
    """Raised when a single platform request fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class SchedulingGateway(abc.ABC):
    """Batched scheduling capability consumed by the reconciliation engine."""

    @abc.abstractmethod
    async def schedule_batch(self, events: Sequence[Event]) -> Mapping[str, Sequence[str]]:
        """Schedule reminders for *events* in one call.

        Returns a mapping of event id to the handles created for it. An empty
        sequence means scheduling failed for that event (permission denied,
        reminder time already passed, ...).
        """
        ...

    @abc.abstractmethod
    async def cancel_batch(self, event_ids: Sequence[str]) -> None:
        """Cancel every reminder previously scheduled for *event_ids*.

        Raises ``GatewayCancelError`` (or any exception) if the batch failed.
        """
        ...

    async def shutdown(self) -> None:
        """Release gateway resources."""
        return None


class NotificationPlatform(abc.ABC):
    """Single-notification scheduling primitive."""

    @abc.abstractmethod
    async def schedule_notification(
        self,
        *,
        title: str,
        body: str,
        fire_at: datetime,
        data: dict[str, Any] | None = None,
    ) -> str | None:
        """Schedule one notification; return its handle, or ``None`` if declined."""
        ...

    @abc.abstractmethod
    async def cancel_notification(self, handle: str) -> None:
        """Cancel one scheduled notification."""
        ...

    async def shutdown(self) -> None:
        """Release platform resources."""
        return None
