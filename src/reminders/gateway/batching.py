"""Batching adapter from a per-notification platform to ``SchedulingGateway``.

Each event gets one reminder ``minutes_before`` its start. A batch fans out to
the platform concurrently on the event loop; a platform failure for one event
only empties that event's handle list. Handles issued per event are tracked
here so ``cancel_batch`` can be expressed in event ids.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from reminders.gateway.base import (
    GatewayCancelError,
    NotificationPlatform,
    NotificationPlatformError,
    SchedulingGateway,
)
from reminders.models import Event

logger = logging.getLogger(__name__)

DEFAULT_MINUTES_BEFORE = 15
EVENT_REMINDER_TYPE = "event_reminder"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def reminder_content(event: Event, minutes_before: int) -> tuple[str, str, dict[str, Any]]:
    """Return ``(title, body, data)`` for an event's reminder notification."""
    title = f"Upcoming Event: {event.title}"
    body = f'Your event "{event.title}" starts in {minutes_before} minutes'
    data = {
        "type": EVENT_REMINDER_TYPE,
        "event_id": event.id,
        "event_title": event.title,
        "event_date": event.start_time.astimezone(UTC).isoformat(),
    }
    return title, body, data


class BatchingReminderGateway(SchedulingGateway):
    """Schedules one reminder per event through a ``NotificationPlatform``.

    Parameters
    ----------
    platform:
        The per-notification platform to schedule against.
    minutes_before:
        Reminder lead time. Events whose reminder instant is not in the future
        get no handle.
    clock:
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        platform: NotificationPlatform,
        *,
        minutes_before: int = DEFAULT_MINUTES_BEFORE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if minutes_before < 0:
            raise ValueError("minutes_before must be >= 0")
        self._platform = platform
        self._minutes_before = minutes_before
        self._clock = clock or _utc_now
        self._handles: dict[str, set[str]] = {}

    @property
    def minutes_before(self) -> int:
        return self._minutes_before

    def handles_for(self, event_id: str) -> frozenset[str]:
        return frozenset(self._handles.get(event_id, ()))

    # ------------------------------------------------------------------
    # schedule
    # ------------------------------------------------------------------

    async def schedule_batch(self, events: Sequence[Event]) -> dict[str, list[str]]:
        now = self._clock()
        results = await asyncio.gather(*(self._schedule_one(event, now) for event in events))

        batch: dict[str, list[str]] = {}
        for event, handles in zip(events, results, strict=True):
            batch[event.id] = handles
            if handles:
                self._handles.setdefault(event.id, set()).update(handles)

        logger.debug(
            "Reminder batch scheduled: requested=%d, scheduled=%d",
            len(events),
            sum(1 for handles in batch.values() if handles),
        )
        return batch

    async def _schedule_one(self, event: Event, now: datetime) -> list[str]:
        fire_at = event.start_time - timedelta(minutes=self._minutes_before)
        if fire_at <= now:
            logger.debug(
                "Reminder time for event %s already passed (fire_at=%s)",
                event.id,
                fire_at.isoformat(),
            )
            return []

        title, body, data = reminder_content(event, self._minutes_before)
        try:
            handle = await self._platform.schedule_notification(
                title=title,
                body=body,
                fire_at=fire_at,
                data=data,
            )
        except NotificationPlatformError as exc:
            logger.warning("Failed to schedule reminder for event %s: %s", event.id, exc)
            return []
        except Exception:
            logger.exception(
                "Unexpected platform error scheduling reminder for event %s", event.id
            )
            return []

        if not handle:
            logger.warning("Platform declined reminder for event %s", event.id)
            return []
        return [handle]

    # ------------------------------------------------------------------
    # cancel
    # ------------------------------------------------------------------

    async def cancel_batch(self, event_ids: Sequence[str]) -> None:
        targets = [
            (event_id, handle)
            for event_id in event_ids
            for handle in sorted(self._handles.get(event_id, ()))
        ]
        errors = await asyncio.gather(
            *(self._cancel_one(event_id, handle) for event_id, handle in targets)
        )

        failed_ids: list[str] = []
        for event_id in event_ids:
            if self._handles.get(event_id):
                failed_ids.append(event_id)
            else:
                self._handles.pop(event_id, None)

        failures = [error for error in errors if error is not None]
        if failures:
            raise GatewayCancelError(
                f"Failed to cancel {len(failures)} of {len(targets)} reminder(s): {failures[0]}",
                event_ids=failed_ids,
            ) from failures[0]

    async def _cancel_one(self, event_id: str, handle: str) -> Exception | None:
        try:
            await self._platform.cancel_notification(handle)
        except NotificationPlatformError as exc:
            logger.warning(
                "Failed to cancel reminder %s for event %s: %s", handle, event_id, exc
            )
            return exc
        except Exception as exc:
            logger.exception(
                "Unexpected platform error cancelling reminder %s for event %s", handle, event_id
            )
            return exc
        self._handles.get(event_id, set()).discard(handle)
        return None

    async def shutdown(self) -> None:
        await self._platform.shutdown()
