"""Data model shared by the reconciliation engine and its gateways.

- ``Event``: read-only snapshot of one calendar event, as supplied by the host
- ``ScheduledRecord``: the live notification handles the engine issued for one event
- ``ReconciliationState``: per-binding bookkeeping owned by one engine instance
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Event(BaseModel):
    """One calendar event snapshot.

    Accepts both ``start_time`` and the camel-case ``startTime`` used by
    mobile/JSON event stores. Naive timestamps are interpreted as UTC.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    title: str = ""
    start_time: datetime = Field(validation_alias=AliasChoices("start_time", "startTime"))

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("id must be a non-empty string")
        return normalized

    @field_validator("start_time")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            return value.replace(tzinfo=UTC)
        return value


@dataclass(frozen=True)
class ScheduledRecord:
    """Platform handles currently live for one event.

    A record always holds at least one handle; events with no live
    notification have no record at all.
    """

    event_id: str
    notification_handles: frozenset[str]

    def __post_init__(self) -> None:
        if not self.notification_handles:
            raise ValueError(f"ScheduledRecord for {self.event_id!r} must hold at least one handle")


@dataclass
class ReconciliationState:
    """Bookkeeping for one event-notification binding.

    ``known_scheduled`` maps event id to the record of handles the engine
    created; ``last_fingerprint`` is the content fingerprint of the last
    snapshot a pass ran against (empty before the first pass).
    """

    known_scheduled: dict[str, ScheduledRecord] = field(default_factory=dict)
    last_fingerprint: str = ""

    def record(self, event_id: str, handles: Iterable[str]) -> ScheduledRecord | None:
        """Create or overwrite the record for *event_id*.

        An empty *handles* collection removes any existing record instead of
        storing an empty placeholder.
        """
        handle_set = frozenset(handles)
        if not handle_set:
            self.known_scheduled.pop(event_id, None)
            return None
        scheduled = ScheduledRecord(event_id=event_id, notification_handles=handle_set)
        self.known_scheduled[event_id] = scheduled
        return scheduled

    def forget(self, event_ids: Iterable[str]) -> None:
        for event_id in event_ids:
            self.known_scheduled.pop(event_id, None)

    def clear(self) -> None:
        """Drop all local tracking. Platform notifications are left untouched."""
        self.known_scheduled.clear()
        self.last_fingerprint = ""

    def is_scheduled(self, event_id: str) -> bool:
        return event_id in self.known_scheduled

    @property
    def scheduled_count(self) -> int:
        return len(self.known_scheduled)
