"""Content fingerprint over an event snapshot.

Used as a cheap gate in front of the reconciliation engine: a pass only runs
when the fingerprint of the incoming snapshot differs from the last one
processed. Hosts that re-deliver referentially-new but content-identical lists
therefore cost one sort and one hash, not a gateway round-trip.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from datetime import UTC

from reminders.models import Event


class FingerprintComputationError(ValueError):
    """Raised when an event snapshot cannot be fingerprinted (malformed input)."""


def _event_key(event: Event) -> str:
    # JSON-encoded so separators inside ids or titles cannot collide.
    start = event.start_time.astimezone(UTC).isoformat()
    return json.dumps([event.id, start, event.title], ensure_ascii=False)


def fingerprint(events: Iterable[Event]) -> str:
    """Return an order-independent digest of ``(id, start_time, title)`` per event.

    Reordering the input without changing content yields the same value; any
    change to an event's id, start time or title changes it. Start times are
    compared as instants, so the same moment expressed in two timezones is
    not a change.

    Raises:
        FingerprintComputationError: if any element is not a well-formed event.
    """
    try:
        keys = sorted(_event_key(event) for event in events)
    except (AttributeError, TypeError, ValueError, OverflowError) as exc:
        raise FingerprintComputationError(f"Cannot fingerprint event snapshot: {exc}") from exc

    digest = hashlib.sha256()
    for key in keys:
        digest.update(key.encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()
