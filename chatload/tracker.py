"""Per-attempt accumulator of observed inbound action tags."""

from __future__ import annotations

import threading
from typing import Any

from chatload.models import InboundEvent


class MessageStateTracker:
    """
    Count inbound events by ``action`` tag for a single connection attempt.

    Counts only ever grow while the attempt is alive.  The reader thread
    writes and the actor reads, so access goes through a lock.  A new
    attempt always gets a new tracker; trackers are never reset or
    shared between attempts.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {}
        self._last_payload: dict[str, dict[str, Any]] = {}

    def record(self, event: InboundEvent) -> None:
        with self._lock:
            self._counts[event.action] = self._counts.get(event.action, 0) + 1
            self._last_payload[event.action] = event.data

    def count(self, tag: str) -> int:
        with self._lock:
            return self._counts.get(tag, 0)

    def seen(self, tag: str) -> bool:
        return self.count(tag) > 0

    def last_payload(self, tag: str) -> dict[str, Any] | None:
        with self._lock:
            return self._last_payload.get(tag)

    def tags(self) -> list[str]:
        with self._lock:
            return sorted(self._counts)

    def total(self) -> int:
        with self._lock:
            return sum(self._counts.values())

    def as_flags(self) -> dict[str, Any]:
        """
        Return the flat ``{tag, tag_count, tag_data}`` mapping.

        This is the shape scenario checks were written against, e.g.
        ``flags.get("room_joined") is True``.
        """
        with self._lock:
            flags: dict[str, Any] = {}
            for tag, count in self._counts.items():
                flags[tag] = True
                flags[f"{tag}_count"] = count
                flags[f"{tag}_data"] = self._last_payload.get(tag)
            return flags

    def __contains__(self, tag: object) -> bool:
        return isinstance(tag, str) and self.seen(tag)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)

    def __repr__(self) -> str:
        with self._lock:
            return f"MessageStateTracker({self._counts!r})"
