"""Bounded in-memory log of reconciliation outcome events.

The dashboard polls this log through ``GET /api/events``.  Storage is
newest-first; every read returns events oldest-first so that the last element
of a page is always the newest event the reader has seen and can be used as
the next cursor.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from datetime import datetime, timezone
from threading import Lock

from invoicematch.domain import Event, EventKind

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100
DEFAULT_SNAPSHOT_SIZE = 20


class EventBus:
    """Insertion-ordered, capacity-bounded event log with cursor reads.

    Attributes:
        capacity: Maximum number of retained events; the oldest is evicted first.
        snapshot_size: Number of events returned when no usable cursor is given.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, snapshot_size: int = DEFAULT_SNAPSHOT_SIZE) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if snapshot_size <= 0:
            raise ValueError("snapshot_size must be positive")
        self._capacity = capacity
        self._snapshot_size = min(snapshot_size, capacity)
        self._events: deque[Event] = deque(maxlen=capacity)
        self._index: dict[str, Event] = {}
        self._counter = 0
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def append(
        self,
        kind: EventKind,
        title: str,
        message: str,
        unit_name: str | None = None,
        details: str | None = None,
    ) -> Event:
        """Record a new event at the head of the log, evicting the oldest if full."""

        with self._lock:
            # the counter never resets, so ids stay unique even across reset()
            self._counter += 1
            event = Event(
                id=f"evt-{time.time_ns() // 1_000_000}-{self._counter}",
                timestamp=datetime.now(timezone.utc),
                kind=EventKind(kind),
                title=title,
                message=message,
                unit_name=unit_name,
                details=details,
            )
            if len(self._events) == self._capacity:
                evicted = self._events.pop()
                self._index.pop(evicted.id, None)
            self._events.appendleft(event)
            self._index[event.id] = event

        logger.info(
            "[EVENT] %s: %s - %s%s",
            event.kind.value.upper(),
            title,
            message,
            f" ({unit_name})" if unit_name else "",
        )
        return event

    def read_since(self, cursor: str | None = None) -> list[Event]:
        """Return events newer than ``cursor``, oldest first.

        Without a cursor, or with one that is unknown or already evicted, the
        most recent ``snapshot_size`` events are returned instead.
        """

        with self._lock:
            if cursor is None or cursor not in self._index:
                page = list(self._events)[: self._snapshot_size]
            else:
                page = []
                for event in self._events:
                    if event.id == cursor:
                        break
                    page.append(event)
        page.reverse()
        return page

    def reset(self) -> None:
        """Drop all retained events (used in tests)."""

        with self._lock:
            self._events.clear()
            self._index.clear()
