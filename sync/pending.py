"""Pending trigger queue shared by the ingestion and frame workers."""

from __future__ import annotations

import threading
from collections import deque

from core.contracts import TriggerEvent


class PendingTriggerQueue:
    """Lock-guarded deque of triggers ordered by ascending trigger_id.

    Every mutation happens under `lock`. Callers that need a consistent
    read-then-mutate sequence (score, then evict by index) hold `lock`
    around both steps; it is re-entrant for that purpose.
    """

    def __init__(self, max_size: int | None = None):
        if max_size is not None and max_size < 1:
            raise ValueError("max_size must be > 0")
        self._items: deque[TriggerEvent] = deque()
        self._max_size = max_size
        self._last_id: int | None = None
        self._epoch: int | None = None
        self.lock = threading.RLock()

    def append(self, event: TriggerEvent) -> tuple[bool, TriggerEvent | None]:
        """Append at the tail.

        Returns (accepted, dropped): `accepted` is False for an event from
        another publisher epoch, or for an id at or below the highest id seen
        in the current epoch; `dropped` is the head entry evicted when the
        size cap was exceeded. The first event adopts its epoch; switching to
        a newer one goes through `start_session`.
        """
        with self.lock:
            if self._epoch is None:
                self._epoch = event.publisher_epoch
            elif event.publisher_epoch != self._epoch:
                return False, None
            if self._last_id is not None and event.trigger_id <= self._last_id:
                return False, None
            self._items.append(event)
            self._last_id = event.trigger_id
            dropped = None
            if self._max_size is not None and len(self._items) > self._max_size:
                dropped = self._items.popleft()
            return True, dropped

    def start_session(self, epoch: int) -> list[TriggerEvent]:
        """Forget the previous publisher's ids; return the entries discarded."""
        with self.lock:
            stale = list(self._items)
            self._items.clear()
            self._last_id = None
            self._epoch = epoch
            return stale

    def snapshot(self) -> list[TriggerEvent]:
        with self.lock:
            return list(self._items)

    def evict_older_than(self, index: int) -> list[TriggerEvent]:
        """Remove the `index` entries ahead of position `index`; keep the rest."""
        with self.lock:
            if index < 0 or index > len(self._items):
                raise IndexError(
                    f"evict index {index} out of range for {len(self._items)} pending"
                )
            return [self._items.popleft() for _ in range(index)]

    def ids(self) -> list[int]:
        with self.lock:
            return [t.trigger_id for t in self._items]

    @property
    def max_size(self) -> int | None:
        return self._max_size

    @property
    def last_trigger_id(self) -> int | None:
        with self.lock:
            return self._last_id

    @property
    def publisher_epoch(self) -> int | None:
        with self.lock:
            return self._epoch

    def __len__(self) -> int:
        with self.lock:
            return len(self._items)

    def __bool__(self) -> bool:
        return len(self) > 0


__all__ = ["PendingTriggerQueue"]
