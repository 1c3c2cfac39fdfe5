"""Shared queue helpers for non-blocking drain/cleanup paths."""

from __future__ import annotations

import queue
from collections.abc import Callable
from typing import Any


def drain_queue_nowait(
    q: queue.Queue,
    *,
    on_item: Callable[[Any], None] | None = None,
    max_items: int | None = None,
) -> int:
    """Pop queued items without blocking; return how many were removed.

    `task_done()` is called for every popped item so `join()` callers are not
    left waiting on records that were discarded during shutdown.
    """
    drained = 0
    while max_items is None or drained < max_items:
        try:
            item = q.get_nowait()
        except queue.Empty:
            break
        try:
            if on_item is not None:
                on_item(item)
        finally:
            q.task_done()
        drained += 1
    return drained


__all__ = ["drain_queue_nowait"]
