"""Shared timestamp source for triggers and frame deliveries."""

from __future__ import annotations

import time

NS_PER_S = 1_000_000_000


def now_ns() -> int:
    """Wall-clock nanoseconds; comparable across processes on the same host."""
    return time.time_ns()


__all__ = ["NS_PER_S", "now_ns"]
