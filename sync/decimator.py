from __future__ import annotations

import threading

from core.errors import ConfigError


class OutputDecimator:
    """Forward one of every `ratio` frames of a single stream.

    Frames are counted from 1; frame k is forwarded iff k % ratio == 0, so
    the last frame of each group of `ratio` reaches correlation.
    """

    def __init__(self, ratio: int = 1):
        if isinstance(ratio, bool) or not isinstance(ratio, int) or ratio < 1:
            raise ConfigError(f"output_decimation_ratio must be >= 1 (got {ratio!r})")
        self.ratio = ratio
        self._count = 0
        self._forwarded = 0
        self._lock = threading.Lock()

    def should_forward(self) -> bool:
        with self._lock:
            self._count += 1
            forward = (self._count % self.ratio) == 0
            if forward:
                self._forwarded += 1
            return forward

    @property
    def frame_count(self) -> int:
        return self._count

    @property
    def forwarded_count(self) -> int:
        return self._forwarded

    @property
    def skipped_count(self) -> int:
        return self._count - self._forwarded


__all__ = ["OutputDecimator"]
