# -- coding: utf-8 --

import logging
import time
from contextlib import contextmanager

import numpy as np

from camera.base import BaseCamera, CameraConfig, register_camera
from core.errors import AcquisitionError
from utils.clock import now_ns

L = logging.getLogger("trigger_sync.camera.mock")


@register_camera("mock")
class MockCamera(BaseCamera):
    """Simulated capture device with a fixed exposure-to-delivery delay.

    Frames are exposed every 1/input_fps seconds and handed off
    `delivery_delay_ms` later, so deliveries may overlap several exposures
    when the delay exceeds the frame interval.
    """

    device_id = "mock"

    def __init__(self, cfg: CameraConfig):
        super().__init__(cfg)
        self._interval_ns = int(1e9 / float(cfg.input_fps))
        self._delay_ns = int(float(cfg.delivery_delay_ms) * 1_000_000)
        self._next_exposure_ns: int | None = None
        self._shape = (max(int(cfg.height), 1), max(int(cfg.width), 1), 3)
        self._active = False

    def _grab(self):
        if not self._active:
            raise AcquisitionError("mock camera session not started")
        now = now_ns()
        exposure = self._next_exposure_ns
        if exposure is None or exposure + self._delay_ns < now:
            # Fell behind (or first frame): resume pacing from now.
            exposure = now
        deliver_at = exposure + self._delay_ns
        wait_s = (deliver_at - now_ns()) / 1e9
        if wait_s > 0:
            time.sleep(wait_s)
        self._next_exposure_ns = exposure + self._interval_ns
        payload = np.zeros(self._shape, dtype=np.uint8)
        return payload, now_ns()

    @contextmanager
    def session(self):
        self._active = True
        self._next_exposure_ns = None
        L.info(
            "Mock camera started: %dx%d @ %.1ffps delivery_delay=%.0fms",
            self._shape[1],
            self._shape[0],
            self.cfg.input_fps,
            self.cfg.delivery_delay_ms,
        )
        try:
            yield self
        finally:
            self._active = False
            if self.outstanding_count:
                L.warning("Mock camera stopped with %d unreleased frame(s)", self.outstanding_count)


__all__ = ["MockCamera"]
