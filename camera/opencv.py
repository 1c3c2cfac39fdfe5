# -- coding: utf-8 --

import logging
import time
from contextlib import contextmanager

import cv2

from camera.base import BaseCamera, CameraConfig, register_camera
from core.errors import AcquisitionError
from utils.clock import now_ns

L = logging.getLogger("trigger_sync.camera.opencv")


@register_camera("opencv")
class OpenCvCamera(BaseCamera):
    """V4L2/USB capture through cv2.VideoCapture, selected by device index."""

    device_id = "opencv"

    def __init__(self, cfg: CameraConfig):
        super().__init__(cfg)
        self._cap: cv2.VideoCapture | None = None
        self.device_id = f"opencv:{int(cfg.device_index)}"

    def _configure(self, cap: cv2.VideoCapture):
        if self.cfg.width and self.cfg.height:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(self.cfg.width))
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(self.cfg.height))
        if self.cfg.input_fps:
            cap.set(cv2.CAP_PROP_FPS, float(self.cfg.input_fps))
        # Keep the driver queue short so delivery stamps stay close to hand-off.
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

    def _grab(self):
        cap = self._cap
        if cap is None:
            raise AcquisitionError("camera_not_started")
        retries = max(int(self.cfg.max_retry_per_frame), 1)
        deadline = time.perf_counter() + self.cfg.timeout_ms / 1000.0
        for attempt in range(1, retries + 1):
            ok, frame = cap.read()
            delivery_ns = now_ns()
            if ok and frame is not None:
                return frame, delivery_ns
            L.warning(
                "camera %s read failed (attempt %d/%d)",
                self.cfg.device_index,
                attempt,
                retries,
            )
            if time.perf_counter() >= deadline:
                break
        raise AcquisitionError(
            f"camera {self.cfg.device_index} returned no frame after {attempt} attempt(s)"
        )

    @contextmanager
    def session(self):
        cap = cv2.VideoCapture(int(self.cfg.device_index))
        if not cap.isOpened():
            cap.release()
            raise AcquisitionError(f"cannot open camera index {self.cfg.device_index}")
        self._configure(cap)
        self._cap = cap
        L.info(
            "OpenCV camera %d opened: %dx%d @ %.1ffps",
            self.cfg.device_index,
            int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            float(cap.get(cv2.CAP_PROP_FPS) or 0.0),
        )
        try:
            yield self
        finally:
            self._cap = None
            cap.release()


__all__ = ["OpenCvCamera"]
