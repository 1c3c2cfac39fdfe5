# -- coding: utf-8 --

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Type

from core.contracts import FrameEvent
from core.errors import AcquisitionError
from core.registry import register_named, resolve_registered

CameraFactory = Dict[str, Type["BaseCamera"]]
_registry: CameraFactory = {}


@dataclass
class CameraConfig:
    device_index: int = 0
    width: int = 640
    height: int = 480
    input_fps: float = 30.0
    delivery_delay_ms: float = 150.0
    timeout_ms: int = 2000
    max_retry_per_frame: int = 3


def build_camera_config(cfg_block) -> CameraConfig:
    return CameraConfig(
        device_index=int(cfg_block.device_index),
        width=int(cfg_block.width),
        height=int(cfg_block.height),
        input_fps=float(cfg_block.input_fps),
        delivery_delay_ms=float(cfg_block.delivery_delay_ms),
        timeout_ms=int(cfg_block.grab_timeout_ms),
        max_retry_per_frame=int(cfg_block.max_retry_per_frame),
    )


class BaseCamera(ABC):
    """Frame source with an acquire/release contract.

    Every frame returned by `acquire_frame` must be passed to `release_frame`
    exactly once; the base class tracks outstanding frames and rejects a
    second release.
    """

    device_id = "camera"

    def __init__(self, cfg: CameraConfig):
        self.cfg = cfg
        self.lock = threading.Lock()
        self._seq = 0
        self._outstanding: dict[int, Any] = {}
        self.acquired_count = 0
        self.released_count = 0

    @abstractmethod
    def _grab(self) -> tuple[Any, int]:
        """Block until the device hands off a frame; return (payload, delivery_ns)."""

    def _release_payload(self, payload: Any):
        return None

    def acquire_frame(self) -> FrameEvent:
        payload, delivery_ns = self._grab()
        with self.lock:
            self._seq += 1
            seq = self._seq
            self._outstanding[seq] = payload
            self.acquired_count += 1
        return FrameEvent(
            delivery_timestamp_ns=int(delivery_ns),
            payload=payload,
            frame_seq=seq,
            device_id=self.device_id,
        )

    def release_frame(self, frame: FrameEvent):
        with self.lock:
            if frame.frame_seq not in self._outstanding:
                raise AcquisitionError(
                    f"frame {frame.frame_seq} was already released or never acquired"
                )
            payload = self._outstanding.pop(frame.frame_seq)
            self.released_count += 1
        self._release_payload(payload)

    @property
    def outstanding_count(self) -> int:
        with self.lock:
            return len(self._outstanding)

    @contextmanager
    @abstractmethod
    def session(self):
        """Manage camera lifecycle."""
        yield


def register_camera(name: str):
    return register_named(_registry, name)


def create_camera(name: str, cfg: CameraConfig) -> BaseCamera:
    cls = resolve_registered(
        _registry,
        name,
        package=__package__ or "camera",
        unknown_label="camera type",
    )
    return cls(cfg)


def create_camera_from_loaded_config(cfg) -> BaseCamera:
    return create_camera(cfg.camera.type, build_camera_config(cfg.camera))


__all__ = [
    "CameraConfig",
    "build_camera_config",
    "BaseCamera",
    "register_camera",
    "create_camera",
    "create_camera_from_loaded_config",
]
