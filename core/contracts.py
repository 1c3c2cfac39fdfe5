"""Data contracts for trigger, frame, correlation, and output channels."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

NS_PER_MS = 1_000_000.0


class Classification(str, Enum):
    PAST = "PAST"
    FUTURE = "FUTURE"
    NONE = "NONE"


@dataclass(frozen=True, slots=True)
class TriggerEvent:
    trigger_id: int = 0
    hardware_timestamp_ns: int = 0
    publish_timestamp_ns: int = 0
    # Identifies the publisher process that assigned trigger_id; ids restart per epoch.
    publisher_epoch: int = 0

    @property
    def publish_delay_ns(self) -> int:
        return max(self.publish_timestamp_ns - self.hardware_timestamp_ns, 0)


@dataclass(slots=True)
class FrameEvent:
    delivery_timestamp_ns: int = 0
    payload: Any | None = None  # runtime np.ndarray or camera buffer handle
    frame_seq: int = 0
    device_id: str = ""


@dataclass(slots=True)
class CorrelationResult:
    delivery_timestamp_ns: int = 0
    matched: TriggerEvent | None = None
    classification: Classification = Classification.NONE
    score_ms: float = 0.0
    evicted_count: int = 0
    evicted_ids: list[int] = field(default_factory=list)

    @property
    def is_matched(self) -> bool:
        return self.matched is not None

    @property
    def latency_ms(self) -> float | None:
        if self.matched is None:
            return None
        return (
            self.delivery_timestamp_ns - self.matched.hardware_timestamp_ns
        ) / NS_PER_MS

    @property
    def transport_delay_ms(self) -> float | None:
        if self.matched is None:
            return None
        return (
            self.delivery_timestamp_ns - self.matched.publish_timestamp_ns
        ) / NS_PER_MS


@dataclass(slots=True)
class SyncRecord:
    frame_seq: int = 0
    device_id: str = ""
    delivery_timestamp_ns: int = 0
    trigger_id: int | None = None
    exposure_timestamp_ns: int | None = None
    classification: str = Classification.NONE.value
    score_ms: float | None = None
    latency_ms: float | None = None
    evicted_count: int = 0
    synchronized: bool = False
    remark: str = ""


__all__ = [
    "NS_PER_MS",
    "Classification",
    "TriggerEvent",
    "FrameEvent",
    "CorrelationResult",
    "SyncRecord",
]
