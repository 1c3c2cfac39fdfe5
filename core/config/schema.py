"""Typed config schema blocks shared by loader/validator/runtime."""

from dataclasses import dataclass, field
from typing import Dict

from core.errors import ConfigError


@dataclass
class RuntimeConfig:
    save_dir: str = "data"
    max_runtime_s: float = 0.0
    poll_interval_ms: int = 10
    log_level: str = "info"


@dataclass
class SyncConfigBlock:
    tolerance_window_ms: float = 500.0
    future_penalty_factor: float = 2.0
    max_pending_triggers: int = 100


@dataclass
class OutputConfigBlock:
    output_fps: float = 30.0
    history_size: int = 10
    write_csv: bool = False


@dataclass
class TransportConfigBlock:
    type: str = "tcp"
    service_name: str = "Camera/Sync"
    host: str = "127.0.0.1"
    port: int = 7447
    history_size: int = 10
    subscriber_max_buffer_size: int = 20
    max_subscribers: int = 3
    max_publishers: int = 1
    enable_safe_overflow: bool = True
    connect_timeout_ms: int = 1000


@dataclass
class TriggerTcpConfigBlock:
    host: str = "0.0.0.0"
    port: int = 9000
    word: str = "TRIG"


@dataclass
class TriggerConfigBlock:
    type: str = "timer"
    interval_ms: float = 33.0
    tcp: TriggerTcpConfigBlock = field(default_factory=TriggerTcpConfigBlock)


@dataclass
class CameraConfigBlock:
    type: str = "mock"
    device_index: int = 0
    width: int = 640
    height: int = 480
    input_fps: float = 30.0
    delivery_delay_ms: float = 150.0
    grab_timeout_ms: int = 2000
    max_retry_per_frame: int = 3


@dataclass
class LoadedConfig:
    runtime: RuntimeConfig
    sync: SyncConfigBlock
    output: OutputConfigBlock
    transport: TransportConfigBlock
    trigger: TriggerConfigBlock
    camera: CameraConfigBlock
    paths: Dict[str, str] = field(default_factory=dict)


__all__ = [
    "ConfigError",
    "RuntimeConfig",
    "SyncConfigBlock",
    "OutputConfigBlock",
    "TransportConfigBlock",
    "TriggerConfigBlock",
    "TriggerTcpConfigBlock",
    "CameraConfigBlock",
    "LoadedConfig",
]
