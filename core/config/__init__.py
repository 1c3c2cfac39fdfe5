"""Config package facade."""

from .loader import load_config
from .schema import (
    CameraConfigBlock,
    ConfigError,
    LoadedConfig,
    OutputConfigBlock,
    RuntimeConfig,
    SyncConfigBlock,
    TransportConfigBlock,
    TriggerConfigBlock,
    TriggerTcpConfigBlock,
)
from .validate import validate_config

__all__ = [
    "ConfigError",
    "LoadedConfig",
    "RuntimeConfig",
    "SyncConfigBlock",
    "OutputConfigBlock",
    "TransportConfigBlock",
    "TriggerConfigBlock",
    "TriggerTcpConfigBlock",
    "CameraConfigBlock",
    "load_config",
    "validate_config",
]
