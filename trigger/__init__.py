from .base import (
    TriggerConfig,
    BaseTrigger,
    register_trigger,
    create_trigger,
    build_trigger_config_from_loaded_config,
)
from .gateway import TriggerGateway

__all__ = [
    "TriggerConfig",
    "BaseTrigger",
    "register_trigger",
    "create_trigger",
    "build_trigger_config_from_loaded_config",
    "TriggerGateway",
]
