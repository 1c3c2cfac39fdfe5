# -- coding: utf-8 --

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Type

from core.registry import register_named, resolve_registered

TriggerFactory = Dict[str, Type["BaseTrigger"]]
_registry: TriggerFactory = {}


@dataclass
class TriggerConfig:
    interval_ms: float = 33.0
    host: str = "0.0.0.0"
    port: int = 9000
    word: bytes = b"TRIG"

    def __post_init__(self):
        self.word = _ensure_bytes(self.word)


class BaseTrigger(ABC):
    """A timing source that calls `on_trigger(source)` at each hardware trigger."""

    source = "TRIGGER"

    def __init__(self, cfg: TriggerConfig, on_trigger: Callable):
        self.cfg = cfg
        self.on_trigger = on_trigger

    @abstractmethod
    def start(self):
        pass

    @abstractmethod
    def stop(self):
        pass

    def raise_if_failed(self):
        return None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()


def register_trigger(name: str):
    return register_named(_registry, name)


def create_trigger(
    name: str, cfg: TriggerConfig, on_trigger: Callable, **kwargs
) -> BaseTrigger:
    cls = resolve_registered(
        _registry,
        name,
        package=__package__ or "trigger",
        unknown_label="trigger type",
    )
    return cls(cfg, on_trigger, **kwargs)


def build_trigger_config_from_loaded_config(cfg) -> TriggerConfig:
    return TriggerConfig(
        interval_ms=float(cfg.trigger.interval_ms),
        host=cfg.trigger.tcp.host,
        port=int(cfg.trigger.tcp.port),
        word=cfg.trigger.tcp.word,
    )


def _ensure_bytes(word) -> bytes:
    if isinstance(word, bytes):
        return word
    if isinstance(word, str):
        return word.encode("utf-8")
    return str(word).encode("utf-8")


__all__ = [
    "TriggerConfig",
    "BaseTrigger",
    "register_trigger",
    "create_trigger",
    "build_trigger_config_from_loaded_config",
]
