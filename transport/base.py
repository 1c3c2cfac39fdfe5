# -- coding: utf-8 --
"""Trigger transport contracts: publish/subscribe with retained history."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Type

from core.contracts import TriggerEvent
from core.registry import register_named, resolve_registered

TransportFactory = Dict[str, Type["BaseTransport"]]
_registry: TransportFactory = {}


@dataclass
class TransportConfig:
    service_name: str = "Camera/Sync"
    host: str = "127.0.0.1"
    port: int = 7447
    # Recent triggers replayed to late-joining subscribers.
    history_size: int = 10
    subscriber_max_buffer_size: int = 20
    max_subscribers: int = 3
    max_publishers: int = 1
    # True: a full subscriber buffer drops its oldest entry. False: the new one.
    enable_safe_overflow: bool = True
    connect_timeout_ms: int = 1000


def build_transport_config(cfg_block) -> TransportConfig:
    return TransportConfig(
        service_name=str(cfg_block.service_name),
        host=str(cfg_block.host),
        port=int(cfg_block.port),
        history_size=int(cfg_block.history_size),
        subscriber_max_buffer_size=int(cfg_block.subscriber_max_buffer_size),
        max_subscribers=int(cfg_block.max_subscribers),
        max_publishers=int(cfg_block.max_publishers),
        enable_safe_overflow=bool(cfg_block.enable_safe_overflow),
        connect_timeout_ms=int(cfg_block.connect_timeout_ms),
    )


class SubscriberBuffer:
    """Bounded FIFO between a transport and its consumer."""

    def __init__(self, capacity: int, safe_overflow: bool = True):
        if capacity < 1:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self.safe_overflow = safe_overflow
        self.overflow_count = 0
        self._items: deque[TriggerEvent] = deque()
        self._lock = threading.Lock()

    def push(self, event: TriggerEvent) -> bool:
        with self._lock:
            if len(self._items) >= self.capacity:
                self.overflow_count += 1
                if not self.safe_overflow:
                    return False
                self._items.popleft()
            self._items.append(event)
            return True

    def pop_nowait(self) -> TriggerEvent | None:
        with self._lock:
            return self._items.popleft() if self._items else None

    def drain(self) -> list[TriggerEvent]:
        with self._lock:
            items = list(self._items)
            self._items.clear()
            return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class TriggerPublisher(ABC):
    @abstractmethod
    def publish(self, event: TriggerEvent) -> int:
        """Deliver to every connected subscriber; return how many accepted it."""

    def close(self):
        return None


class TriggerSubscriber(ABC):
    @abstractmethod
    def receive_next(self) -> TriggerEvent | None:
        """Return the next buffered trigger without blocking, or None."""

    def drain_history(self) -> list[TriggerEvent]:
        """Return everything buffered right now, oldest first, without waiting."""
        events = []
        while True:
            event = self.receive_next()
            if event is None:
                return events
            events.append(event)

    def reconnect(self):
        """Re-establish a lost connection; in-process transports never lose one."""
        return None

    def close(self):
        return None


class BaseTransport(ABC):
    def __init__(self, cfg: TransportConfig):
        self.cfg = cfg

    @abstractmethod
    def create_publisher(self) -> TriggerPublisher:
        pass

    @abstractmethod
    def create_subscriber(self) -> TriggerSubscriber:
        pass

    @contextmanager
    def session(self):
        try:
            yield self
        finally:
            self.close()

    def close(self):
        return None


def register_transport(name: str):
    return register_named(_registry, name)


def create_transport(name: str, cfg: TransportConfig, **kwargs) -> BaseTransport:
    cls = resolve_registered(
        _registry,
        name,
        package=__package__ or "transport",
        unknown_label="transport type",
    )
    return cls(cfg, **kwargs)


__all__ = [
    "TransportConfig",
    "build_transport_config",
    "SubscriberBuffer",
    "TriggerPublisher",
    "TriggerSubscriber",
    "BaseTransport",
    "register_transport",
    "create_transport",
]
