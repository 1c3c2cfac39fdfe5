# -- coding: utf-8 --

import logging
import threading
from collections import deque

from core.contracts import TriggerEvent
from core.errors import TransportError
from transport.base import (
    BaseTransport,
    SubscriberBuffer,
    TransportConfig,
    TriggerPublisher,
    TriggerSubscriber,
    register_transport,
)

L = logging.getLogger("trigger_sync.transport.memory")

_services: dict[str, "_MemoryService"] = {}
_services_lock = threading.Lock()


class _MemoryService:
    def __init__(self, cfg: TransportConfig):
        self.cfg = cfg
        self.history: deque[TriggerEvent] = deque(maxlen=cfg.history_size)
        self.subscribers: list["MemorySubscriber"] = []
        self.publisher_count = 0
        self.handle_count = 0
        self.lock = threading.Lock()

    def check_compatible(self, cfg: TransportConfig):
        for name in ("history_size", "subscriber_max_buffer_size", "max_subscribers", "max_publishers"):
            if getattr(cfg, name) != getattr(self.cfg, name):
                raise TransportError(
                    f"service '{cfg.service_name}' already open with {name}={getattr(self.cfg, name)}"
                )


def _open_or_create(cfg: TransportConfig) -> _MemoryService:
    with _services_lock:
        svc = _services.get(cfg.service_name)
        if svc is None:
            svc = _MemoryService(cfg)
            _services[cfg.service_name] = svc
        else:
            svc.check_compatible(cfg)
        svc.handle_count += 1
        return svc


def _release(svc: _MemoryService):
    with _services_lock:
        svc.handle_count -= 1
        if svc.handle_count <= 0 and _services.get(svc.cfg.service_name) is svc:
            del _services[svc.cfg.service_name]


class MemoryPublisher(TriggerPublisher):
    def __init__(self, svc: _MemoryService):
        self._svc = svc
        self._closed = False

    def publish(self, event: TriggerEvent) -> int:
        if self._closed:
            raise TransportError("publisher is closed")
        with self._svc.lock:
            if self._svc.cfg.history_size > 0:
                self._svc.history.append(event)
            subscribers = list(self._svc.subscribers)
        delivered = 0
        for sub in subscribers:
            if sub.deliver(event):
                delivered += 1
            else:
                L.debug("Subscriber buffer full; discarded trigger id=%d", event.trigger_id)
        return delivered

    def close(self):
        if self._closed:
            return
        self._closed = True
        with self._svc.lock:
            self._svc.publisher_count -= 1


class MemorySubscriber(TriggerSubscriber):
    def __init__(self, svc: _MemoryService):
        self._svc = svc
        self._buffer = SubscriberBuffer(
            svc.cfg.subscriber_max_buffer_size, svc.cfg.enable_safe_overflow
        )
        self._closed = False

    def deliver(self, event: TriggerEvent) -> bool:
        return self._buffer.push(event)

    def receive_next(self) -> TriggerEvent | None:
        if self._closed:
            raise TransportError("subscriber is closed")
        return self._buffer.pop_nowait()

    def drain_history(self) -> list[TriggerEvent]:
        if self._closed:
            raise TransportError("subscriber is closed")
        return self._buffer.drain()

    @property
    def overflow_count(self) -> int:
        return self._buffer.overflow_count

    def close(self):
        if self._closed:
            return
        self._closed = True
        with self._svc.lock:
            if self in self._svc.subscribers:
                self._svc.subscribers.remove(self)


@register_transport("memory")
class MemoryTransport(BaseTransport):
    """In-process bus keyed by service name; handles with the same name share it."""

    def __init__(self, cfg: TransportConfig):
        super().__init__(cfg)
        self._svc = _open_or_create(cfg)
        self._ports: list[TriggerPublisher | TriggerSubscriber] = []
        self._closed = False

    def create_publisher(self) -> MemoryPublisher:
        with self._svc.lock:
            if self._svc.publisher_count >= self._svc.cfg.max_publishers:
                raise TransportError(
                    f"service '{self.cfg.service_name}' allows at most {self._svc.cfg.max_publishers} publisher(s)"
                )
            if self._svc.publisher_count == 0:
                # History belongs to the previous publisher and its id sequence.
                self._svc.history.clear()
            self._svc.publisher_count += 1
        pub = MemoryPublisher(self._svc)
        self._ports.append(pub)
        return pub

    def create_subscriber(self) -> MemorySubscriber:
        sub = MemorySubscriber(self._svc)
        with self._svc.lock:
            if len(self._svc.subscribers) >= self._svc.cfg.max_subscribers:
                raise TransportError(
                    f"service '{self.cfg.service_name}' allows at most {self._svc.cfg.max_subscribers} subscriber(s)"
                )
            for event in self._svc.history:
                sub.deliver(event)
            self._svc.subscribers.append(sub)
        self._ports.append(sub)
        return sub

    def close(self):
        if self._closed:
            return
        self._closed = True
        for port in self._ports:
            port.close()
        self._ports.clear()
        _release(self._svc)


__all__ = ["MemoryTransport", "MemoryPublisher", "MemorySubscriber"]
