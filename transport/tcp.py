# -- coding: utf-8 --
"""TCP trigger bus for separate publisher and subscriber processes.

Wire format (little-endian):
  subscriber -> publisher: b"TSYN", u16 name length, service name (utf-8)
  publisher -> subscriber: b"TSYN", i32 status; status >= 0 is the number of
                           history records that follow, < 0 is a rejection
  then a stream of 32-byte records: u64 trigger_id, u64 hw_ts_ns, u64 pub_ts_ns,
  u64 publisher_epoch
"""

import asyncio
import logging
import struct
from collections import deque
from concurrent.futures import TimeoutError as FutureTimeoutError

from core.contracts import TriggerEvent
from core.errors import TransportError
from core.lifecycle import AsyncTaskOwner, LoopRunner, run_async_cleanup
from transport.base import (
    BaseTransport,
    SubscriberBuffer,
    TransportConfig,
    TriggerPublisher,
    TriggerSubscriber,
    register_transport,
)

L = logging.getLogger("trigger_sync.transport.tcp")

MAGIC = b"TSYN"
RECORD = struct.Struct("<QQQQ")
HELLO = struct.Struct("<4sH")
REPLY = struct.Struct("<4si")

STATUS_SERVICE_MISMATCH = -1
STATUS_TOO_MANY_SUBSCRIBERS = -2
_STATUS_TEXT = {
    STATUS_SERVICE_MISMATCH: "service name mismatch",
    STATUS_TOO_MANY_SUBSCRIBERS: "too many subscribers",
}


def encode_trigger(event: TriggerEvent) -> bytes:
    return RECORD.pack(
        event.trigger_id,
        event.hardware_timestamp_ns,
        event.publish_timestamp_ns,
        event.publisher_epoch,
    )


def decode_trigger(data: bytes) -> TriggerEvent:
    trigger_id, hw_ts, pub_ts, epoch = RECORD.unpack(data)
    return TriggerEvent(
        trigger_id=trigger_id,
        hardware_timestamp_ns=hw_ts,
        publish_timestamp_ns=pub_ts,
        publisher_epoch=epoch,
    )


class TcpPublisher(TriggerPublisher):
    def __init__(self, cfg: TransportConfig, loop_runner: LoopRunner):
        self.cfg = cfg
        self._tasks = AsyncTaskOwner(loop_runner=loop_runner, owner_name="tcp_publisher")
        self._server: asyncio.AbstractServer | None = None
        # Touched only on the loop thread.
        self._history: deque[bytes] = deque(maxlen=cfg.history_size)
        self._clients: list[asyncio.StreamWriter] = []
        self._write_limit = cfg.subscriber_max_buffer_size * RECORD.size
        self.discarded_count = 0
        try:
            loop_runner.run_async(self._start_server(), timeout=1.0)
        except (OSError, FutureTimeoutError) as e:
            self.close()
            raise TransportError(
                f"cannot listen on {cfg.host}:{cfg.port} for '{cfg.service_name}': {e}"
            ) from e

    @property
    def port(self) -> int:
        if self._server is None or not self._server.sockets:
            return 0
        return int(self._server.sockets[0].getsockname()[1])

    async def _start_server(self):
        self._server = await asyncio.start_server(
            self._handle_client, self.cfg.host, self.cfg.port, reuse_address=True
        )
        L.info(
            "Trigger bus '%s' listening on %s:%d history=%d max_subscribers=%d",
            self.cfg.service_name,
            self.cfg.host,
            self.port,
            self.cfg.history_size,
            self.cfg.max_subscribers,
        )

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ):
        self._tasks.register(asyncio.current_task())
        peer = writer.get_extra_info("peername")
        joined = False
        try:
            timeout = self.cfg.connect_timeout_ms / 1000.0
            magic, name_len = HELLO.unpack(
                await asyncio.wait_for(reader.readexactly(HELLO.size), timeout)
            )
            name = (
                await asyncio.wait_for(reader.readexactly(name_len), timeout)
            ).decode("utf-8", errors="replace")
            if magic != MAGIC or name != self.cfg.service_name:
                L.warning("Reject subscriber %s: service %r", peer, name)
                writer.write(REPLY.pack(MAGIC, STATUS_SERVICE_MISMATCH))
                await writer.drain()
                return
            if len(self._clients) >= self.cfg.max_subscribers:
                L.warning(
                    "Reject subscriber %s: limit %d reached",
                    peer,
                    self.cfg.max_subscribers,
                )
                writer.write(REPLY.pack(MAGIC, STATUS_TOO_MANY_SUBSCRIBERS))
                await writer.drain()
                return
            history = list(self._history)
            writer.write(REPLY.pack(MAGIC, len(history)) + b"".join(history))
            await writer.drain()
            self._clients.append(writer)
            joined = True
            L.info("Subscriber %s joined (history=%d)", peer, len(history))
            # Subscribers never send after the hello; EOF means they left.
            while await reader.read(64):
                pass
        except (asyncio.IncompleteReadError, asyncio.TimeoutError, ConnectionError) as e:
            L.debug("Subscriber %s dropped: %s", peer, type(e).__name__)
        finally:
            if writer in self._clients:
                self._clients.remove(writer)
            if joined:
                L.info("Subscriber %s left", peer)
            writer.close()

    def publish(self, event: TriggerEvent) -> int:
        return self._tasks.loop_runner.run_async(
            self._broadcast(encode_trigger(event)), timeout=0.5
        )

    async def _broadcast(self, record: bytes) -> int:
        if self.cfg.history_size > 0:
            self._history.append(record)
        delivered = 0
        for writer in list(self._clients):
            if writer.is_closing():
                self._clients.remove(writer)
                continue
            if writer.transport.get_write_buffer_size() >= self._write_limit:
                # Slow subscriber: discard this sample for it rather than block.
                self.discarded_count += 1
                continue
            writer.write(record)
            delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._clients)

    def close(self):
        self._tasks.cancel_and_clear()

        async def _cleanup():
            for writer in list(self._clients):
                writer.close()
            self._clients.clear()
            if self._server is not None:
                self._server.close()
                await self._server.wait_closed()
            self._server = None

        run_async_cleanup(_cleanup(), loop_runner=self._tasks.loop_runner, timeout=0.5)


class TcpSubscriber(TriggerSubscriber):
    def __init__(self, cfg: TransportConfig, loop_runner: LoopRunner):
        self.cfg = cfg
        self._tasks = AsyncTaskOwner(loop_runner=loop_runner, owner_name="tcp_subscriber")
        self._buffer = SubscriberBuffer(
            cfg.subscriber_max_buffer_size, cfg.enable_safe_overflow
        )
        self._writer: asyncio.StreamWriter | None = None
        self._error: TransportError | None = None
        self.connect()

    def connect(self):
        timeout = self.cfg.connect_timeout_ms / 1000.0
        try:
            history = self._tasks.loop_runner.run_async(
                self._connect(timeout), timeout=timeout * 2 + 0.5
            )
        except TransportError:
            raise
        except (OSError, asyncio.IncompleteReadError, asyncio.TimeoutError, FutureTimeoutError) as e:
            raise TransportError(
                f"cannot subscribe to '{self.cfg.service_name}' at {self.cfg.host}:{self.cfg.port}: {type(e).__name__}: {e}"
            ) from e
        self._error = None
        L.info(
            "Subscribed to '%s' at %s:%d (history=%d)",
            self.cfg.service_name,
            self.cfg.host,
            self.cfg.port,
            history,
        )

    async def _connect(self, timeout: float) -> int:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(self.cfg.host, self.cfg.port), timeout
        )
        name = self.cfg.service_name.encode("utf-8")
        writer.write(HELLO.pack(MAGIC, len(name)) + name)
        await writer.drain()
        magic, status = REPLY.unpack(
            await asyncio.wait_for(reader.readexactly(REPLY.size), timeout)
        )
        if magic != MAGIC or status < 0:
            writer.close()
            reason = _STATUS_TEXT.get(status, "bad handshake")
            raise TransportError(f"subscription to '{self.cfg.service_name}' rejected: {reason}")
        for _ in range(status):
            data = await asyncio.wait_for(reader.readexactly(RECORD.size), timeout)
            self._buffer.push(decode_trigger(data))
        self._writer = writer
        self._tasks.register(
            asyncio.create_task(self._read_loop(reader), name="tcp_subscriber.read")
        )
        return status

    async def _read_loop(self, reader: asyncio.StreamReader):
        try:
            while True:
                data = await reader.readexactly(RECORD.size)
                self._buffer.push(decode_trigger(data))
        except (asyncio.IncompleteReadError, ConnectionError) as e:
            self._error = TransportError(
                f"connection to '{self.cfg.service_name}' lost ({type(e).__name__})"
            )
            L.warning("%s", self._error)
        finally:
            if self._writer is not None:
                self._writer.close()

    def receive_next(self) -> TriggerEvent | None:
        event = self._buffer.pop_nowait()
        if event is None and self._error is not None:
            raise self._error
        return event

    def drain_history(self) -> list[TriggerEvent]:
        return self._buffer.drain()

    def reconnect(self):
        self._disconnect()
        self.connect()

    @property
    def overflow_count(self) -> int:
        return self._buffer.overflow_count

    def _disconnect(self):
        self._tasks.cancel_and_clear()
        writer, self._writer = self._writer, None

        async def _cleanup():
            if writer is not None:
                writer.close()

        run_async_cleanup(_cleanup(), loop_runner=self._tasks.loop_runner, timeout=0.5)

    def close(self):
        self._disconnect()


@register_transport("tcp")
class TcpTransport(BaseTransport):
    def __init__(self, cfg: TransportConfig, *, loop_runner: LoopRunner | None = None):
        super().__init__(cfg)
        self._owns_loop = loop_runner is None
        self.loop_runner = loop_runner or LoopRunner(name="trigger_sync.transport.tcp")
        self._ports: list[TriggerPublisher | TriggerSubscriber] = []

    def create_publisher(self) -> TcpPublisher:
        pub = TcpPublisher(self.cfg, self.loop_runner)
        self._ports.append(pub)
        return pub

    def create_subscriber(self) -> TcpSubscriber:
        sub = TcpSubscriber(self.cfg, self.loop_runner)
        self._ports.append(sub)
        return sub

    def close(self):
        for port in self._ports:
            try:
                port.close()
            except Exception:
                L.exception("Transport port close failed: %r", port)
        self._ports.clear()
        if self._owns_loop:
            self.loop_runner.shutdown_loop()


__all__ = [
    "TcpTransport",
    "TcpPublisher",
    "TcpSubscriber",
    "encode_trigger",
    "decode_trigger",
]
