"""Core runtime: trigger publisher and frame synchronizer orchestration."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from core.lifecycle import LoopRunner
from output.manager import OutputManager, ResultStore
from sync.config import SyncConfig, build_sync_config_from_loaded_config
from sync.correlator import TriggerCorrelator
from sync.decimator import OutputDecimator
from sync.ingest import TriggerIngestor
from sync.pending import PendingTriggerQueue
from transport.base import (
    BaseTransport,
    TransportConfig,
    build_transport_config,
    create_transport,
)
from trigger import TriggerConfig, TriggerGateway, create_trigger
from trigger.base import build_trigger_config_from_loaded_config

from .worker import BaseWorker, FrameWorker, IngestWorker

L = logging.getLogger("trigger_sync.runtime")

SUPERVISE_INTERVAL_S = 0.1


@dataclass
class RuntimeBuildConfig:
    save_dir: str = "data"
    history_size: int = 10
    write_csv: bool = False
    poll_interval_ms: int = 10
    transport_type: str = "tcp"


def build_runtime_config_from_loaded_config(cfg) -> RuntimeBuildConfig:
    return RuntimeBuildConfig(
        save_dir=cfg.runtime.save_dir,
        history_size=cfg.output.history_size,
        write_csv=cfg.output.write_csv,
        poll_interval_ms=cfg.runtime.poll_interval_ms,
        transport_type=cfg.transport.type,
    )


class TriggerHandle(Protocol):
    def start(self) -> None: ...
    def stop(self) -> None: ...
    def raise_if_failed(self) -> None: ...


def _run_stages(stages: list[tuple[str, Callable[[], None]]]):
    stop_t0 = time.perf_counter()
    stage_t0 = stop_t0
    for name, fn in stages:
        try:
            fn()
        except Exception:
            L.exception("Shutdown stage failed: %s", name)
        finally:
            now = time.perf_counter()
            L.debug("Shutdown stage=%s elapsed=%.1fms", name, (now - stage_t0) * 1000)
            stage_t0 = now
    L.debug(
        "Shutdown stage=total elapsed=%.1fms",
        (time.perf_counter() - stop_t0) * 1000,
    )


def _raise_if_worker_stopped(worker: BaseWorker):
    if worker.has_started and not worker.is_alive:
        err = worker.last_error
        if err is not None:
            raise RuntimeError(
                f"{worker.name} stopped unexpectedly ({type(err).__name__})"
            ) from err
        raise RuntimeError(f"{worker.name} stopped unexpectedly")


class _SupervisedRuntime:
    """start/run/stop skeleton shared by both sides of the trigger link."""

    def __init__(self):
        self._stop_evt = threading.Event()
        self._started = False
        self._stopped = False

    def start(self):
        if self._started:
            raise RuntimeError(
                f"{type(self).__name__} is single-use; start() may only be called once"
            )
        if self._stopped:
            raise RuntimeError(
                f"{type(self).__name__} is stopped and cannot be started again"
            )
        self._started = True
        try:
            self._start()
        except Exception:
            L.exception("Runtime start failed; rolling back partial startup")
            try:
                self.stop()
            except Exception:
                L.exception("Runtime rollback stop failed")
            raise

    def request_stop(self):
        self._stop_evt.set()

    def run(self, runtime_limit_s: float | None = None):
        if not self._started:
            raise RuntimeError(f"{type(self).__name__}.run() requires start() first")
        start_ts = time.perf_counter()
        try:
            while not self._stop_evt.wait(SUPERVISE_INTERVAL_S):
                self._check_health()
                if (
                    runtime_limit_s is not None
                    and (time.perf_counter() - start_ts) >= runtime_limit_s
                ):
                    L.info(
                        "Runtime limit reached (%ss); shutting down service",
                        runtime_limit_s,
                    )
                    self.request_stop()
        finally:
            self.stop()

    def stop(self):
        if self._stopped:
            return
        self._stopped = True
        _run_stages(self._stop_stages())

    def _start(self):
        raise NotImplementedError

    def _check_health(self):
        raise NotImplementedError

    def _stop_stages(self) -> list[tuple[str, Callable[[], None]]]:
        raise NotImplementedError


class PublisherRuntime(_SupervisedRuntime):
    """Trigger side: timing sources -> gateway -> transport publisher."""

    def __init__(
        self,
        transport: BaseTransport,
        gateway: TriggerGateway,
        loop_runner: LoopRunner,
        *,
        owns_loop: bool = True,
    ):
        super().__init__()
        self.transport = transport
        self.gateway = gateway
        self.loop_runner = loop_runner
        self.owns_loop = owns_loop
        self.triggers: list[TriggerHandle] = []

    def start(self, triggers: Optional[list[TriggerHandle]] = None):
        self.triggers = list(triggers or [])
        super().start()

    def _start(self):
        if not self.triggers:
            L.info("No trigger source configured; publisher is idle")
        for t in list(self.triggers):
            t.start()

    def _check_health(self):
        for trig in self.triggers:
            trig.raise_if_failed()

    def _stop_stages(self):
        def _stop_triggers():
            for t in list(self.triggers):
                try:
                    t.stop()
                except Exception:
                    L.exception("Trigger stop failed: %r", t)

        def _shutdown_loop():
            if self.owns_loop:
                self.loop_runner.shutdown_loop()

        def _log_summary():
            L.info(
                "Publisher stopped: published=%d undelivered=%d last_id=%d",
                self.gateway.published_count,
                self.gateway.undelivered_count,
                self.gateway.last_trigger_id,
            )

        return [
            ("triggers", _stop_triggers),
            ("transport", self.transport.close),
            ("async_loop", _shutdown_loop),
            ("summary", _log_summary),
        ]


class SystemRuntime(_SupervisedRuntime):
    """Frame side: ingest triggers, pair each delivered frame with its exposure."""

    def __init__(
        self,
        transport: BaseTransport,
        ingestor: TriggerIngestor,
        ingest_worker: IngestWorker,
        frame_worker: FrameWorker,
        output_mgr: OutputManager,
        loop_runner: LoopRunner,
        *,
        owns_loop: bool = True,
    ):
        super().__init__()
        self.transport = transport
        self.ingestor = ingestor
        self.ingest_worker = ingest_worker
        self.frame_worker = frame_worker
        self.output_mgr = output_mgr
        self.loop_runner = loop_runner
        self.owns_loop = owns_loop
        self._camera_session_stack: ExitStack | None = None

    @property
    def camera(self):
        return self.frame_worker.camera

    @property
    def correlator(self) -> TriggerCorrelator:
        return self.frame_worker.correlator

    @property
    def decimator(self) -> OutputDecimator:
        return self.frame_worker.decimator

    def _start(self):
        # Late join: queue the retained history before the first frame arrives.
        self.ingestor.drain_backlog()
        self._enter_camera_session()
        self.ingest_worker.start()
        self.frame_worker.start()

    def _check_health(self):
        _raise_if_worker_stopped(self.frame_worker)
        _raise_if_worker_stopped(self.ingest_worker)

    def _stop_stages(self):
        def _stop_workers():
            if self.frame_worker.has_started:
                self.frame_worker.stop()
            if self.ingest_worker.has_started:
                self.ingest_worker.stop()

        def _shutdown_loop():
            if self.owns_loop:
                self.loop_runner.shutdown_loop()

        return [
            ("workers", _stop_workers),
            ("output_manager", self.output_mgr.stop),
            ("transport", self.transport.close),
            ("async_loop", _shutdown_loop),
            ("camera_session", self._exit_camera_session),
            ("summary", self._log_summary),
        ]

    def _log_summary(self):
        stats = self.output_mgr.stats()
        L.info(
            "Synchronizer stopped: frames=%d forwarded=%d synced=%d (past=%d future=%d) "
            "unsynced=%d evicted=%d pending=%d sync_rate=%.1f%%",
            self.decimator.frame_count,
            self.decimator.forwarded_count,
            stats["synced"],
            stats["past"],
            stats["future"],
            stats["unsynced"],
            stats["evicted"],
            len(self.correlator.pending),
            stats["sync_rate"] * 100.0,
        )

    def _enter_camera_session(self):
        if self._camera_session_stack is not None:
            return
        stack = ExitStack()
        stack.enter_context(self.camera.session())
        self._camera_session_stack = stack

    def _exit_camera_session(self):
        stack = self._camera_session_stack
        if stack is None:
            return
        self._camera_session_stack = None
        stack.close()


def _open_transport(
    transport_type: str, transport_cfg: TransportConfig, loop_runner: LoopRunner
) -> BaseTransport:
    if str(transport_type).strip().lower() == "tcp":
        return create_transport(transport_type, transport_cfg, loop_runner=loop_runner)
    return create_transport(transport_type, transport_cfg)


def build_publisher_runtime(
    *,
    transport_type: str,
    transport_cfg: TransportConfig,
    loop_runner: LoopRunner | None = None,
) -> PublisherRuntime:
    owns_loop = loop_runner is None
    loop_runner = loop_runner or LoopRunner(name="trigger_sync.publisher.loop")
    transport = _open_transport(transport_type, transport_cfg, loop_runner)
    try:
        publisher = transport.create_publisher()
    except Exception:
        transport.close()
        if owns_loop:
            loop_runner.shutdown_loop()
        raise
    return PublisherRuntime(
        transport,
        TriggerGateway(publisher),
        loop_runner=loop_runner,
        owns_loop=owns_loop,
    )


def create_trigger_sources(
    trigger_type: str,
    trigger_cfg: TriggerConfig,
    runtime: PublisherRuntime,
) -> list[TriggerHandle]:
    def on_trigger(source, hardware_timestamp_ns=None):
        runtime.gateway.report_trigger(source, hardware_timestamp_ns)

    kwargs = {}
    if str(trigger_type).strip().lower() == "tcp":
        kwargs["loop_runner"] = runtime.loop_runner
    return [create_trigger(trigger_type, trigger_cfg, on_trigger, **kwargs)]


def build_runtime(
    camera,
    *,
    config: RuntimeBuildConfig,
    sync_cfg: SyncConfig,
    transport_cfg: TransportConfig,
    loop_runner: LoopRunner | None = None,
) -> SystemRuntime:
    owns_loop = loop_runner is None
    loop_runner = loop_runner or LoopRunner(name="trigger_sync.subscriber.loop")
    transport = _open_transport(config.transport_type, transport_cfg, loop_runner)
    try:
        subscriber = transport.create_subscriber()
    except Exception:
        transport.close()
        if owns_loop:
            loop_runner.shutdown_loop()
        raise
    pending = PendingTriggerQueue(max_size=sync_cfg.max_pending_triggers)
    ingestor = TriggerIngestor(subscriber, pending)
    output_mgr = OutputManager(
        ResultStore(
            base_dir=config.save_dir,
            max_records=config.history_size,
            write_csv=config.write_csv,
        )
    )
    frame_worker = FrameWorker(
        camera,
        OutputDecimator(sync_cfg.output_decimation_ratio),
        TriggerCorrelator(pending, sync_cfg),
        output_mgr,
    )
    ingest_worker = IngestWorker(
        ingestor, poll_interval_s=max(1, int(config.poll_interval_ms)) / 1000.0
    )
    L.info(
        "Synchronizer ready: tolerance=%.1fms future_penalty=%.2f decimation=1/%d",
        sync_cfg.tolerance_window_ms,
        sync_cfg.future_penalty_factor,
        sync_cfg.output_decimation_ratio,
    )
    return SystemRuntime(
        transport,
        ingestor,
        ingest_worker,
        frame_worker,
        output_mgr,
        loop_runner=loop_runner,
        owns_loop=owns_loop,
    )


def build_runtime_from_loaded_config(
    camera,
    cfg,
    *,
    loop_runner: LoopRunner | None = None,
) -> SystemRuntime:
    return build_runtime(
        camera,
        config=build_runtime_config_from_loaded_config(cfg),
        sync_cfg=build_sync_config_from_loaded_config(cfg),
        transport_cfg=build_transport_config(cfg.transport),
        loop_runner=loop_runner,
    )


def build_publisher_runtime_from_loaded_config(
    cfg,
    *,
    loop_runner: LoopRunner | None = None,
) -> tuple[PublisherRuntime, list[TriggerHandle]]:
    runtime = build_publisher_runtime(
        transport_type=cfg.transport.type,
        transport_cfg=build_transport_config(cfg.transport),
        loop_runner=loop_runner,
    )
    try:
        triggers = create_trigger_sources(
            cfg.trigger.type, build_trigger_config_from_loaded_config(cfg), runtime
        )
    except Exception:
        runtime.stop()
        raise
    return runtime, triggers


__all__ = [
    "RuntimeBuildConfig",
    "build_runtime_config_from_loaded_config",
    "PublisherRuntime",
    "SystemRuntime",
    "build_publisher_runtime",
    "build_publisher_runtime_from_loaded_config",
    "create_trigger_sources",
    "build_runtime",
    "build_runtime_from_loaded_config",
]
