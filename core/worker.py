import logging
import threading

from core.contracts import CorrelationResult, FrameEvent, SyncRecord
from core.errors import TransportError
from sync.correlator import TriggerCorrelator
from sync.decimator import OutputDecimator
from sync.ingest import TriggerIngestor

L = logging.getLogger("trigger_sync.workers")

DEFAULT_POLL_INTERVAL_S = 0.01
RETRY_BACKOFF_BASE_S = 0.05
RETRY_BACKOFF_MAX_S = 2.0


class BaseWorker:
    def __init__(self, name: str = ""):
        self.name = name or self.__class__.__name__
        self._stop_evt = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_error: Exception | None = None

    def start(self):
        if self._thread is not None:
            raise RuntimeError(
                f"{self.name} is single-use; start() may only be called once"
            )
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def request_stop(self):
        self._stop_evt.set()

    def stop(self, timeout: float = 2.0):
        self._stop_evt.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                L.warning("%s worker thread did not exit cleanly", self.name)

    def _run(self):
        try:
            self.run()
        except Exception as e:
            self._last_error = e
            L.exception("%s worker error", self.name)

    @property
    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    @property
    def has_started(self) -> bool:
        return self._thread is not None

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    def run(self):
        raise NotImplementedError


def retry_delay_s(
    failures: int,
    *,
    base_s: float = RETRY_BACKOFF_BASE_S,
    max_s: float = RETRY_BACKOFF_MAX_S,
) -> float:
    """Exponential backoff: base, 2*base, 4*base, ... capped at max_s."""
    if failures <= 0:
        return 0.0
    return min(base_s * (2 ** (failures - 1)), max_s)


class IngestWorker(BaseWorker):
    """Polls the trigger transport without blocking and feeds the pending queue."""

    def __init__(
        self,
        ingestor: TriggerIngestor,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    ):
        super().__init__("IngestWorker")
        self.ingestor = ingestor
        self.poll_interval_s = poll_interval_s
        self.retry_count = 0

    def run(self):
        failures = 0
        while not self._stop_evt.is_set():
            try:
                self.ingestor.poll()
            except TransportError as e:
                failures += 1
                self.retry_count += 1
                delay = retry_delay_s(failures)
                L.warning(
                    "Trigger receive failed (%s); retry #%d in %.2fs", e, failures, delay
                )
                if self._stop_evt.wait(delay):
                    break
                try:
                    self.ingestor.subscriber.reconnect()
                except TransportError as re:
                    L.warning("Trigger transport reconnect failed: %s", re)
                    continue
                L.info("Trigger transport reconnected after %d failure(s)", failures)
                failures = 0
                continue
            failures = 0
            self._stop_evt.wait(self.poll_interval_s)


def make_sync_record(frame: FrameEvent, result: CorrelationResult) -> SyncRecord:
    trigger = result.matched
    return SyncRecord(
        frame_seq=frame.frame_seq,
        device_id=frame.device_id,
        delivery_timestamp_ns=frame.delivery_timestamp_ns,
        trigger_id=trigger.trigger_id if trigger else None,
        exposure_timestamp_ns=trigger.hardware_timestamp_ns if trigger else None,
        classification=result.classification.value,
        score_ms=result.score_ms if trigger else None,
        latency_ms=result.latency_ms,
        evicted_count=result.evicted_count,
        synchronized=trigger is not None,
        remark="" if trigger else "unsynchronized",
    )


class FrameWorker(BaseWorker):
    """Acquire -> decimate -> correlate -> publish -> release, one frame at a time."""

    def __init__(
        self,
        camera,
        decimator: OutputDecimator,
        correlator: TriggerCorrelator,
        output_mgr,
    ):
        super().__init__("FrameWorker")
        self.camera = camera
        self.decimator = decimator
        self.correlator = correlator
        self.output_mgr = output_mgr

    def run(self):
        while not self._stop_evt.is_set():
            frame = self.camera.acquire_frame()
            try:
                self.process_frame(frame)
            finally:
                # Release is owed for every acquired frame, forwarded or not.
                self.camera.release_frame(frame)

    def process_frame(self, frame: FrameEvent) -> SyncRecord | None:
        if not self.decimator.should_forward():
            L.debug(
                "[%5s] SKIPPED (processing every %dth frame)",
                frame.frame_seq,
                self.decimator.ratio,
            )
            self.output_mgr.note_skipped()
            return None
        result = self.correlator.correlate(frame)
        rec = make_sync_record(frame, result)
        self.output_mgr.publish(rec, frame.payload)
        return rec


__all__ = [
    "BaseWorker",
    "IngestWorker",
    "FrameWorker",
    "make_sync_record",
    "retry_delay_s",
]
