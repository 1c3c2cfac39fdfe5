# -- coding: utf-8 --
"""OutputManager: keep recent sync records, persist them, fan out downstream."""

import logging
import os
import queue
import threading
from collections import deque
from typing import Any

from core.contracts import Classification, SyncRecord
from core.queue_utils import drain_queue_nowait
from utils.path_time import UtcDailyDirCache, ns_to_utc_datetime

L = logging.getLogger("trigger_sync.output")

CSV_HEADER = (
    "frame_seq,device_id,delivery_ts_ns,trigger_id,exposure_ts_ns,"
    "classification,score_ms,latency_ms,evicted,synchronized,remark\n"
)


class ResultStore:
    _STOP_SENTINEL = None

    def __init__(self, base_dir: str, max_records: int = 10, write_csv: bool = False):
        self.base_dir = base_dir
        self.csv_root_dir = os.path.join(base_dir, "sync")
        self._max_records = max_records
        self._records: deque[SyncRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()
        self._dir_cache = UtcDailyDirCache()
        self.total_count = 0
        self.past_count = 0
        self.future_count = 0
        self.unsynced_count = 0
        self.skipped_count = 0
        self.evicted_count = 0
        self._write_queue: queue.Queue[SyncRecord | None] | None = (
            queue.Queue() if write_csv else None
        )
        self._writer_thread = (
            threading.Thread(target=self._writer_loop, name="output.csv", daemon=True)
            if write_csv
            else None
        )
        if write_csv:
            os.makedirs(self.csv_root_dir, exist_ok=True)
        if self._writer_thread:
            self._writer_thread.start()

    def stop(self):
        thread = self._writer_thread
        q = self._write_queue
        if thread is None or q is None:
            return
        q.put(self._STOP_SENTINEL)
        thread.join()
        self._writer_thread = None
        self._write_queue = None

    def submit(self, rec: SyncRecord):
        with self._lock:
            self._records.appendleft(rec)
            self.total_count += 1
            self.evicted_count += rec.evicted_count
            if rec.classification == Classification.PAST.value:
                self.past_count += 1
            elif rec.classification == Classification.FUTURE.value:
                self.future_count += 1
            else:
                self.unsynced_count += 1
        if self._write_queue is not None:
            self._write_queue.put(rec)

    def note_skipped(self, count: int = 1):
        with self._lock:
            self.skipped_count += count

    @property
    def latest_records(self) -> list[SyncRecord]:
        with self._lock:
            return list(self._records)

    @property
    def max_records(self) -> int:
        return self._max_records

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self.total_count
            synced = self.past_count + self.future_count
            return {
                "total": total,
                "synced": synced,
                "past": self.past_count,
                "future": self.future_count,
                "unsynced": self.unsynced_count,
                "skipped": self.skipped_count,
                "evicted": self.evicted_count,
                "sync_rate": (synced / total) if total else 0.0,
            }

    def _writer_loop(self):
        queue_ref = self._write_queue
        if queue_ref is None:
            raise RuntimeError("writer queue missing")
        while True:
            item = queue_ref.get()
            try:
                if item is None:
                    break
                self._append_csv(item)
            except OSError:
                L.exception("CSV append failed for frame %s", item.frame_seq)
            finally:
                queue_ref.task_done()

    def _append_csv(self, rec: SyncRecord):
        day_dir = self._dir_cache.get_or_create(
            self.csv_root_dir, ns_to_utc_datetime(rec.delivery_timestamp_ns)
        )
        csv_path = os.path.join(day_dir, "records.csv")
        write_header = not os.path.exists(csv_path)
        with open(csv_path, "a", encoding="utf-8") as f:
            if write_header:
                f.write(CSV_HEADER)
            f.write(
                f"{rec.frame_seq},{rec.device_id},{rec.delivery_timestamp_ns},"
                f"{_fmt_opt(rec.trigger_id)},{_fmt_opt(rec.exposure_timestamp_ns)},"
                f"{rec.classification},{_fmt_ms(rec.score_ms)},{_fmt_ms(rec.latency_ms)},"
                f"{rec.evicted_count},{int(rec.synchronized)},{rec.remark}\n"
            )


def _fmt_opt(value) -> str:
    return "" if value is None else str(value)


def _fmt_ms(value: float | None) -> str:
    return "" if value is None else f"{value:.3f}"


class OutputManager:
    """Hands each sync record to the store and to every downstream stream.

    Streams are bounded queues; a slow consumer loses its oldest records
    rather than stalling the frame worker.
    """

    def __init__(self, store: ResultStore):
        self._store = store
        self._streams: list[queue.Queue] = []
        self._lock = threading.Lock()
        self.dropped_count = 0

    def open_stream(self, maxsize: int = 64) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=max(1, int(maxsize)))
        with self._lock:
            self._streams.append(q)
        return q

    def publish(self, rec: SyncRecord, payload: Any | None = None):
        self._store.submit(rec)
        with self._lock:
            streams = list(self._streams)
        for q in streams:
            self._offer(q, (rec, payload))

    def note_skipped(self, count: int = 1):
        self._store.note_skipped(count)

    def _offer(self, q: queue.Queue, item):
        try:
            q.put_nowait(item)
            return
        except queue.Full:
            pass
        try:
            q.get_nowait()
            q.task_done()
            self.dropped_count += 1
        except queue.Empty:
            pass
        try:
            q.put_nowait(item)
        except queue.Full:
            self.dropped_count += 1
            L.warning("Output stream full, dropped frame %s", item[0].frame_seq)

    def stop(self):
        with self._lock:
            streams, self._streams = self._streams, []
        discarded = sum(drain_queue_nowait(q) for q in streams)
        if discarded:
            L.info("Discarded %d unread record(s) from output streams", discarded)
        self._store.stop()

    # ---- Read API (proxy to internal store) ----
    @property
    def latest_records(self):
        return self._store.latest_records

    @property
    def max_records(self) -> int:
        return self._store.max_records

    def stats(self):
        return self._store.stats()


__all__ = ["ResultStore", "OutputManager", "CSV_HEADER"]
