# -- coding: utf-8 --

import logging
import threading
import time

from trigger.base import BaseTrigger, TriggerConfig, register_trigger

L = logging.getLogger("trigger_sync.trigger.timer")


@register_trigger("timer")
class TimerTrigger(BaseTrigger):
    """Fixed-interval trigger standing in for a hardware interrupt line."""

    source = "TIMER"

    def __init__(self, cfg: TriggerConfig, on_trigger):
        super().__init__(cfg, on_trigger)
        if float(cfg.interval_ms) <= 0:
            raise ValueError("interval_ms must be > 0")
        self._stop_evt = threading.Event()
        self._thread: threading.Thread | None = None
        self._error: Exception | None = None
        self.fired_count = 0

    def start(self):
        if self._thread is not None:
            raise RuntimeError("TimerTrigger is single-use; start() may only be called once")
        self._thread = threading.Thread(
            target=self._run, name="trigger.timer", daemon=True
        )
        self._thread.start()
        L.info("Timer trigger started: interval=%.1fms", self.cfg.interval_ms)

    def stop(self):
        self._stop_evt.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            if self._thread.is_alive():
                L.warning("Timer trigger thread did not exit cleanly")
        L.info("Timer trigger stopped after %d trigger(s)", self.fired_count)

    def raise_if_failed(self):
        if self._error is not None:
            raise RuntimeError(
                f"TimerTrigger stopped unexpectedly ({type(self._error).__name__})"
            ) from self._error

    def _run(self):
        interval_s = float(self.cfg.interval_ms) / 1000.0
        next_ts = time.perf_counter()
        try:
            while not self._stop_evt.is_set():
                self.on_trigger(self.source)
                self.fired_count += 1
                # Schedule from the previous deadline so the cadence does not drift.
                next_ts += interval_s
                delay = next_ts - time.perf_counter()
                if delay < 0:
                    next_ts = time.perf_counter()
                    delay = 0
                if self._stop_evt.wait(delay):
                    break
        except Exception as e:
            self._error = e
            L.exception("Timer trigger error")


__all__ = ["TimerTrigger"]
