"""Trigger-frame correlation: bidirectional proximity scoring plus cleanup."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from core.contracts import (
    NS_PER_MS,
    Classification,
    CorrelationResult,
    FrameEvent,
    TriggerEvent,
)
from sync.config import SyncConfig
from sync.pending import PendingTriggerQueue

L = logging.getLogger("trigger_sync.correlator")


@dataclass(frozen=True, slots=True)
class Candidate:
    index: int
    trigger: TriggerEvent
    diff_ms: float
    classification: Classification
    score_ms: float


def score_trigger(
    trigger: TriggerEvent,
    delivery_timestamp_ns: int,
    future_penalty_factor: float,
) -> tuple[float, Classification, float]:
    """Return (diff_ms, classification, score_ms) for one queued trigger."""
    diff_ms = abs(delivery_timestamp_ns - trigger.hardware_timestamp_ns) / NS_PER_MS
    if trigger.hardware_timestamp_ns < delivery_timestamp_ns:
        return diff_ms, Classification.PAST, diff_ms
    return diff_ms, Classification.FUTURE, diff_ms * future_penalty_factor


def select_best_candidate(
    triggers: Sequence[TriggerEvent],
    delivery_timestamp_ns: int,
    *,
    tolerance_window_ms: float,
    future_penalty_factor: float,
) -> Candidate | None:
    """Pick the eligible trigger with the lowest score.

    Eligible means `diff_ms < tolerance_window_ms`. Equal scores resolve to
    the lower trigger_id, which is the earlier-queued entry.
    """
    best: Candidate | None = None
    for index, trigger in enumerate(triggers):
        diff_ms, cls, score = score_trigger(
            trigger, delivery_timestamp_ns, future_penalty_factor
        )
        if not diff_ms < tolerance_window_ms:
            continue
        if best is None or (score, trigger.trigger_id) < (
            best.score_ms,
            best.trigger.trigger_id,
        ):
            best = Candidate(
                index=index,
                trigger=trigger,
                diff_ms=diff_ms,
                classification=cls,
                score_ms=score,
            )
    return best


class TriggerCorrelator:
    """Matches frame-delivery events against the pending trigger queue."""

    def __init__(self, pending: PendingTriggerQueue, config: SyncConfig):
        self.pending = pending
        self.config = config
        self.matched_count = 0
        self.unmatched_count = 0

    def correlate(self, frame: FrameEvent) -> CorrelationResult:
        delivery_ns = int(frame.delivery_timestamp_ns)
        # Scoring and eviction must see the same queue; hold the lock for both.
        with self.pending.lock:
            best = select_best_candidate(
                self.pending.snapshot(),
                delivery_ns,
                tolerance_window_ms=self.config.tolerance_window_ms,
                future_penalty_factor=self.config.future_penalty_factor,
            )
            evicted = (
                self.pending.evict_older_than(best.index) if best is not None else []
            )
            remaining = len(self.pending)

        if best is None:
            self.unmatched_count += 1
            L.warning(
                "[%5s] no matching trigger within %.0fms (frame at %dns, pending=%d)",
                frame.frame_seq,
                self.config.tolerance_window_ms,
                delivery_ns,
                remaining,
            )
            return CorrelationResult(delivery_timestamp_ns=delivery_ns)

        self.matched_count += 1
        evicted_ids = [t.trigger_id for t in evicted]
        if evicted_ids:
            L.debug(
                "CLEANUP: removed %d old trigger(s) ids=%s",
                len(evicted_ids),
                evicted_ids,
            )
        result = CorrelationResult(
            delivery_timestamp_ns=delivery_ns,
            matched=best.trigger,
            classification=best.classification,
            score_ms=best.score_ms,
            evicted_count=len(evicted_ids),
            evicted_ids=evicted_ids,
        )
        L.info(
            "[%5s] SYNCED [%s]: trigger_id=%d hw_exposure_ts=%d delivery_ts=%d "
            "total_latency=%.1fms transport_delay=%.1fms score=%.1fms cleaned=%d",
            frame.frame_seq,
            best.classification.value,
            best.trigger.trigger_id,
            best.trigger.hardware_timestamp_ns,
            delivery_ns,
            result.latency_ms,
            result.transport_delay_ms,
            best.score_ms,
            result.evicted_count,
        )
        return result


__all__ = [
    "Candidate",
    "score_trigger",
    "select_best_candidate",
    "TriggerCorrelator",
]
