"""Trigger ingestion: late-join backlog drain and steady-state polling."""

from __future__ import annotations

import logging

from core.contracts import TriggerEvent
from sync.pending import PendingTriggerQueue
from transport.base import TriggerSubscriber

L = logging.getLogger("trigger_sync.ingest")


class TriggerIngestor:
    def __init__(self, subscriber: TriggerSubscriber, pending: PendingTriggerQueue):
        self.subscriber = subscriber
        self.pending = pending
        self.received_count = 0
        self.rejected_count = 0
        self.dropped_count = 0
        self.restart_count = 0

    def drain_backlog(self) -> list[TriggerEvent]:
        """Queue whatever history the transport holds right now; never waits."""
        backlog = self.subscriber.drain_history()
        accepted = [event for event in backlog if self._append(event, historical=True)]
        L.info("Drained %d historical trigger(s)", len(accepted))
        return accepted

    def ingest(self, event: TriggerEvent) -> bool:
        return self._append(event, historical=False)

    def poll(self, max_events: int | None = None) -> int:
        """Ingest every trigger currently available without blocking.

        TransportError from the subscriber propagates; retry policy belongs to
        the caller.
        """
        count = 0
        while max_events is None or count < max_events:
            event = self.subscriber.receive_next()
            if event is None:
                break
            self.ingest(event)
            count += 1
        return count

    def _append(self, event: TriggerEvent, *, historical: bool) -> bool:
        current_epoch = self.pending.publisher_epoch
        if current_epoch is not None and event.publisher_epoch > current_epoch:
            stale = self.pending.start_session(event.publisher_epoch)
            self.restart_count += 1
            L.warning(
                "Publisher restarted (epoch %d -> %d); discarded %d stale trigger(s)",
                current_epoch,
                event.publisher_epoch,
                len(stale),
            )
        accepted, dropped = self.pending.append(event)
        if not accepted:
            self.rejected_count += 1
            L.debug(
                "Ignored trigger id=%d epoch=%d (not newer than id=%s epoch=%s)",
                event.trigger_id,
                event.publisher_epoch,
                self.pending.last_trigger_id,
                self.pending.publisher_epoch,
            )
            return False
        self.received_count += 1
        L.debug(
            "%s trigger: id=%d hw_ts=%d ipc_delay=%dns",
            "Historical" if historical else "Received",
            event.trigger_id,
            event.hardware_timestamp_ns,
            event.publish_delay_ns,
        )
        if dropped is not None:
            self.dropped_count += 1
            L.warning(
                "Dropped old trigger id=%d (pending queue at %d, frames too slow)",
                dropped.trigger_id,
                self.pending.max_size,
            )
        return True


__all__ = ["TriggerIngestor"]
