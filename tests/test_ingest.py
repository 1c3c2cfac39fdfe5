import time
import unittest
import uuid

from core.contracts import TriggerEvent
from core.errors import TransportError
from core.worker import IngestWorker, retry_delay_s
from sync.ingest import TriggerIngestor
from sync.pending import PendingTriggerQueue
from transport.base import TransportConfig, TriggerSubscriber, create_transport
from trigger import TriggerGateway


def _t(trigger_id: int) -> TriggerEvent:
    return TriggerEvent(trigger_id=trigger_id, hardware_timestamp_ns=trigger_id * 1000)


class _ListSubscriber(TriggerSubscriber):
    def __init__(self, events=None):
        self.events = list(events or [])

    def receive_next(self):
        return self.events.pop(0) if self.events else None


class _FlakySubscriber(TriggerSubscriber):
    """Fails `failures` times, then serves events after a reconnect."""

    def __init__(self, failures: int, events):
        self.failures = failures
        self.events = list(events)
        self.reconnects = 0

    def receive_next(self):
        if self.failures > 0:
            self.failures -= 1
            raise TransportError("connection lost")
        return self.events.pop(0) if self.events else None

    def reconnect(self):
        self.reconnects += 1


class TestTriggerIngestor(unittest.TestCase):
    def test_late_join_with_empty_backlog_returns_immediately(self):
        cfg = TransportConfig(service_name=f"Camera/Sync/{uuid.uuid4().hex}")
        with create_transport("memory", cfg).session() as transport:
            ingestor = TriggerIngestor(transport.create_subscriber(), PendingTriggerQueue())
            t0 = time.perf_counter()
            self.assertEqual(ingestor.drain_backlog(), [])
            self.assertLess(time.perf_counter() - t0, 0.1)
            self.assertEqual(len(ingestor.pending), 0)

    def test_backlog_drain_queues_retained_history(self):
        cfg = TransportConfig(
            service_name=f"Camera/Sync/{uuid.uuid4().hex}", history_size=10
        )
        with create_transport("memory", cfg).session() as transport:
            pub = transport.create_publisher()
            for i in range(1, 4):
                pub.publish(_t(i))
            ingestor = TriggerIngestor(transport.create_subscriber(), PendingTriggerQueue())
            drained = ingestor.drain_backlog()
        self.assertEqual([e.trigger_id for e in drained], [1, 2, 3])
        self.assertEqual(ingestor.pending.ids(), [1, 2, 3])

    def test_poll_ingests_everything_available(self):
        ingestor = TriggerIngestor(
            _ListSubscriber([_t(1), _t(2), _t(3)]), PendingTriggerQueue()
        )
        self.assertEqual(ingestor.poll(max_events=2), 2)
        self.assertEqual(ingestor.poll(), 1)
        self.assertEqual(ingestor.poll(), 0)
        self.assertEqual(ingestor.received_count, 3)

    def test_replayed_triggers_are_ignored(self):
        ingestor = TriggerIngestor(
            _ListSubscriber([_t(1), _t(2), _t(1), _t(2), _t(3)]), PendingTriggerQueue()
        )
        ingestor.poll()
        self.assertEqual(ingestor.pending.ids(), [1, 2, 3])
        self.assertEqual(ingestor.rejected_count, 2)

    def test_restarted_publisher_ids_are_accepted(self):
        cfg = TransportConfig(service_name=f"Camera/Sync/{uuid.uuid4().hex}")
        with create_transport("memory", cfg).session() as sub_side:
            ingestor = TriggerIngestor(sub_side.create_subscriber(), PendingTriggerQueue())
            with create_transport("memory", cfg).session() as first:
                gateway = TriggerGateway(first.create_publisher())
                for _ in range(50):
                    gateway.report_trigger("TEST")
                ingestor.poll()
            self.assertEqual(ingestor.pending.ids()[-1], 50)

            with create_transport("memory", cfg).session() as second:
                restarted = TriggerGateway(second.create_publisher())
                for _ in range(10):
                    restarted.report_trigger("TEST")
                with self.assertLogs("trigger_sync.ingest", level="WARNING"):
                    ingestor.poll()

        self.assertEqual(ingestor.pending.ids(), list(range(1, 11)))
        self.assertEqual(ingestor.pending.publisher_epoch, restarted.epoch)
        self.assertEqual(ingestor.restart_count, 1)
        self.assertEqual(ingestor.rejected_count, 0)

    def test_late_trigger_from_previous_publisher_is_rejected(self):
        old = [TriggerEvent(trigger_id=i, publisher_epoch=10) for i in (1, 2)]
        new = [TriggerEvent(trigger_id=i, publisher_epoch=20) for i in (1, 2)]
        ingestor = TriggerIngestor(
            _ListSubscriber(old + new[:1] + [old[1]] + new[1:]), PendingTriggerQueue()
        )
        with self.assertLogs("trigger_sync.ingest", level="WARNING"):
            ingestor.poll()
        self.assertEqual(ingestor.pending.ids(), [1, 2])
        self.assertEqual(ingestor.pending.publisher_epoch, 20)
        self.assertEqual(ingestor.restart_count, 1)
        self.assertEqual(ingestor.rejected_count, 1)

    def test_cap_drops_oldest_and_counts_it(self):
        ingestor = TriggerIngestor(
            _ListSubscriber([_t(i) for i in range(1, 6)]), PendingTriggerQueue(max_size=3)
        )
        with self.assertLogs("trigger_sync.ingest", level="WARNING"):
            ingestor.poll()
        self.assertEqual(ingestor.pending.ids(), [3, 4, 5])
        self.assertEqual(ingestor.dropped_count, 2)

    def test_poll_propagates_transport_error(self):
        ingestor = TriggerIngestor(_FlakySubscriber(1, []), PendingTriggerQueue())
        with self.assertRaises(TransportError):
            ingestor.poll()


class TestIngestWorker(unittest.TestCase):
    def test_backoff_doubles_up_to_cap(self):
        delays = [retry_delay_s(n) for n in range(0, 9)]
        self.assertEqual(delays[0], 0.0)
        self.assertAlmostEqual(delays[1], 0.05)
        self.assertAlmostEqual(delays[2], 0.10)
        self.assertAlmostEqual(delays[3], 0.20)
        self.assertEqual(delays[-1], 2.0)

    def test_worker_retries_and_recovers(self):
        sub = _FlakySubscriber(2, [_t(1), _t(2)])
        ingestor = TriggerIngestor(sub, PendingTriggerQueue())
        worker = IngestWorker(ingestor, poll_interval_s=0.005)
        worker.start()
        try:
            deadline = time.perf_counter() + 2.0
            while len(ingestor.pending) < 2 and time.perf_counter() < deadline:
                time.sleep(0.01)
        finally:
            worker.stop()
        self.assertEqual(ingestor.pending.ids(), [1, 2])
        self.assertEqual(sub.reconnects, 2)
        self.assertEqual(worker.retry_count, 2)
        self.assertIsNone(worker.last_error)


if __name__ == "__main__":
    unittest.main()
