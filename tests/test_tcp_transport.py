import time
import unittest
import uuid
from dataclasses import replace

from core.contracts import TriggerEvent
from core.errors import TransportError
from core.lifecycle import LoopRunner
from transport.base import TransportConfig, create_transport
from transport.tcp import RECORD, decode_trigger, encode_trigger


def _t(trigger_id: int) -> TriggerEvent:
    return TriggerEvent(
        trigger_id=trigger_id,
        hardware_timestamp_ns=1_700_000_000_000_000_000 + trigger_id,
        publish_timestamp_ns=1_700_000_000_000_050_000 + trigger_id,
    )


def _receive(sub, count: int, timeout_s: float = 2.0):
    got = []
    deadline = time.perf_counter() + timeout_s
    while len(got) < count and time.perf_counter() < deadline:
        event = sub.receive_next()
        if event is None:
            time.sleep(0.01)
            continue
        got.append(event)
    return got


def _wait_for(predicate, timeout_s: float = 2.0) -> bool:
    deadline = time.perf_counter() + timeout_s
    while time.perf_counter() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestWireFormat(unittest.TestCase):
    def test_record_is_32_little_endian_bytes(self):
        data = encode_trigger(TriggerEvent(1, 2, 3, 4))
        self.assertEqual(RECORD.size, 32)
        self.assertEqual(data[:8], (1).to_bytes(8, "little"))
        self.assertEqual(data[24:], (4).to_bytes(8, "little"))
        self.assertEqual(decode_trigger(data), TriggerEvent(1, 2, 3, 4))


class TestTcpTransport(unittest.TestCase):
    def setUp(self):
        self.loop_runner = LoopRunner(name="test.tcp.loop")
        self.cfg = TransportConfig(
            service_name=f"Camera/Sync/{uuid.uuid4().hex[:8]}",
            host="127.0.0.1",
            port=0,
            history_size=3,
            max_subscribers=1,
        )
        self.pub_side = create_transport("tcp", self.cfg, loop_runner=self.loop_runner)
        self.publisher = self.pub_side.create_publisher()
        self.sub_cfg = replace(self.cfg, port=self.publisher.port)
        self.sub_side = create_transport(
            "tcp", self.sub_cfg, loop_runner=self.loop_runner
        )

    def tearDown(self):
        self.sub_side.close()
        self.pub_side.close()
        self.loop_runner.shutdown_loop()

    def test_late_subscriber_receives_history_then_live_events(self):
        for i in range(1, 6):
            self.publisher.publish(_t(i))
        sub = self.sub_side.create_subscriber()

        history = sub.drain_history()
        self.assertEqual([e.trigger_id for e in history], [3, 4, 5])
        self.assertEqual(history[0], _t(3))

        self.assertTrue(_wait_for(lambda: self.publisher.subscriber_count == 1))
        self.assertEqual(self.publisher.publish(_t(6)), 1)
        got = _receive(sub, 1)
        self.assertEqual(got, [_t(6)])

    def test_empty_history_drain_does_not_block(self):
        sub = self.sub_side.create_subscriber()
        t0 = time.perf_counter()
        self.assertEqual(sub.drain_history(), [])
        self.assertIsNone(sub.receive_next())
        self.assertLess(time.perf_counter() - t0, 0.1)

    def test_subscriber_limit_and_service_name_enforced(self):
        self.sub_side.create_subscriber()
        self.assertTrue(_wait_for(lambda: self.publisher.subscriber_count == 1))
        with self.assertRaises(TransportError):
            self.sub_side.create_subscriber()

        wrong = create_transport(
            "tcp",
            replace(self.sub_cfg, service_name="Other/Service"),
            loop_runner=self.loop_runner,
        )
        try:
            with self.assertRaises(TransportError):
                wrong.create_subscriber()
        finally:
            wrong.close()

    def test_lost_publisher_surfaces_as_transport_error(self):
        sub = self.sub_side.create_subscriber()
        self.assertTrue(_wait_for(lambda: self.publisher.subscriber_count == 1))
        self.pub_side.close()

        def _errored():
            try:
                sub.receive_next()
            except TransportError:
                return True
            return False

        self.assertTrue(_wait_for(_errored))

    def test_connect_refused_raises_transport_error(self):
        self.pub_side.close()
        with self.assertRaises(TransportError):
            self.sub_side.create_subscriber()


if __name__ == "__main__":
    unittest.main()
