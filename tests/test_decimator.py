import unittest
from contextlib import contextmanager
from types import SimpleNamespace

from camera.base import BaseCamera, CameraConfig
from core.contracts import Classification, TriggerEvent
from core.errors import AcquisitionError, ConfigError
from core.worker import FrameWorker
from sync.config import SyncConfig, compute_decimation_ratio
from sync.correlator import TriggerCorrelator
from sync.decimator import OutputDecimator
from sync.pending import PendingTriggerQueue

MS = 1_000_000


class _ScriptedCamera(BaseCamera):
    """Hands out frames with preset delivery times and counts releases."""

    device_id = "scripted"

    def __init__(self, deliveries_ms):
        super().__init__(CameraConfig())
        self._deliveries = list(deliveries_ms)
        self.released_payloads = []

    def _grab(self):
        if not self._deliveries:
            raise AcquisitionError("script exhausted")
        delivery_ms = self._deliveries.pop(0)
        return f"payload-{delivery_ms}", int(delivery_ms * MS)

    def _release_payload(self, payload):
        self.released_payloads.append(payload)

    @contextmanager
    def session(self):
        yield self


class _RecordingOutput:
    def __init__(self):
        self.records = []
        self.skipped = 0

    def publish(self, rec, payload=None):
        self.records.append(rec)

    def note_skipped(self, count: int = 1):
        self.skipped += count


class TestDecimationRatio(unittest.TestCase):
    def test_ratio_from_rates(self):
        cases = [
            (30.0, 10.0, 3),
            (30.0, 30.0, 1),
            (30.0, 60.0, 1),
            (30.0, 15.0, 2),
            (30.0, 12.0, 3),
            (60.0, 25.0, 2),
        ]
        for input_fps, output_fps, expected in cases:
            with self.subTest(input_fps=input_fps, output_fps=output_fps):
                self.assertEqual(compute_decimation_ratio(input_fps, output_fps), expected)

    def test_non_positive_rate_rejected(self):
        with self.assertRaises(ConfigError):
            compute_decimation_ratio(30.0, 0.0)

    def test_invalid_ratio_rejected(self):
        for ratio in (0, -1, 1.5, True):
            with self.subTest(ratio=ratio):
                with self.assertRaises(ConfigError):
                    OutputDecimator(ratio)


class TestOutputDecimator(unittest.TestCase):
    def test_last_frame_of_each_group_is_forwarded(self):
        dec = OutputDecimator(3)
        pattern = [dec.should_forward() for _ in range(9)]
        self.assertEqual(
            pattern, [False, False, True, False, False, True, False, False, True]
        )
        self.assertEqual(dec.forwarded_count, 3)
        self.assertEqual(dec.skipped_count, 6)

    def test_ratio_one_forwards_everything(self):
        dec = OutputDecimator(1)
        self.assertTrue(all(dec.should_forward() for _ in range(5)))


class TestFrameWorkerDecimation(unittest.TestCase):
    def _build(self, deliveries_ms, ratio):
        camera = _ScriptedCamera(deliveries_ms)
        pending = PendingTriggerQueue()
        correlator = TriggerCorrelator(
            pending, SyncConfig(output_decimation_ratio=ratio)
        )
        output = _RecordingOutput()
        worker = FrameWorker(camera, OutputDecimator(ratio), correlator, output)
        return camera, pending, worker, output

    def test_thirty_to_ten_forwards_one_in_three_and_releases_all(self):
        deliveries = [1000 + i * 33.0 for i in range(30)]
        camera, pending, worker, output = self._build(deliveries, ratio=3)
        for i, d in enumerate(deliveries):
            pending.append(
                TriggerEvent(trigger_id=i + 1, hardware_timestamp_ns=int((d - 150) * MS))
            )

        # run() stops on the AcquisitionError raised once the script is exhausted.
        with self.assertRaises(AcquisitionError):
            worker.run()

        self.assertEqual(camera.acquired_count, 30)
        self.assertEqual(camera.released_count, 30)
        self.assertEqual(camera.outstanding_count, 0)
        self.assertEqual(len(camera.released_payloads), 30)
        self.assertEqual(len(output.records), 10)
        self.assertEqual(output.skipped, 20)
        self.assertEqual([r.frame_seq for r in output.records], list(range(3, 31, 3)))
        self.assertTrue(all(r.synchronized for r in output.records))

    def test_unmatched_frame_is_still_published(self):
        camera, _pending, worker, output = self._build([1000.0], ratio=1)
        with self.assertRaises(AcquisitionError):
            worker.run()

        self.assertEqual(len(output.records), 1)
        rec = output.records[0]
        self.assertFalse(rec.synchronized)
        self.assertEqual(rec.classification, Classification.NONE.value)
        self.assertEqual(rec.remark, "unsynchronized")
        self.assertEqual(camera.released_count, 1)

    def test_frame_released_when_correlation_fails(self):
        camera, _pending, worker, _output = self._build([1000.0], ratio=1)

        def _boom(_frame):
            raise RuntimeError("correlator failure")

        worker.correlator = SimpleNamespace(correlate=_boom)
        with self.assertRaises(RuntimeError):
            worker.run()
        self.assertEqual(camera.released_count, 1)
        self.assertEqual(camera.outstanding_count, 0)

    def test_double_release_rejected(self):
        camera = _ScriptedCamera([1000.0])
        frame = camera.acquire_frame()
        camera.release_frame(frame)
        with self.assertRaises(AcquisitionError):
            camera.release_frame(frame)


if __name__ == "__main__":
    unittest.main()
