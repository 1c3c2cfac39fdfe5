import os
import time
import unittest
import uuid

from camera import create_camera_from_loaded_config
from core.config import load_config, validate_config
from core.runtime import (
    build_publisher_runtime_from_loaded_config,
    build_runtime_from_loaded_config,
)
from main import apply_cli_overrides, parse_args

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
TEST_CONFIG_DIR = os.path.join(REPO_ROOT, "config", "tests")


def _load_test_config():
    if not os.path.isdir(TEST_CONFIG_DIR):
        raise AssertionError(f"missing test config dir: {TEST_CONFIG_DIR}")
    cfg = load_config(TEST_CONFIG_DIR)
    # Memory services are process-global; keep each test on its own bus.
    cfg.transport.service_name = f"Camera/Sync/{uuid.uuid4().hex}"
    validate_config(cfg)
    return cfg


def _wait_for_records(output_mgr, count: int, timeout_s: float = 3.0):
    start = time.perf_counter()
    while (time.perf_counter() - start) < timeout_s:
        records = output_mgr.latest_records
        if len(records) >= count:
            return records
        time.sleep(0.05)
    raise AssertionError(f"timeout waiting for {count} records")


class TestMinimalFlow(unittest.TestCase):
    def test_publisher_and_subscriber_synchronize_over_memory_bus(self):
        cfg = _load_test_config()
        publisher, triggers = build_publisher_runtime_from_loaded_config(cfg)
        publisher.start(triggers=triggers)
        try:
            # Let the subscriber join late so it starts from retained history.
            time.sleep(0.2)
            camera = create_camera_from_loaded_config(cfg)
            runtime = build_runtime_from_loaded_config(camera, cfg)
            runtime.start()
            try:
                self.assertGreater(runtime.ingestor.received_count, 0)
                records = _wait_for_records(runtime.output_mgr, 5)
            finally:
                runtime.stop()
        finally:
            publisher.stop()

        self.assertTrue(all(r.synchronized for r in records))
        self.assertTrue(all(r.classification in ("PAST", "FUTURE") for r in records))
        # 30 -> 15 fps: every second frame is forwarded.
        self.assertTrue(all(r.frame_seq % 2 == 0 for r in records))
        self.assertEqual(camera.outstanding_count, 0)
        self.assertEqual(camera.acquired_count, camera.released_count)
        stats = runtime.output_mgr.stats()
        self.assertGreater(stats["skipped"], 0)
        self.assertAlmostEqual(stats["sync_rate"], 1.0)
        for rec in records:
            self.assertLess(rec.latency_ms, cfg.sync.tolerance_window_ms)

    def test_frames_without_publisher_are_reported_unsynchronized(self):
        cfg = _load_test_config()
        camera = create_camera_from_loaded_config(cfg)
        runtime = build_runtime_from_loaded_config(camera, cfg)
        runtime.start()
        try:
            self.assertEqual(len(runtime.correlator.pending), 0)
            records = _wait_for_records(runtime.output_mgr, 2)
        finally:
            runtime.stop()
        self.assertTrue(all(not r.synchronized for r in records))
        self.assertTrue(all(r.remark == "unsynchronized" for r in records))

    def test_runtime_limit_stops_cleanly(self):
        cfg = _load_test_config()
        camera = create_camera_from_loaded_config(cfg)
        runtime = build_runtime_from_loaded_config(camera, cfg)
        runtime.start()
        t0 = time.perf_counter()
        runtime.run(runtime_limit_s=0.3)
        self.assertLess(time.perf_counter() - t0, 3.0)
        self.assertFalse(runtime.frame_worker.is_alive)
        self.assertFalse(runtime.ingest_worker.is_alive)
        with self.assertRaises(RuntimeError):
            runtime.start()

    def test_cli_positionals_override_config(self):
        cfg = _load_test_config()
        args = parse_args(["--max-runtime-s", "2", "capture", "1", "10", "320", "240"])
        apply_cli_overrides(cfg, args)
        self.assertEqual(cfg.camera.type, "opencv")
        self.assertEqual(cfg.camera.device_index, 1)
        self.assertEqual(cfg.output.output_fps, 10.0)
        self.assertEqual((cfg.camera.width, cfg.camera.height), (320, 240))
        self.assertEqual(cfg.runtime.max_runtime_s, 2.0)

        cfg = _load_test_config()
        apply_cli_overrides(cfg, parse_args(["subscriber", "80"]))
        self.assertEqual(cfg.camera.type, "mock")
        self.assertEqual(cfg.camera.delivery_delay_ms, 80.0)
        self.assertEqual(cfg.output.output_fps, 15.0)

        cfg = _load_test_config()
        apply_cli_overrides(cfg, parse_args(["publisher", "50"]))
        self.assertEqual(cfg.trigger.interval_ms, 50.0)


if __name__ == "__main__":
    unittest.main()
