import os
import tempfile
import unittest

from core.config import ConfigError, load_config, validate_config
from sync.config import build_sync_config_from_loaded_config

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))


class TestConfigLoader(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.config_dir = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def _write(self, name: str, text: str):
        with open(os.path.join(self.config_dir, name), "w", encoding="utf-8") as f:
            f.write(text)

    def test_shipped_configs_load_and_validate(self):
        for sub in ("config", os.path.join("config", "tests")):
            with self.subTest(config_dir=sub):
                cfg = load_config(os.path.join(REPO_ROOT, sub))
                validate_config(cfg)
                self.assertTrue(cfg.paths["main"].endswith(".yaml"))

    def test_omitted_sections_take_defaults(self):
        self._write("main_min.yaml", "sync:\n  tolerance_window_ms: 250\n")
        cfg = load_config(self.config_dir)
        self.assertEqual(cfg.sync.tolerance_window_ms, 250)
        self.assertEqual(cfg.sync.future_penalty_factor, 2.0)
        self.assertEqual(cfg.transport.service_name, "Camera/Sync")
        self.assertEqual(cfg.transport.history_size, 10)
        self.assertEqual(cfg.camera.type, "mock")
        self.assertEqual(cfg.trigger.interval_ms, 33.0)

    def test_camera_blocks_merge_common_and_selected(self):
        self._write(
            "main_cam.yaml",
            "camera:\n"
            "  type: opencv\n"
            "  common:\n"
            "    width: 320\n"
            "  opencv:\n"
            "    device_index: 2\n"
            "  mock:\n"
            "    delivery_delay_ms: 10\n",
        )
        cfg = load_config(self.config_dir)
        self.assertEqual(cfg.camera.type, "opencv")
        self.assertEqual(cfg.camera.width, 320)
        self.assertEqual(cfg.camera.device_index, 2)
        # Unselected preset blocks do not apply.
        self.assertEqual(cfg.camera.delivery_delay_ms, 150.0)

    def test_decimation_ratio_follows_camera_and_output_rates(self):
        self._write(
            "main_rate.yaml",
            "output:\n  output_fps: 10\ncamera:\n  common:\n    input_fps: 30\n",
        )
        sync_cfg = build_sync_config_from_loaded_config(load_config(self.config_dir))
        self.assertEqual(sync_cfg.output_decimation_ratio, 3)

    def test_load_errors(self):
        cases = [
            ("unknown_section", "detect:\n  impl: x\n"),
            ("unknown_field", "sync:\n  window: 3\n"),
            ("section_not_mapping", "sync: 5\n"),
            ("flat_camera_field", "camera:\n  width: 640\n"),
            ("unknown_trigger_key", "trigger:\n  debounce_ms: 5\n"),
            ("bad_yaml", "sync: [unclosed\n"),
            ("root_not_mapping", "- a\n- b\n"),
        ]
        for name, text in cases:
            with self.subTest(case=name):
                for old in os.listdir(self.config_dir):
                    os.remove(os.path.join(self.config_dir, old))
                self._write("main_case.yaml", text)
                with self.assertRaises(ConfigError):
                    load_config(self.config_dir)

    def test_requires_exactly_one_main_file(self):
        with self.assertRaises(ConfigError):
            load_config(self.config_dir)
        self._write("main_a.yaml", "{}\n")
        self._write("main_b.yaml", "{}\n")
        with self.assertRaises(ConfigError):
            load_config(self.config_dir)

    def test_missing_directory(self):
        with self.assertRaises(ConfigError):
            load_config(os.path.join(self.config_dir, "nope"))


if __name__ == "__main__":
    unittest.main()
