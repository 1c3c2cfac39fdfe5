# -- coding: utf-8 --

import argparse
import logging
import time

from camera import create_camera_from_loaded_config
from core.config import ConfigError, load_config, validate_config
from core.errors import SyncError
from core.runtime import (
    build_publisher_runtime_from_loaded_config,
    build_runtime_from_loaded_config,
)


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Trigger/frame synchronization service (config-driven)",
    )
    p.add_argument(
        "--config-dir", default="config", help="Directory containing main_*.yaml"
    )
    p.add_argument("--verbose", action="store_true", help="Debug log")
    p.add_argument(
        "--log-level", default="", help="Override log level (debug/info/warning/error)"
    )
    p.add_argument(
        "--max-runtime-s",
        type=float,
        default=None,
        help="Stop after this many seconds (0 = run until Ctrl+C)",
    )
    sub = p.add_subparsers(dest="command", required=True)

    pub = sub.add_parser("publisher", help="Stamp and publish hardware triggers")
    pub.add_argument(
        "trigger_interval_ms", nargs="?", type=float, help="Timer trigger period"
    )

    subr = sub.add_parser(
        "subscriber", help="Correlate simulated camera frames with triggers"
    )
    subr.add_argument(
        "delay_ms", nargs="?", type=float, help="Simulated frame delivery delay"
    )
    subr.add_argument("output_fps", nargs="?", type=float, help="Target output rate")

    cap = sub.add_parser("capture", help="Correlate real camera frames with triggers")
    cap.add_argument("camera_index", nargs="?", type=int, help="OpenCV device index")
    cap.add_argument("output_fps", nargs="?", type=float, help="Target output rate")
    cap.add_argument("width", nargs="?", type=int, help="Frame width")
    cap.add_argument("height", nargs="?", type=int, help="Frame height")
    return p.parse_args(argv)


def setup_logging(verbose: bool, log_level: str = ""):
    if verbose:
        level = logging.DEBUG
    else:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "warn": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }
        level = level_map.get(str(log_level or "").strip().lower(), logging.INFO)
    # Use UTC for all %(asctime)s timestamps in logs.
    logging.Formatter.converter = time.gmtime
    logging.basicConfig(
        level=level, format="%(asctime)sZ [%(levelname)s] %(message)s", force=True
    )


def apply_cli_overrides(cfg, args):
    """Positional parameters win over the YAML values."""
    if args.max_runtime_s is not None:
        cfg.runtime.max_runtime_s = args.max_runtime_s
    if args.command == "publisher":
        if args.trigger_interval_ms is not None:
            cfg.trigger.interval_ms = args.trigger_interval_ms
    elif args.command == "subscriber":
        cfg.camera.type = "mock"
        if args.delay_ms is not None:
            cfg.camera.delivery_delay_ms = args.delay_ms
        if args.output_fps is not None:
            cfg.output.output_fps = args.output_fps
    elif args.command == "capture":
        cfg.camera.type = "opencv"
        if args.camera_index is not None:
            cfg.camera.device_index = args.camera_index
        if args.output_fps is not None:
            cfg.output.output_fps = args.output_fps
        if args.width is not None:
            cfg.camera.width = args.width
        if args.height is not None:
            cfg.camera.height = args.height
    return cfg


def run_publisher(cfg, runtime_limit_s):
    runtime, triggers = build_publisher_runtime_from_loaded_config(cfg)
    logging.info(
        "Publisher ready: service='%s' transport=%s trigger=%s interval=%.1fms",
        cfg.transport.service_name,
        cfg.transport.type,
        cfg.trigger.type,
        cfg.trigger.interval_ms,
    )
    runtime.start(triggers=triggers)
    runtime.run(runtime_limit_s=runtime_limit_s)


def run_synchronizer(cfg, runtime_limit_s):
    camera = create_camera_from_loaded_config(cfg)
    runtime = build_runtime_from_loaded_config(camera, cfg)
    logging.info(
        "Subscriber ready: service='%s' camera=%s delivery_delay=%.1fms "
        "input=%.1ffps output=%.1ffps",
        cfg.transport.service_name,
        cfg.camera.type,
        cfg.camera.delivery_delay_ms,
        cfg.camera.input_fps,
        cfg.output.output_fps,
    )
    runtime.start()
    runtime.run(runtime_limit_s=runtime_limit_s)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_level)
    try:
        cfg = load_config(args.config_dir)
    except ConfigError as e:
        logging.error("Config load failed: %s", e)
        raise SystemExit(1)
    # Config-driven log level (unless overridden by CLI).
    if not args.verbose and not args.log_level:
        setup_logging(args.verbose, cfg.runtime.log_level)

    try:
        apply_cli_overrides(cfg, args)
        validate_config(cfg)
    except ConfigError as e:
        logging.error("Config invalid: %s", e)
        raise SystemExit(1) from e

    logging.info(
        "Starting %s: runtime=%s config=%s",
        args.command,
        f"{cfg.runtime.max_runtime_s}s" if cfg.runtime.max_runtime_s else "unlimited",
        cfg.paths.get("main"),
    )
    runtime_limit_s = (
        cfg.runtime.max_runtime_s if cfg.runtime.max_runtime_s > 0 else None
    )
    try:
        if args.command == "publisher":
            run_publisher(cfg, runtime_limit_s)
        else:
            run_synchronizer(cfg, runtime_limit_s)
        logging.info("Done")
    except KeyboardInterrupt:
        logging.info("Service STOPPED by user (Ctrl+C)")
    except SyncError as e:
        logging.error("%s failed: %s", args.command, e)
        raise SystemExit(1) from e
    except RuntimeError as e:
        logging.error("%s stopped: %s", args.command, e)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
