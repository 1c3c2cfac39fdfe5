"""Startup config value validation."""

from __future__ import annotations

from typing import Any

from .schema import ConfigError, LoadedConfig

_LOG_LEVELS = {"debug", "info", "warning", "warn", "error", "critical"}


def validate_config(cfg: LoadedConfig) -> None:
    # runtime
    _require_float("runtime.max_runtime_s", cfg.runtime.max_runtime_s, min_v=0.0)
    _require_int("runtime.poll_interval_ms", cfg.runtime.poll_interval_ms, min_v=1)
    _require_choice("runtime.log_level", cfg.runtime.log_level, _LOG_LEVELS)

    # sync
    _require_positive_float(
        "sync.tolerance_window_ms", cfg.sync.tolerance_window_ms
    )
    # A factor below 1.0 would favour future triggers over past ones.
    _require_float(
        "sync.future_penalty_factor", cfg.sync.future_penalty_factor, min_v=1.0
    )
    _require_int("sync.max_pending_triggers", cfg.sync.max_pending_triggers, min_v=1)

    # output
    _require_positive_float("output.output_fps", cfg.output.output_fps)
    _require_int("output.history_size", cfg.output.history_size, min_v=1)

    # transport
    _require_str("transport.type", cfg.transport.type)
    _require_str("transport.service_name", cfg.transport.service_name)
    _require_port("transport.port", cfg.transport.port)
    _require_int("transport.history_size", cfg.transport.history_size, min_v=0)
    _require_int(
        "transport.subscriber_max_buffer_size",
        cfg.transport.subscriber_max_buffer_size,
        min_v=1,
    )
    _require_int("transport.max_subscribers", cfg.transport.max_subscribers, min_v=1)
    _require_int("transport.max_publishers", cfg.transport.max_publishers, min_v=1)
    _require_int(
        "transport.connect_timeout_ms", cfg.transport.connect_timeout_ms, min_v=1
    )

    # trigger
    _require_str("trigger.type", cfg.trigger.type)
    _require_positive_float("trigger.interval_ms", cfg.trigger.interval_ms)
    _require_port("trigger.tcp.port", cfg.trigger.tcp.port)
    _require_str("trigger.tcp.word", cfg.trigger.tcp.word)

    # camera
    _require_str("camera.type", cfg.camera.type)
    _require_int("camera.device_index", cfg.camera.device_index, min_v=0)
    _require_int("camera.width", cfg.camera.width, min_v=0)
    _require_int("camera.height", cfg.camera.height, min_v=0)
    _require_positive_float("camera.input_fps", cfg.camera.input_fps)
    _require_float("camera.delivery_delay_ms", cfg.camera.delivery_delay_ms, min_v=0.0)
    _require_int("camera.grab_timeout_ms", cfg.camera.grab_timeout_ms, min_v=1)
    _require_int("camera.max_retry_per_frame", cfg.camera.max_retry_per_frame, min_v=1)


def _require_int(
    name: str, value: Any, *, min_v: int | None = None, max_v: int | None = None
) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer")
    try:
        iv = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer") from e
    if min_v is not None and iv < min_v:
        op = ">=" if min_v != 1 else ">"
        threshold = min_v if min_v != 1 else 0
        raise ConfigError(f"{name} must be {op} {threshold}")
    if max_v is not None and iv > max_v:
        raise ConfigError(f"{name} must be <= {max_v}")
    return iv


def _require_float(
    name: str, value: Any, *, min_v: float | None = None, max_v: float | None = None
) -> float:
    try:
        fv = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number") from e
    if min_v is not None and fv < min_v:
        raise ConfigError(f"{name} must be >= {min_v:g}")
    if max_v is not None and fv > max_v:
        raise ConfigError(f"{name} must be <= {max_v:g}")
    return fv


def _require_positive_float(name: str, value: Any) -> float:
    fv = _require_float(name, value)
    if not fv > 0:
        raise ConfigError(f"{name} must be > 0")
    return fv


def _require_port(name: str, value: Any) -> int:
    # 0 asks the OS for an ephemeral port.
    return _require_int(name, value, min_v=0, max_v=65535)


def _require_str(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{name} must be a non-empty string")
    return value


def _require_choice(name: str, value: Any, choices: set[str]) -> str:
    normalized = str(value or "").strip().lower()
    if normalized not in choices:
        raise ConfigError(f"{name} must be one of {sorted(choices)}")
    return normalized


__all__ = ["validate_config"]
