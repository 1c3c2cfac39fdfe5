from __future__ import annotations

import math
from dataclasses import dataclass

from core.errors import ConfigError

DEFAULT_TOLERANCE_WINDOW_MS = 500.0
DEFAULT_FUTURE_PENALTY_FACTOR = 2.0
DEFAULT_MAX_PENDING_TRIGGERS = 100


@dataclass(frozen=True)
class SyncConfig:
    """Correlation tunables; validated on construction and immutable afterwards."""

    tolerance_window_ms: float = DEFAULT_TOLERANCE_WINDOW_MS
    future_penalty_factor: float = DEFAULT_FUTURE_PENALTY_FACTOR
    output_decimation_ratio: int = 1
    max_pending_triggers: int = DEFAULT_MAX_PENDING_TRIGGERS

    def __post_init__(self):
        if not float(self.tolerance_window_ms) > 0:
            raise ConfigError(
                f"tolerance_window_ms must be > 0 (got {self.tolerance_window_ms!r})"
            )
        if not float(self.future_penalty_factor) >= 1.0:
            raise ConfigError(
                "future_penalty_factor must be >= 1 "
                f"(got {self.future_penalty_factor!r}); lower values invert the past bias"
            )
        ratio = self.output_decimation_ratio
        if isinstance(ratio, bool) or not isinstance(ratio, int) or ratio < 1:
            raise ConfigError(
                f"output_decimation_ratio must be an integer >= 1 (got {self.output_decimation_ratio!r})"
            )
        if int(self.max_pending_triggers) < 1:
            raise ConfigError(
                f"max_pending_triggers must be > 0 (got {self.max_pending_triggers!r})"
            )


def compute_decimation_ratio(input_fps: float, output_fps: float) -> int:
    """Return N such that one of every N input frames yields the output rate."""
    input_fps = float(input_fps)
    output_fps = float(output_fps)
    if input_fps <= 0 or output_fps <= 0:
        raise ConfigError(
            f"frame rates must be > 0 (input={input_fps:g}, output={output_fps:g})"
        )
    if output_fps >= input_fps:
        return 1
    # Halves round up: 30 -> 12 fps gives 3.
    return max(1, int(math.floor(input_fps / output_fps + 0.5)))


def build_sync_config_from_loaded_config(cfg) -> SyncConfig:
    return SyncConfig(
        tolerance_window_ms=float(cfg.sync.tolerance_window_ms),
        future_penalty_factor=float(cfg.sync.future_penalty_factor),
        output_decimation_ratio=compute_decimation_ratio(
            cfg.camera.input_fps, cfg.output.output_fps
        ),
        max_pending_triggers=int(cfg.sync.max_pending_triggers),
    )


__all__ = [
    "DEFAULT_TOLERANCE_WINDOW_MS",
    "DEFAULT_FUTURE_PENALTY_FACTOR",
    "DEFAULT_MAX_PENDING_TRIGGERS",
    "SyncConfig",
    "compute_decimation_ratio",
    "build_sync_config_from_loaded_config",
]
