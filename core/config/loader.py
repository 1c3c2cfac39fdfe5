"""YAML loader and section builders for sync service configuration."""

from __future__ import annotations

import glob
import os
from typing import Any

import yaml

from .schema import (
    CameraConfigBlock,
    ConfigError,
    LoadedConfig,
    OutputConfigBlock,
    RuntimeConfig,
    SyncConfigBlock,
    TransportConfigBlock,
    TriggerConfigBlock,
    TriggerTcpConfigBlock,
)

_TOP_LEVEL_KEYS = {"runtime", "sync", "output", "transport", "trigger", "camera"}


def load_config(config_dir: str = "config") -> LoadedConfig:
    if not os.path.isdir(config_dir):
        raise ConfigError(f"Config directory not found: {config_dir}")
    main_path = _find_main_config(config_dir)
    main_data = _read_yaml(main_path)
    _validate_allowed_keys(main_data, _TOP_LEVEL_KEYS, "<root>", main_path)

    runtime = _build_section(RuntimeConfig, main_data, "runtime", main_path)
    sync = _build_section(SyncConfigBlock, main_data, "sync", main_path)
    output = _build_section(OutputConfigBlock, main_data, "output", main_path)
    transport = _build_section(
        TransportConfigBlock, main_data, "transport", main_path
    )
    trigger = _build_trigger_config(main_data.get("trigger"), main_path)
    camera = _build_camera_config(main_data.get("camera"), main_path)
    return LoadedConfig(
        runtime=runtime,
        sync=sync,
        output=output,
        transport=transport,
        trigger=trigger,
        camera=camera,
        paths={"main": main_path},
    )


def _find_main_config(config_dir: str) -> str:
    patterns = [
        os.path.join(config_dir, "main_*.yaml"),
        os.path.join(config_dir, "main_*.yml"),
    ]
    candidates: list[str] = []
    for pattern in patterns:
        candidates.extend(glob.glob(pattern))
    if len(candidates) == 0:
        raise ConfigError(f"No main_*.yaml found under {config_dir}")
    if len(candidates) > 1:
        raise ConfigError(
            f"Expected exactly one main_*.yaml, found: {', '.join(sorted(candidates))}"
        )
    return candidates[0]


def _read_yaml(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"YAML root must be a mapping: {path}")
    return data


def _build_section(cls, main_data: dict[str, Any], section: str, main_path: str):
    data = main_data.get(section)
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"'{section}' must be a mapping in {main_path}")
    return _build_dataclass(cls, data, main_path, section=section)


def _build_dataclass(cls, data: dict[str, Any], main_path: str, section: str):
    obj = cls()
    fields = cls.__dataclass_fields__
    for k, v in (data or {}).items():
        if k in fields:
            setattr(obj, k, v)
        else:
            raise ConfigError(f"Unknown field {section}.{k} in {main_path}")
    return obj


def _validate_allowed_keys(
    data: dict[str, Any], allowed_keys: set[str], section: str, main_path: str
) -> None:
    for key in data.keys():
        if key not in allowed_keys:
            raise ConfigError(f"Unknown field {section}.{key} in {main_path}")


def _build_trigger_config(data: Any, main_path: str) -> TriggerConfigBlock:
    if data is None:
        return TriggerConfigBlock()
    if not isinstance(data, dict):
        raise ConfigError(f"'trigger' must be a mapping in {main_path}")
    cfg = TriggerConfigBlock()
    _validate_allowed_keys(data, {"type", "interval_ms", "tcp"}, "trigger", main_path)
    for key in ("type", "interval_ms"):
        if key in data:
            setattr(cfg, key, data[key])
    tcp_block = data.get("tcp")
    if tcp_block is not None:
        if not isinstance(tcp_block, dict):
            raise ConfigError(f"'trigger.tcp' must be a mapping in {main_path}")
        cfg.tcp = _build_dataclass(
            TriggerTcpConfigBlock, tcp_block, main_path, section="trigger.tcp"
        )
    return cfg


def _build_camera_config(data: Any, main_path: str) -> CameraConfigBlock:
    if data is None:
        return CameraConfigBlock()
    if not isinstance(data, dict):
        raise ConfigError(f"'camera' must be a mapping in {main_path}")

    cfg = CameraConfigBlock()
    if "type" in data:
        cfg.type = str(data.get("type") or cfg.type)
    selected_type = str(cfg.type or "").strip()
    camera_fields = CameraConfigBlock.__dataclass_fields__

    def _apply_camera_fields(block: dict[str, Any], section: str):
        for k, v in block.items():
            if k in camera_fields and k != "type":
                setattr(cfg, k, v)
            else:
                raise ConfigError(f"Unknown field {section}.{k} in {main_path}")

    for key, value in data.items():
        if key in {"type", "common"}:
            continue
        if isinstance(value, dict):
            continue
        raise ConfigError(
            f"camera.{key} must be nested under camera.common or camera.{selected_type} in {main_path}"
        )

    common_data = data.get("common")
    if common_data is not None:
        if not isinstance(common_data, dict):
            raise ConfigError(f"'camera.common' must be a mapping in {main_path}")
        _apply_camera_fields(common_data, "camera.common")

    # Only the selected camera's block applies; other blocks stay as presets.
    selected_block = data.get(selected_type)
    if selected_block is not None:
        if not isinstance(selected_block, dict):
            raise ConfigError(
                f"'camera.{selected_type}' must be a mapping in {main_path}"
            )
        _apply_camera_fields(selected_block, f"camera.{selected_type}")
    return cfg


__all__ = ["load_config"]
