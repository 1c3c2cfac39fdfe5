from __future__ import annotations

import importlib
from collections.abc import MutableMapping
from typing import TypeVar

T = TypeVar("T")


def register_named(registry: MutableMapping[str, T], name: str):
    """Decorator registering a class under `name`; a name may be claimed once."""

    def decorator(obj: T) -> T:
        existing = registry.get(name)
        if existing is not None and existing is not obj:
            raise ValueError(f"'{name}' is already registered to {existing!r}")
        registry[name] = obj
        return obj

    return decorator


def resolve_registered(
    registry: MutableMapping[str, T],
    name: str,
    *,
    package: str,
    unknown_label: str,
) -> T:
    """Look up `name`, importing `<package>.<name>` on first use.

    Implementations with heavy optional imports (OpenCV, sockets) are only
    loaded when selected.
    """
    key = str(name or "").strip().lower()
    import_err: Exception | None = None
    if key and key not in registry:
        try:
            importlib.import_module(f"{package}.{key}")
        except ImportError as e:
            import_err = e
    if key not in registry:
        hint = f" (import failed: {import_err})" if import_err else ""
        raise ValueError(
            f"Unknown {unknown_label} '{name}'. "
            f"Available: {', '.join(sorted(registry)) or 'none'}{hint}"
        )
    return registry[key]


__all__ = ["register_named", "resolve_registered"]
