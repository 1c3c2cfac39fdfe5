from __future__ import annotations

import os
from datetime import datetime, timezone

from utils.clock import NS_PER_S


def coerce_utc_datetime(value: datetime | None) -> datetime:
    ref = value or datetime.now(timezone.utc)
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=timezone.utc)
    return ref.astimezone(timezone.utc)


def ns_to_utc_datetime(value_ns: int | None) -> datetime:
    if value_ns is None:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(value_ns / NS_PER_S, tz=timezone.utc)


class UtcDailyDirCache:
    """Cache the current UTC date directory to avoid repeated mkdir/path joins."""

    def __init__(self):
        self._root_key: str | None = None
        self._date_key: str | None = None
        self._dir_path: str | None = None

    def get_or_create(self, root_dir: str, ts_utc: datetime) -> str:
        ref = coerce_utc_datetime(ts_utc)
        date_key = ref.date().isoformat()
        root_key = os.path.abspath(root_dir)
        if (
            self._root_key != root_key
            or self._date_key != date_key
            or not self._dir_path
        ):
            target_dir = os.path.join(root_dir, date_key)
            os.makedirs(target_dir, exist_ok=True)
            self._root_key = root_key
            self._date_key = date_key
            self._dir_path = target_dir
        return self._dir_path


__all__ = [
    "UtcDailyDirCache",
    "coerce_utc_datetime",
    "ns_to_utc_datetime",
]
