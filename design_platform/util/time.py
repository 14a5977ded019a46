from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow_iso() -> str:
    """Current UTC time as ISO-8601 string with Z."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def iso_in(minutes: int) -> str:
    """UTC time `minutes` from now, same format as utcnow_iso()."""
    dt = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(minutes=int(minutes))
    return dt.isoformat().replace("+00:00", "Z")


def ts_to_iso(ts: int | float | None) -> str | None:
    """Unix timestamp (provider objects) -> ISO-8601 with Z."""
    if ts is None:
        return None
    try:
        dt = datetime.fromtimestamp(float(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
    return dt.isoformat().replace("+00:00", "Z")
