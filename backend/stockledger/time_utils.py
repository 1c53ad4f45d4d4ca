# Overview: UTC clock and ISO-8601 conversion for ledger timestamps.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a UTC-naive datetime; every stored timestamp uses this."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Client timestamp -> UTC-naive datetime.

    Offsets (including a trailing Z) are folded into UTC. A value without
    an offset is taken as already being UTC. Blank input gives None.
    Raises ValueError on anything fromisoformat rejects.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    return _as_utc_naive(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Render a stored timestamp as 2026-10-19T08:30:00Z (whole seconds)."""
    if dt is None:
        return None
    stamp = _as_utc_naive(dt).replace(microsecond=0)
    return f"{stamp.isoformat()}Z"


def period_key(dt: Optional[datetime] = None, *, fmt: str = "%Y%m%d") -> str:
    """Business-day key used by per-day document sequences."""
    return (dt or utcnow()).strftime(fmt)
