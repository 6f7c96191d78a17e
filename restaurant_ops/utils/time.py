"""Time utilities (UTC now, naive-to-aware normalization)."""
from __future__ import annotations
from datetime import datetime, timezone

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def ensure_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for DateTime(timezone=True) columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

__all__ = ["utc_now", "ensure_aware"]
