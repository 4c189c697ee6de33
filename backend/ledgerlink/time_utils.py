from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from flask import current_app, has_app_context


def utcnow() -> datetime:
    """
    Server-side 'now' in UTC (naive, canonical).

    When the app config carries a CLOCK callable it is used instead of the
    system clock, so expiry windows can be driven from tests.
    """
    if has_app_context():
        clock = current_app.config.get("CLOCK")
        if clock is not None:
            return clock()
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
