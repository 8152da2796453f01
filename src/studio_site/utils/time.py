from __future__ import annotations

from datetime import datetime, timezone


def iso_utc(ts: float) -> str:
    """Epoch seconds -> ISO-8601 UTC string."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()
