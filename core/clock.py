"""Millisecond wall-clock helpers shared by models, storage and sync."""

from __future__ import annotations

import time
from datetime import UTC, datetime


def now_ms() -> int:
    """Return current UTC time as integer milliseconds since epoch."""
    return int(time.time() * 1000)


def ms_to_iso(value: int) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC string with millisecond precision."""
    seconds, millis = divmod(int(value), 1000)
    moment = datetime.fromtimestamp(seconds, tz=UTC).replace(microsecond=millis * 1000)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_to_ms(value: str) -> int:
    """Parse an ISO-8601 string (``Z`` or offset suffix) into epoch milliseconds."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return int(round(moment.timestamp() * 1000))
