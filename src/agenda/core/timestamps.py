"""
Epoch-millisecond timestamp and identifier utilities (stdlib-only).

The scheduling core stores every instant as integer milliseconds since the
Unix epoch. This module is the single place that converts between that
representation and timezone-aware datetimes.

Features:
    - **now_ms():** Current UTC time in epoch milliseconds
    - **to_datetime() / from_datetime():** Safe conversion round-trip
    - **minutes_between():** Rounded minute difference used for durations
    - **generate_uuid():** Random identifier for aggregates and records

Tags:
    timestamps, utc, epoch-ms, agenda-core, stdlib-only
"""

import math
import time
import uuid
from datetime import UTC, datetime

MS_PER_MINUTE = 60_000


def now_ms() -> int:
    """Get current UTC time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_datetime(ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def from_datetime(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(round(dt.timestamp() * 1000))


def minutes_between(start_ms: int, end_ms: int) -> int:
    """Rounded whole minutes between two instants."""
    # halves round up
    return math.floor((end_ms - start_ms) / MS_PER_MINUTE + 0.5)


def generate_uuid() -> str:
    """Generate a random aggregate identifier."""
    return str(uuid.uuid4())

