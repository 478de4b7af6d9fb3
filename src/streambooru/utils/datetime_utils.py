from __future__ import annotations

import math
import time
from datetime import datetime, timezone
from typing import Any

from dateutil import parser

# Numeric timestamps below this are unix seconds, above it unix milliseconds.
_MILLISECONDS_THRESHOLD = 1e12


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime_utc(value: Any) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return to_utc(value)

    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value <= 0:
            return None
        seconds = value if value < _MILLISECONDS_THRESHOLD else value / 1000
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        if value.isdigit():
            return parse_datetime_utc(int(value))
        try:
            return to_utc(parser.parse(value))
        except (ValueError, TypeError, OverflowError):
            return None

    return None


def to_iso_date(value: Any) -> str | None:
    parsed = parse_datetime_utc(value)
    if parsed is None:
        return None
    return parsed.isoformat().replace("+00:00", "Z")


def epoch_millis(value: Any) -> float | None:
    parsed = parse_datetime_utc(value)
    if parsed is None:
        return None
    return parsed.timestamp() * 1000


def now_millis() -> int:
    return int(time.time() * 1000)
