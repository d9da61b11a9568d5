"""Short human-readable durations and RFC 3339 timestamp parsing."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

_RFC3339_RE = re.compile(
    r"([0-9]{4})-([0-9]{2})-([0-9]{2})T([0-9]{2}):([0-9]{2}):([0-9]{2})"
    r"(?:\.([0-9]+))?(Z|[+-][0-9]{2}:[0-9]{2})"
)

_MICROSECOND = timedelta(microseconds=1)
_MINUTE = timedelta(minutes=1)
_HOUR = timedelta(hours=1)
_DAY = timedelta(days=1)


def _parse_rfc3339(text: str) -> datetime | None:
    """Parse an RFC 3339 timestamp into an aware datetime, or None if invalid."""
    match = _RFC3339_RE.fullmatch(text)
    if match is None:
        return None
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    micros = int((fraction or "")[:6].ljust(6, "0"))
    if zone == "Z":
        tz = timezone.utc
    else:
        off_hours, off_minutes = int(zone[1:3]), int(zone[4:6])
        if off_hours > 23 or off_minutes > 59:
            return None
        offset = timedelta(hours=off_hours, minutes=off_minutes)
        tz = timezone(-offset if zone[0] == "-" else offset)
    try:
        return datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second), micros, tzinfo=tz,
        )
    except ValueError:
        return None


def humanize_duration(start: datetime, end: datetime) -> str:
    """Format the time from ``start`` to ``end`` in short form, such as ``5m 7s``."""
    if not end > start:
        return "0s"
    delta = end - start
    micros = delta // _MICROSECOND
    if delta < _MINUTE:
        return f"{(micros + 500_000) // 1_000_000}s"
    seconds = micros // 1_000_000
    if delta < _HOUR:
        return f"{seconds // 60}m {seconds % 60}s"
    if delta < _DAY:
        return f"{seconds // 3600}h {(seconds // 60) % 60}m"
    return f"{seconds // 86400}d {(seconds // 3600) % 24}h"