"""Pure helpers converting durations and timestamps to display strings.

Timestamps are integer milliseconds since the Unix epoch throughout the
application. Every place that turns a duration into whole minutes must go
through :func:`round_minutes` so stored totals and recomputed totals agree.
"""
from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def round_minutes(duration_ms: int) -> int:
    """Round a duration to whole minutes, halves rounding up (90s -> 2)."""
    return (max(int(duration_ms), 0) + MS_PER_MINUTE // 2) // MS_PER_MINUTE


def format_duration(ms: int) -> str:
    """Format milliseconds as ``HH:MM:SS``; hours are not capped at 24."""
    seconds = max(int(ms), 0) // MS_PER_SECOND
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_minutes_to_hours(total_minutes: int) -> str:
    hours, minutes = divmod(int(total_minutes), 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def to_datetime(ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=int(ms))


def to_iso(ms: int) -> str:
    """ISO-8601 UTC string with millisecond precision, e.g. ``2024-01-01T09:00:00.000Z``."""
    return to_datetime(ms).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _local(ms: int) -> datetime:
    return to_datetime(ms).astimezone()


def local_date(ms: int) -> str:
    return _local(ms).date().isoformat()


def local_midnight(ms: int, days_back: int = 0) -> int:
    """Start of the local calendar day ``days_back`` days before ``ms``."""
    day = _local(ms) - timedelta(days=days_back)
    midnight = day.replace(hour=0, minute=0, second=0, microsecond=0)
    return (midnight - _EPOCH) // timedelta(milliseconds=1)


def format_date_time(ms: int, now: int | None = None) -> str:
    moment = _local(ms)
    today = _local(now if now is not None else now_ms())
    clock = moment.strftime("%H:%M")
    if moment.date() == today.date():
        return f"Today at {clock}"
    return f"{moment:%b} {moment.day} at {clock}"


def relative_time(ms: int, now: int | None = None) -> str:
    diff = (now if now is not None else now_ms()) - int(ms)
    minutes = diff // MS_PER_MINUTE
    hours = minutes // 60
    days = hours // 24

    def plural(value: int, unit: str) -> str:
        return f"{value} {unit}{'' if value == 1 else 's'} ago"

    if days > 0:
        return plural(days, "day")
    if hours > 0:
        return plural(hours, "hour")
    if minutes > 0:
        return plural(minutes, "minute")
    return "Just now"
