"""
Time parsing utilities for completion events.

Handles conversion of the upstream tracker's completion timestamps into
timezone-aware UTC datetimes, and formatting of refresh ages for display.
"""

from datetime import datetime, timezone
from typing import Union
import math

# Epoch seconds sent as text have at least this many integer digits (from 1973 on)
EPOCH_TEXT_MIN_DIGITS = 9


def parse_completion_timestamp(value: Union[str, int, float, datetime]) -> datetime:
    """
    Parse a completion timestamp into an aware UTC datetime.

    Supported formats:
    - ISO 8601 strings (e.g., 2024-12-01T05:00:12Z, 2024-12-01T06:00:12+01:00)
    - Epoch seconds as int, float or numeric string (e.g., 1764565200)
    - datetime objects

    Naive values are taken to be UTC. Digit-only strings shorter than an epoch
    (e.g., 20241201) are rejected rather than read as 1970 times.

    Args:
        value: Raw timestamp as sent by the completion store

    Returns:
        Aware datetime in UTC

    Raises:
        ValueError: If the value is not a usable timestamp
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")

    if isinstance(value, datetime):
        parsed = value

    elif isinstance(value, (int, float)):
        parsed = _from_epoch(value)

    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Empty timestamp")
        if text.replace('.', '', 1).isdigit():
            # Short digit runs like 20241201 are compact dates, not epoch seconds
            if len(text.split('.', 1)[0]) < EPOCH_TEXT_MIN_DIGITS:
                raise ValueError(f"Ambiguous numeric timestamp: {value!r}")
            parsed = _from_epoch(float(text))
        else:
            # fromisoformat() only accepts a trailing Z from 3.11 on
            if text.endswith(('Z', 'z')):
                text = text[:-1] + '+00:00'
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError as e:
                raise ValueError(f"Invalid timestamp format: {value!r}") from e

    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _from_epoch(seconds: float) -> datetime:
    if math.isnan(seconds) or math.isinf(seconds):
        raise ValueError(f"Invalid epoch value: {seconds}")
    if seconds < 0:
        raise ValueError("Negative epoch values are not allowed")
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"Epoch value out of range: {seconds}") from e


def format_refresh_age(refreshed_at: datetime, now: datetime = None) -> str:
    """
    Format how long ago a refresh happened.

    Args:
        refreshed_at: Aware datetime of the last good refresh
        now: Reference time, defaults to the current UTC time

    Returns:
        Human-readable age (e.g., "just now", "4m ago", "2h 5m ago")
    """
    now = now or datetime.now(timezone.utc)
    elapsed = int((now - refreshed_at).total_seconds())
    if elapsed < 60:
        return "just now"

    hours, remainder = divmod(elapsed, 3600)
    minutes = remainder // 60
    if hours > 0:
        return f"{hours}h {minutes}m ago"
    return f"{minutes}m ago"
