#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Utility functions for the Stack Line Card pipeline.
Time conversions, numeric state parsing, color helpers and retry logic.
"""

import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse datetime from an ISO string or datetime object

    Naive values are assumed to be UTC.

    Args:
        value: String, datetime, or None

    Returns:
        Timezone-aware datetime or None

    Raises:
        ValueError: If the string is not a recognised ISO timestamp
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported datetime value: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def timestamp_to_datetime(timestamp_ms: int) -> datetime:
    """Convert epoch milliseconds to a UTC datetime."""
    return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)


def datetime_to_timestamp(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive treated as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def to_epoch_ms(value: Any) -> Optional[int]:
    """
    Coerce a timestamp in any of the shapes the host returns into epoch ms

    Accepts epoch milliseconds (int/float), ISO strings and datetimes.

    Returns:
        Epoch milliseconds, or None when the value cannot be interpreted
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return int(value)
    try:
        dt = parse_datetime(value)
    except ValueError:
        return None
    return datetime_to_timestamp(dt) if dt is not None else None


def iso_utc(timestamp_ms: int) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC string."""
    return timestamp_to_datetime(timestamp_ms).isoformat()


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_numeric_state(value: Any) -> Optional[float]:
    """
    Parse an entity state into a float

    States such as 'unavailable', 'unknown', empty strings and NaN are
    reported as None so callers can drop them instead of treating them as 0.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def hex_to_rgba(hex_color: str, alpha: float) -> str:
    """
    Convert '#rrggbb' to an 'rgba(r, g, b, a)' string

    Args:
        hex_color: Color in #rrggbb notation
        alpha: Opacity between 0 and 1

    Returns:
        CSS rgba() color string
    """
    value = hex_color.lstrip("#")
    if len(value) == 3:
        value = "".join(ch * 2 for ch in value)
    if len(value) != 6:
        raise ValueError(f"Invalid hex color: {hex_color}")
    r = int(value[0:2], 16)
    g = int(value[2:4], 16)
    b = int(value[4:6], 16)
    return f"rgba({r}, {g}, {b}, {alpha})"


def retry_with_backoff(
    func: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,)
) -> T:
    """
    Retry function with exponential backoff

    Args:
        func: Function to retry
        max_attempts: Maximum number of attempts
        base_delay: Initial delay in seconds
        backoff_factor: Multiplier for delay on each retry
        exceptions: Tuple of exceptions to catch and retry

    Returns:
        Function result

    Raises:
        Last exception if all retries fail
    """
    log = logging.getLogger(__name__)
    last_exception: Optional[BaseException] = None

    for attempt in range(max_attempts):
        try:
            return func()
        except exceptions as e:
            last_exception = e
            if attempt < max_attempts - 1:
                delay = base_delay * (backoff_factor ** attempt)
                log.warning(f"Attempt {attempt + 1} failed: {e}. Retrying in {delay:.1f}s...")
                time.sleep(delay)
            else:
                log.error(f"All {max_attempts} attempts failed")

    assert last_exception is not None
    raise last_exception
