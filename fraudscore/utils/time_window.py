"""
Time window parsing ("30m", "24h", "7d").
"""

import re
from datetime import datetime, timedelta
from typing import Optional

from fraudscore.database import utcnow
from fraudscore.errors import FraudValidationError

_WINDOW_RE = re.compile(r"(\d+)([mhd])")

_UNIT_MS = {
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}


def parse_time_window(window: str) -> int:
    """
    Convert a window string to milliseconds.

    Raises:
        FraudValidationError: if the string is not <digits><m|h|d>
    """
    match = _WINDOW_RE.fullmatch(window or "")
    if not match:
        raise FraudValidationError(f"Invalid time window format: {window}")

    value, unit = match.groups()
    return int(value) * _UNIT_MS[unit]


def window_start(window: str, now: Optional[datetime] = None) -> datetime:
    """Start of the window ending at `now` (naive UTC)."""
    now = now or utcnow()
    return now - timedelta(milliseconds=parse_time_window(window))
