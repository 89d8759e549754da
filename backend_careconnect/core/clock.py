"""
Time and money helpers.

All persisted times are Unix seconds (int). Money is integer currency units,
rounded half-up.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal


def now_ts() -> int:
    return int(time.time())


def to_unix(value: datetime | int | float) -> int:
    """Normalize a datetime (naive = UTC) or a number of seconds to int Unix seconds."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    return int(value)


def round_half_up(value: Decimal | int | float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))



def windows_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open overlap of [start_a, end_a) and [start_b, end_b); touching windows do not overlap."""
    return start_a < end_b and start_b < end_a
