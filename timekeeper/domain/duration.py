"""Elapsed-time accounting for timers. Pure functions, no I/O."""

import datetime
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP
from typing import Optional

import pytz

from timekeeper.domain.models import Timer, ensure_utc

SECONDS_PER_HOUR = Decimal(3600)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(pytz.UTC)


def elapsed_seconds(timer: Timer, now: datetime.datetime) -> int:
    """
    Total worked seconds: completed sessions plus the running one.

    A clock that runs behind the server's start_time contributes zero for the
    current session rather than a negative duration.
    """
    total = timer.accumulated_seconds
    if timer.is_active and timer.start_time is not None:
        session = (ensure_utc(now) - timer.start_time).total_seconds()
        total += max(0, int(session))
    return total


def format_duration(seconds: int) -> str:
    """HH:MM:SS with unbounded hours (no wrap at 24h)"""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def hours_from_seconds(seconds: int, places: int = 4,
                       increment: Optional[Decimal] = None) -> Decimal:
    """
    Convert seconds to decimal hours.

    Args:
        seconds: Worked seconds
        places: Decimal places kept when no increment is given
        increment: Billing increment in hours (e.g. 0.1 for six minutes);
            partial increments are rounded up

    Returns:
        Hours as a Decimal
    """
    hours = Decimal(int(seconds)) / SECONDS_PER_HOUR
    if increment:
        units = (hours / increment).to_integral_value(rounding=ROUND_CEILING)
        return units * increment
    return hours.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
