"""Timezone and epoch helpers."""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Representable range of datetime (years 1..9999).
MIN_EPOCH_MS = -62_135_596_800_000
MAX_EPOCH_MS = 253_402_300_799_999

DEFAULT_TZ = "Asia/Tokyo"


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Create tzinfo from an IANA timezone name.

    Args:
        tz_name: Timezone name like "Asia/Tokyo" or "UTC".

    Returns:
        tzinfo instance.

    Raises:
        ValueError: If the timezone name is unknown on this system.
    """
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Invalid timezone: {tz_name!r} (for example: Asia/Tokyo)") from exc


def epoch_ms_from_dt(dt: datetime, tz: tzinfo = timezone.utc) -> int:
    """Convert a datetime to epoch milliseconds.

    Naive datetimes are interpreted in ``tz``. Sub-millisecond precision is
    truncated towards the past.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return (dt - EPOCH) // timedelta(milliseconds=1)


def dt_from_epoch_ms(epoch_ms: int, tz: tzinfo = timezone.utc) -> datetime:
    """Convert epoch milliseconds to a timezone-aware datetime."""
    return (EPOCH + timedelta(milliseconds=epoch_ms)).astimezone(tz)


def day_bounds(now_ms: int, tz: tzinfo) -> Tuple[int, int]:
    """Local-midnight day window containing ``now_ms``.

    Returns:
        (day_start_ms, day_end_ms), both inclusive. The end is the last
        millisecond before the next local midnight.
    """
    local = dt_from_epoch_ms(now_ms, tz)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    # Wall-clock addition: a DST change can make a local day 23 or 25 hours long.
    next_midnight = midnight + timedelta(days=1)
    return epoch_ms_from_dt(midnight), epoch_ms_from_dt(next_midnight) - 1


def in_window(ts: int, window: Tuple[int, int]) -> bool:
    return window[0] <= ts <= window[1]
