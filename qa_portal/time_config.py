"""Centralized timezone configuration and Thai date formatting."""
import os
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

# App timezone setting - defaults to Thailand
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Asia/Bangkok")

# Buddhist era offset
THAI_ERA_OFFSET = 543

THAI_SHORT_MONTHS = [
    "ม.ค.", "ก.พ.", "มี.ค.", "เม.ย.", "พ.ค.", "มิ.ย.",
    "ก.ค.", "ส.ค.", "ก.ย.", "ต.ค.", "พ.ย.", "ธ.ค.",
]


def get_app_tz() -> ZoneInfo:
    """Get the application timezone."""
    return ZoneInfo(APP_TIMEZONE)


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime. Use this instead of datetime.now()."""
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    return datetime.now(get_app_tz())


def to_local(dt: datetime) -> datetime:
    """Convert a datetime to the app's local timezone for display.

    Handles both naive and aware datetimes:
    - Naive datetimes are assumed to be UTC
    - Aware datetimes are converted to local timezone
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(get_app_tz())


def isoformat(dt: datetime) -> str:
    """ISO-8601 string in UTC, naive values assumed UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def format_thai_datetime(dt: datetime) -> str:
    """Format as "15 ต.ค. 67 09:30 น." (two-digit Buddhist year).

    Naive values are taken as already local.
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(get_app_tz())
    year = (dt.year + THAI_ERA_OFFSET) % 100
    month = THAI_SHORT_MONTHS[dt.month - 1]
    return f"{dt.day} {month} {year:02d} {dt.hour:02d}:{dt.minute:02d} น."


def utc_naive(dt: datetime = None) -> datetime:
    """Naive UTC datetime for DateTime columns (defaults to now)."""
    if dt is None:
        dt = utc_now()
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
