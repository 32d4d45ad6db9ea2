"""
Datetime utilities for consistent clinic-local time handling.

Appointments and availability are stored as naive dates and "HH:MM" wall-clock
times interpreted in the clinic's local time. This module provides the clinic
clock and the parsing/formatting helpers shared by the scheduling services.
"""

import logging
import re
from datetime import datetime, timezone, timedelta, date, time
from typing import Optional

from core.config import CLINIC_UTC_OFFSET_HOURS

logger = logging.getLogger(__name__)

# Clinic timezone constant (fixed offset)
CLINIC_TZ = timezone(timedelta(hours=CLINIC_UTC_OFFSET_HOURS))

_HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")

MINUTES_PER_DAY = 24 * 60


def clinic_now() -> datetime:
    """
    Get current clinic-local datetime.

    Returns:
        Current datetime with the clinic's fixed UTC offset
    """
    return datetime.now(CLINIC_TZ)


def clinic_today() -> date:
    """Get the clinic-local calendar date."""
    return clinic_now().date()


def parse_date_string(date_str: str) -> date:
    """
    Parse a date string in YYYY-MM-DD or YYYY/MM/DD format.

    Accepts both formats:
    - YYYY-MM-DD (e.g., "2025-01-01", "2025-1-1")
    - YYYY/MM/DD (e.g., "2025/01/01", "2025/1/1")

    Automatically normalizes single-digit months/days.

    Args:
        date_str: Date string in YYYY-MM-DD or YYYY/MM/DD format

    Returns:
        Date object

    Raises:
        ValueError: If date string cannot be parsed
    """
    if not date_str or not date_str.strip():
        raise ValueError("Date string cannot be empty")

    date_str = date_str.strip()

    if '/' in date_str:
        parts = date_str.split('/')
    elif '-' in date_str:
        parts = date_str.split('-')
    else:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD or YYYY/MM/DD): {date_str}")

    if len(parts) != 3:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD or YYYY/MM/DD): {date_str}")

    normalized = f"{parts[0].zfill(4)}-{parts[1].zfill(2)}-{parts[2].zfill(2)}"

    try:
        return datetime.strptime(normalized, '%Y-%m-%d').date()
    except ValueError as e:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD or YYYY/MM/DD): {date_str}") from e


def is_valid_hhmm(value: object) -> bool:
    """Check whether a value is a well-formed 24h "HH:MM" (or "HH:MM:SS") string."""
    return isinstance(value, str) and _HHMM_PATTERN.match(value.strip()) is not None


def parse_hhmm(value: str) -> int:
    """
    Parse an "HH:MM" wall-clock string into minutes since midnight.

    Seconds, when present ("HH:MM:SS"), are ignored.

    Raises:
        ValueError: If the value is not a well-formed time
    """
    if not isinstance(value, str):
        raise ValueError(f"Invalid time (expected HH:MM): {value!r}")
    match = _HHMM_PATTERN.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid time (expected HH:MM): {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_hhmm(minutes: int) -> str:
    """Format minutes since midnight as "HH:MM"."""
    if minutes < 0 or minutes >= MINUTES_PER_DAY:
        raise ValueError(f"Minutes out of day range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_hhmm(value: str) -> str:
    """Normalize "HH:MM:SS" (or padded "HH:MM") input to canonical "HH:MM"."""
    return format_hhmm(parse_hhmm(value))


def add_minutes(value: str, minutes: int) -> str:
    """Add minutes to an "HH:MM" time without crossing midnight."""
    return format_hhmm(parse_hhmm(value) + minutes)


def time_to_hhmm(value: Optional[time]) -> Optional[str]:
    """Convert a datetime.time to "HH:MM" (None passes through)."""
    if value is None:
        return None
    return f"{value.hour:02d}:{value.minute:02d}"


def hhmm_to_time(value: str) -> time:
    """Convert an "HH:MM" string to datetime.time."""
    minutes = parse_hhmm(value)
    return time(minutes // 60, minutes % 60)
