"""
Datetime utility functions

All timestamps in the pipeline are timezone-aware UTC. asyncpg returns aware
datetimes for TIMESTAMPTZ columns; naive values coming from elsewhere are
assumed to be UTC.
"""
from datetime import datetime, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(value) -> Optional[datetime]:
    """
    Normalize a timestamp to an aware UTC datetime

    Handles:
    - None -> None
    - aware datetime -> converted to UTC
    - naive datetime -> tagged as UTC
    - ISO string (with optional trailing Z) -> parsed
    - epoch seconds (int/float) -> converted
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)

    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
        except ValueError as e:
            logger.warning(f"Failed to parse datetime string '{value}': {e}")
            return None

    logger.warning(f"Cannot convert {type(value)} to datetime: {value}")
    return None


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days elapsed from earlier to later (floored, never negative)"""
    seconds = (ensure_utc(later) - ensure_utc(earlier)).total_seconds()
    return max(0, int(seconds // SECONDS_PER_DAY))
