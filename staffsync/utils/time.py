"""Time Utilities - UTC timestamps, ISO formatting and weekly periods

Timestamps are persisted as fixed-width ISO strings
(``2025-01-06T08:30:00.000000Z``) so that string order in the store matches
chronological order for range queries and sorted reads.
"""
import re
from datetime import datetime, timezone, timedelta
from typing import Tuple
from dateutil import parser as date_parser

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
PERIOD_PATTERN = re.compile(r"^(\d{4})-W(\d{2})$")


def utc_now() -> datetime:
    """Get current UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """
    Format datetime to a fixed-width ISO 8601 string

    Args:
        dt: Datetime object (naive values are treated as UTC)

    Returns:
        ISO formatted string with microseconds and Z suffix
    """
    return ensure_utc(dt).strftime(ISO_FORMAT)


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 string to datetime

    Args:
        iso_string: ISO formatted datetime string

    Returns:
        Datetime object in UTC
    """
    return ensure_utc(date_parser.isoparse(iso_string))


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours between two datetimes"""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 3600


# =============================================================================
# Weekly periods (ISO weeks, Monday 00:00 UTC to next Monday 00:00 UTC)
# =============================================================================

def period_id_for(dt: datetime) -> str:
    """
    Get the ISO week period id containing the given datetime

    Examples:
        >>> period_id_for(datetime(2025, 1, 1, tzinfo=timezone.utc))
        '2025-W01'
    """
    iso_year, iso_week, _ = ensure_utc(dt).isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def current_period_id() -> str:
    """Period id for the current week"""
    return period_id_for(utc_now())


def period_bounds(period_id: str) -> Tuple[datetime, datetime]:
    """
    Get the [start, end) datetimes of a period

    Raises:
        ValueError: If the period id is not of the form YYYY-Www
    """
    match = PERIOD_PATTERN.match(period_id or "")
    if not match:
        raise ValueError(f"Invalid period id: {period_id!r} (expected YYYY-Www)")

    year, week = int(match.group(1)), int(match.group(2))
    try:
        start = datetime.fromisocalendar(year, week, 1).replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise ValueError(f"Invalid period id: {period_id!r} ({e})") from e
    return start, start + timedelta(days=7)


def previous_period_id(period_id: str) -> str:
    """Period id of the week before the given one"""
    start, _ = period_bounds(period_id)
    return period_id_for(start - timedelta(days=1))
