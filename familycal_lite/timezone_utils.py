"""Time and timezone helpers for familycal_lite."""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo

from dateutil import parser as date_parser
from dateutil import tz as date_tz

logger = logging.getLogger(__name__)

TEST_TIME_ENV = "FAMILYCAL_TEST_TIME"


def now_utc() -> datetime.datetime:
    """Return current UTC time with tzinfo.

    Can be overridden for testing via the FAMILYCAL_TEST_TIME environment variable.
    Format: ISO 8601 datetime string (e.g., "2025-01-06T00:00:00+00:00").
    Naive override values are taken as UTC.

    Returns:
        Current time in UTC with timezone info
    """
    test_time = os.environ.get(TEST_TIME_ENV)
    if test_time:
        try:
            dt = date_parser.isoparse(test_time)
            if dt.tzinfo is not None:
                return dt.astimezone(datetime.timezone.utc)
            return dt.replace(tzinfo=datetime.timezone.utc)
        except (ValueError, OverflowError) as e:
            logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV, test_time, e)

    return datetime.datetime.now(datetime.timezone.utc)


def local_timezone() -> datetime.tzinfo:
    """Return the host's local timezone, following its DST rules for any date."""
    return date_tz.tzlocal()


def resolve_timezone(tz_name: str | None) -> datetime.tzinfo:
    """Resolve an IANA timezone name.

    Args:
        tz_name: IANA identifier such as "Europe/London"; None or empty uses the host zone

    Returns:
        tzinfo for the name, or UTC when the name is unknown
    """
    if not tz_name:
        return local_timezone()
    try:
        return zoneinfo.ZoneInfo(tz_name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning("Invalid timezone %r, falling back to UTC", tz_name)
        return datetime.timezone.utc


def ensure_aware(dt: datetime.datetime) -> datetime.datetime:
    """Attach UTC to naive datetimes; aware values are returned unchanged."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt


def parse_timestamp(value: object) -> datetime.datetime:
    """Parse a store timestamp (datetime or ISO-8601 string) into an aware datetime.

    Raises:
        ValueError: If the value is neither a datetime nor a parseable string
    """
    if isinstance(value, datetime.datetime):
        return ensure_aware(value)
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time.min, tzinfo=datetime.timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            return ensure_aware(date_parser.isoparse(value.strip()))
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid timestamp {value!r}") from e
    raise ValueError(f"Invalid timestamp {value!r}")


def start_of_local_day(moment: datetime.datetime, tz: datetime.tzinfo) -> datetime.datetime:
    """Return local midnight (in tz) of the day containing moment."""
    local = ensure_aware(moment).astimezone(tz)
    return datetime.datetime.combine(local.date(), datetime.time.min, tzinfo=tz)
