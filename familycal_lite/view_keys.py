"""View key grammar and the time windows behind each view.

Keys:
    "today"            current local day
    "upcoming"         now until now + horizon (recurring or future events)
    "day:YYYY-MM-DD"   one local calendar day
    "month:YYYY-MM"    one local calendar month
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Literal, Optional, Union

from dateutil.relativedelta import relativedelta

from .event_store import QueryFilter, RangeFilter, UpcomingFilter
from .exceptions import InvalidViewKeyError
from .timezone_utils import ensure_aware, start_of_local_day

TODAY = "today"
UPCOMING = "upcoming"
DAY_PREFIX = "day:"
MONTH_PREFIX = "month:"

DEFAULT_HORIZON = relativedelta(months=6)
DEFAULT_UPCOMING_GRACE = timedelta(minutes=1)

_DAY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")

ViewKind = Literal["today", "upcoming", "day", "month"]


@dataclass(frozen=True)
class ViewWindow:
    """Resolved window of a view key at a given moment."""

    key: str
    kind: ViewKind
    start: datetime
    end: datetime
    query_filter: QueryFilter


def day_key(day: Union[date, datetime]) -> str:
    """Build the "day:YYYY-MM-DD" key of a date (datetimes use their own local date)."""
    if isinstance(day, datetime):
        day = day.date()
    return f"{DAY_PREFIX}{day.isoformat()}"


def month_key(year: int, month: int) -> str:
    """Build the "month:YYYY-MM" key; month is 1-based."""
    return f"{MONTH_PREFIX}{year:04d}-{month:02d}"


def _local_midnight(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _parse_day(key: str) -> date:
    match = _DAY_RE.match(key[len(DAY_PREFIX):])
    if not match:
        raise InvalidViewKeyError(f"Malformed day view key {key!r}; expected day:YYYY-MM-DD")
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError as e:
        raise InvalidViewKeyError(f"Invalid date in view key {key!r}") from e


def _parse_month(key: str) -> date:
    match = _MONTH_RE.match(key[len(MONTH_PREFIX):])
    if not match:
        raise InvalidViewKeyError(f"Malformed month view key {key!r}; expected month:YYYY-MM")
    try:
        return date(int(match.group(1)), int(match.group(2)), 1)
    except ValueError as e:
        raise InvalidViewKeyError(f"Invalid month in view key {key!r}") from e


def validate_view_key(key: str) -> ViewKind:
    """Return the kind of a view key without resolving its window.

    Raises:
        InvalidViewKeyError: If the key is not recognised
    """
    if key == TODAY:
        return "today"
    if key == UPCOMING:
        return "upcoming"
    if isinstance(key, str) and key.startswith(DAY_PREFIX):
        _parse_day(key)
        return "day"
    if isinstance(key, str) and key.startswith(MONTH_PREFIX):
        _parse_month(key)
        return "month"
    raise InvalidViewKeyError(f"Unknown view key {key!r}")


def parse_view_key(
    key: str,
    now: datetime,
    tz: tzinfo,
    horizon: Optional[relativedelta] = None,
    upcoming_grace: timedelta = DEFAULT_UPCOMING_GRACE,
) -> ViewWindow:
    """Resolve a view key into its expansion window and store query filter.

    Args:
        key: View key
        now: Current moment (aware)
        tz: Local timezone used for day and month boundaries
        horizon: Forward bound of the "upcoming" view (default 6 months)
        upcoming_grace: How far before now a one-off may start and still be fetched for "upcoming"

    Raises:
        InvalidViewKeyError: If the key is not recognised
    """
    kind = validate_view_key(key)
    now = ensure_aware(now)

    if kind == "upcoming":
        end = now + (horizon if horizon is not None else DEFAULT_HORIZON)
        return ViewWindow(key, kind, now, end, UpcomingFilter(since=now - upcoming_grace))

    if kind == "today":
        start = start_of_local_day(now, tz)
        end = _local_midnight(start.date() + timedelta(days=1), tz)
    elif kind == "day":
        day = _parse_day(key)
        start = _local_midnight(day, tz)
        end = _local_midnight(day + timedelta(days=1), tz)
    else:
        first = _parse_month(key)
        start = _local_midnight(first, tz)
        end = _local_midnight(first + relativedelta(months=1), tz)

    return ViewWindow(key, kind, start, end, RangeFilter(start=start, end=end))


def cache_keys_for_event(event_start: datetime, tz: tzinfo) -> list[str]:
    """Return the view keys whose contents may change when an event at event_start changes."""
    local = ensure_aware(event_start).astimezone(tz)
    return [TODAY, UPCOMING, month_key(local.year, local.month), day_key(local.date())]
