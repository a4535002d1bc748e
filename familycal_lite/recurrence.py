"""Recurrence expansion for familycal_lite.

Turns stored events plus a time window into the concrete occurrences that
overlap the window. Everything here is pure: no I/O, no shared state, and
identical inputs always give identical output (including occurrence ids).

Series are walked in the family's local timezone: weekdays, Sunday-based
weeks and day/month steps are all local, and the wall-clock start time is
kept across DST changes.

Windows are half-open on the start side of an occurrence: an occurrence is
kept when ``end >= window_start and start < window_end``.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable, Iterator
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional, Union

from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, FR, MO, SA, SU, TH, TU, WE, WEEKLY, rrule

from .exceptions import InvalidWindowError
from .models import (
    WEEKDAY_CODES,
    DailyRule,
    MonthlyRule,
    Occurrence,
    StoredEvent,
    WeeklyRule,
    YearlyRule,
)
from .timezone_utils import ensure_aware

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES = 500

Rule = Union[DailyRule, WeeklyRule, MonthlyRule, YearlyRule]

_RRULE_WEEKDAYS = dict(zip(WEEKDAY_CODES, (SU, MO, TU, WE, TH, FR, SA)))


def weekday_code(dt: datetime) -> str:
    """Return the two-letter weekday code (SU..SA) of dt in its own timezone."""
    return WEEKDAY_CODES[(dt.weekday() + 1) % 7]


def occurrence_id_for(original_id: str, start: datetime) -> str:
    """Build the deterministic id of the occurrence of original_id starting at start."""
    return f"{original_id}::{start.astimezone(timezone.utc).isoformat()}"


def occurrence_for(event: StoredEvent) -> Occurrence:
    """Wrap a single-instance event as its own occurrence (ids are equal)."""
    return Occurrence(
        **event.display_fields(),
        original_id=event.id,
        occurrence_id=event.id,
        start=event.start_time,
        end=event.end_time,
        is_recurring=False,
    )


def _end_for(start: datetime, duration: timedelta) -> datetime:
    # Elapsed duration, so an instance spanning a DST change keeps its length
    return (start.astimezone(timezone.utc) + duration).astimezone(start.tzinfo)


def _recurring_occurrence(event: StoredEvent, start: datetime, end: datetime) -> Occurrence:
    return Occurrence(
        **event.display_fields(),
        original_id=event.id,
        occurrence_id=occurrence_id_for(event.id, start),
        start=start,
        end=end,
        is_recurring=True,
    )


def _rrule_starts(
    origin: datetime,
    rule: Union[DailyRule, WeeklyRule],
    until: Optional[datetime],
    threshold: datetime,
) -> Iterator[datetime]:
    """Yield daily or weekly series starts at or after threshold.

    rrule numbers the series from dtstart, so COUNT holds no matter how far
    into the series threshold lies.
    """
    if isinstance(rule, WeeklyRule):
        codes = sorted(rule.days_of_week or {weekday_code(origin)}, key=WEEKDAY_CODES.index)
        series = rrule(
            WEEKLY,
            dtstart=origin,
            interval=rule.interval,
            wkst=SU,
            byweekday=[_RRULE_WEEKDAYS[code] for code in codes],
            count=rule.count,
            until=until,
        )
    else:
        series = rrule(DAILY, dtstart=origin, interval=rule.interval, count=rule.count, until=until)

    for start in series.xafter(threshold, inc=True):
        # rrule truncates dtstart to whole seconds
        yield start.replace(microsecond=origin.microsecond)


def _calendar_starts(
    origin: datetime, step: relativedelta, count: Optional[int], until: Optional[datetime]
) -> Iterator[datetime]:
    """Yield origin + k * step for monthly and yearly rules.

    Always computed from the origin: a day-of-month that does not exist in the
    target month (Jan 31, Feb 29) clamps to the month's last day without
    drifting later ones. rrule would skip those months instead.
    """
    index = 0
    while count is None or index < count:
        start = origin + step * index
        if until is not None and start > until:
            return
        yield start
        index += 1


def _series_starts(origin: datetime, rule: Rule, threshold: datetime) -> Iterator[datetime]:
    until = rule.until.astimezone(origin.tzinfo) if rule.until is not None else None
    if isinstance(rule, (DailyRule, WeeklyRule)):
        return _rrule_starts(origin, rule, until, threshold)
    if isinstance(rule, MonthlyRule):
        return _calendar_starts(origin, relativedelta(months=rule.interval), rule.count, until)
    return _calendar_starts(origin, relativedelta(years=rule.interval), rule.count, until)


def _check_window(window_start: datetime, window_end: datetime) -> tuple[datetime, datetime]:
    window_start = ensure_aware(window_start)
    window_end = ensure_aware(window_end)
    if window_start > window_end:
        raise InvalidWindowError(f"Window start {window_start} is after window end {window_end}")
    return window_start, window_end


def expand(
    event: StoredEvent,
    window_start: datetime,
    window_end: datetime,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
    tz: Optional[tzinfo] = None,
) -> list[Occurrence]:
    """Expand one stored event into the occurrences overlapping a window.

    Args:
        event: Stored event, recurring or not
        window_start: Inclusive lower bound on occurrence end
        window_end: Exclusive upper bound on occurrence start
        max_occurrences: Hard ceiling on emitted occurrences; hitting it is not an error
        tz: Local timezone the series is walked in (defaults to the start time's own)

    Returns:
        Occurrences sorted ascending by start

    Raises:
        InvalidWindowError: If window_start is after window_end
    """
    window_start, window_end = _check_window(window_start, window_end)

    duration = event.duration
    if duration < timedelta(0):
        logger.warning(
            "Event %s ends before it starts (%s < %s); skipping",
            event.id,
            event.end_time,
            event.start_time,
        )
        return []

    rule = event.effective_recurrence
    if rule is None:
        single = occurrence_for(event)
        return [single] if max_occurrences > 0 and single.overlaps(window_start, window_end) else []

    origin = event.start_time.astimezone(tz) if tz is not None else event.start_time
    threshold = window_start - duration
    results: list[Occurrence] = []
    for start in _series_starts(origin, rule, threshold):
        if start >= window_end:
            break
        end = _end_for(start, duration)
        if end < window_start:
            continue
        if len(results) >= max_occurrences:
            logger.debug("Expansion of %s truncated at %d occurrences", event.id, max_occurrences)
            break
        results.append(_recurring_occurrence(event, start, end))

    logger.debug(
        "Expanded %s (%s, interval=%d) into %d occurrences for %s..%s",
        event.id,
        rule.frequency,
        rule.interval,
        len(results),
        window_start.isoformat(),
        window_end.isoformat(),
    )
    return results


def _sort_key(occurrence: Occurrence) -> tuple[datetime, str]:
    return occurrence.start, occurrence.occurrence_id


def expand_many(
    events: Iterable[StoredEvent],
    window_start: datetime,
    window_end: datetime,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
    tz: Optional[tzinfo] = None,
) -> list[Occurrence]:
    """Expand a batch of stored events and merge the results by start time.

    An event whose expansion fails is logged and contributes nothing; the rest
    of the batch is still expanded.

    Raises:
        InvalidWindowError: If window_start is after window_end
    """
    window_start, window_end = _check_window(window_start, window_end)

    per_event: list[list[Occurrence]] = []
    for event in events:
        try:
            expanded = expand(event, window_start, window_end, max_occurrences, tz)
        except Exception:
            logger.exception("Expansion failed for event %s", getattr(event, "id", "<no-id>"))
            continue
        if expanded:
            per_event.append(expanded)

    return list(heapq.merge(*per_event, key=_sort_key))
