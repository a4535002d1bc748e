"""Conversion of raw store rows into StoredEvent models.

Rows use the store's column names (``start_time``, ``recurrence_frequency``,
``recurrence_days_of_week`` ...). Recurrence columns that cannot be
understood degrade to a single-instance event instead of failing the row.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, Optional, Union

from pydantic import ValidationError

from .exceptions import RecordParseError
from .models import DailyRule, MonthlyRule, StoredEvent, WeeklyRule, YearlyRule
from .timezone_utils import parse_timestamp

logger = logging.getLogger(__name__)

_RULE_TYPES: dict[str, type[Union[DailyRule, WeeklyRule, MonthlyRule, YearlyRule]]] = {
    "daily": DailyRule,
    "weekly": WeeklyRule,
    "monthly": MonthlyRule,
    "yearly": YearlyRule,
}

_DISPLAY_COLUMNS = (
    "family_id",
    "title",
    "description",
    "notes",
    "location",
    "is_all_day",
    "timezone",
    "category_id",
    "created_by",
)

_RECURRENCE_COLUMNS = (
    "recurrence_frequency",
    "recurrence_interval",
    "recurrence_days_of_week",
    "recurrence_count",
    "recurrence_end_date",
)

_CORE_COLUMNS = ("id", "start_time", "end_time", "is_recurring")

_KNOWN_COLUMNS = frozenset(_DISPLAY_COLUMNS + _RECURRENCE_COLUMNS + _CORE_COLUMNS)


def recurrence_from_record(
    row: Mapping[str, Any],
) -> Optional[Union[DailyRule, WeeklyRule, MonthlyRule, YearlyRule]]:
    """Build the recurrence rule of a row, or None for single-instance behaviour.

    A recurring row with no frequency, or with a frequency other than
    daily/weekly/monthly/yearly, is treated as a single instance.
    """
    if not row.get("is_recurring"):
        return None

    raw_frequency = row.get("recurrence_frequency")
    if not raw_frequency:
        logger.debug("Recurring row %s has no frequency; treating as single", row.get("id"))
        return None

    frequency = str(raw_frequency).strip().lower()
    rule_type = _RULE_TYPES.get(frequency)
    if rule_type is None:
        logger.warning(
            "Unknown recurrence frequency %r on event %s; treating as single",
            raw_frequency,
            row.get("id"),
        )
        return None

    until = None
    raw_until = row.get("recurrence_end_date")
    if raw_until:
        try:
            until = parse_timestamp(raw_until)
        except ValueError:
            logger.warning(
                "Ignoring unparseable recurrence_end_date %r on event %s", raw_until, row.get("id")
            )

    fields: dict[str, Any] = {
        "interval": row.get("recurrence_interval"),
        "count": row.get("recurrence_count"),
        "until": until,
    }
    if rule_type is WeeklyRule:
        fields["days_of_week"] = row.get("recurrence_days_of_week")
    return rule_type(**fields)


def event_from_record(row: Mapping[str, Any]) -> StoredEvent:
    """Convert one store row into a StoredEvent.

    Raises:
        RecordParseError: If id, start_time or end_time is missing or unparseable
    """
    event_id = row.get("id")
    if event_id is None or str(event_id) == "":
        raise RecordParseError("Row has no id")

    try:
        start_time = parse_timestamp(row.get("start_time"))
        end_time = parse_timestamp(row.get("end_time"))
    except ValueError as e:
        raise RecordParseError(f"Row {event_id}: {e}") from e

    display = {name: row[name] for name in _DISPLAY_COLUMNS if row.get(name) is not None}
    for name in ("family_id", "category_id", "created_by"):
        if name in display:
            display[name] = str(display[name])
    extra = {k: v for k, v in row.items() if k not in _KNOWN_COLUMNS}

    try:
        return StoredEvent(
            id=str(event_id),
            start_time=start_time,
            end_time=end_time,
            is_recurring=bool(row.get("is_recurring")),
            recurrence=recurrence_from_record(row),
            extra=extra,
            **display,
        )
    except ValidationError as e:
        raise RecordParseError(f"Row {event_id}: {e}") from e


def events_from_records(rows: Iterable[Mapping[str, Any]]) -> Iterator[StoredEvent]:
    """Convert rows lazily, skipping (and logging) rows that cannot be parsed."""
    for index, row in enumerate(rows):
        try:
            yield event_from_record(row)
        except RecordParseError as e:
            logger.warning("Skipping row %d: %s", index, e)
