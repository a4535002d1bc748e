"""Data models for stored events, recurrence rules and expanded occurrences."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .timezone_utils import ensure_aware

logger = logging.getLogger(__name__)

# Index matches days since Sunday, the week-start convention used for weekly rules.
WEEKDAY_CODES: tuple[str, ...] = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")

FREQUENCIES: tuple[str, ...] = ("daily", "weekly", "monthly", "yearly")

# Fields copied verbatim from a StoredEvent onto each of its occurrences.
DISPLAY_FIELDS: tuple[str, ...] = (
    "family_id",
    "title",
    "description",
    "notes",
    "location",
    "is_all_day",
    "timezone",
    "category_id",
    "created_by",
    "extra",
)


class _RuleBase(BaseModel):
    """Fields shared by every recurrence variant.

    count and until are independent caps: rows coming from the store may carry
    both and each must hold.
    """

    interval: int = Field(default=1, description="Step between occurrences, in rule units")
    count: Optional[int] = Field(default=None, description="Total occurrences in the series")
    until: Optional[datetime] = Field(default=None, description="Last allowed occurrence start")

    model_config = ConfigDict(frozen=True)

    @field_validator("interval", mode="before")
    @classmethod
    def _coerce_interval(cls, value: Any) -> int:
        try:
            interval = int(value) if value is not None else 1
        except (TypeError, ValueError):
            logger.warning("Recurrence interval %r is not an int; using 1", value)
            return 1
        if interval <= 0:
            logger.debug("Recurrence interval %d is not positive; using 1", interval)
            return 1
        return interval

    @field_validator("count", mode="before")
    @classmethod
    def _coerce_count(cls, value: Any) -> Optional[int]:
        if value is None:
            return None
        try:
            count = int(value)
        except (TypeError, ValueError):
            logger.warning("Recurrence count %r is not an int; ignoring", value)
            return None
        # A zero count means "no cap" in stored rows
        return count if count > 0 else None

    @field_validator("until")
    @classmethod
    def _aware_until(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(value) if value is not None else None


class DailyRule(_RuleBase):
    """Every `interval` days."""

    frequency: Literal["daily"] = "daily"


class WeeklyRule(_RuleBase):
    """Selected weekdays in every `interval`-th Sunday-based week."""

    frequency: Literal["weekly"] = "weekly"
    days_of_week: frozenset[str] = Field(
        default_factory=frozenset,
        description="Weekday codes (SU..SA); empty means the start weekday",
    )

    @field_validator("days_of_week", mode="before")
    @classmethod
    def _normalize_days(cls, value: Any) -> frozenset[str]:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = value.split(",")
        codes = set()
        for raw in value:
            code = str(raw).strip().upper()
            if code in WEEKDAY_CODES:
                codes.add(code)
            elif code:
                logger.warning("Ignoring unknown weekday code %r", raw)
        return frozenset(codes)


class MonthlyRule(_RuleBase):
    """Same day-of-month every `interval` months."""

    frequency: Literal["monthly"] = "monthly"


class YearlyRule(_RuleBase):
    """Same date every `interval` years."""

    frequency: Literal["yearly"] = "yearly"


Recurrence = Annotated[
    Union[DailyRule, WeeklyRule, MonthlyRule, YearlyRule],
    Field(discriminator="frequency"),
]


class _EventDisplay(BaseModel):
    """Display fields shared by stored events and their occurrences."""

    family_id: Optional[str] = Field(default=None, description="Owning family")
    title: str = Field(default="", description="Event title")
    description: Optional[str] = Field(default=None, description="Event description")
    notes: Optional[str] = Field(default=None, description="Free-form notes")
    location: Optional[str] = Field(default=None, description="Location display text")
    is_all_day: bool = Field(default=False, description="All-day event flag")
    timezone: str = Field(default="UTC", description="Time zone the event was created in")
    category_id: Optional[str] = Field(default=None, description="Event category")
    created_by: Optional[str] = Field(default=None, description="Creating user")
    extra: dict[str, Any] = Field(default_factory=dict, description="Other store columns")

    model_config = ConfigDict(frozen=True)


class StoredEvent(_EventDisplay):
    """Persisted calendar entry, possibly carrying a recurrence rule."""

    id: str = Field(..., description="Store row identifier")
    start_time: datetime = Field(..., description="Start of the (first) instance")
    end_time: datetime = Field(..., description="End of the (first) instance")
    is_recurring: bool = Field(default=False, description="Recurring event flag")
    recurrence: Optional[Recurrence] = Field(default=None, description="Recurrence rule")

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware_times(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def effective_recurrence(self) -> Optional[Union[DailyRule, WeeklyRule, MonthlyRule, YearlyRule]]:
        """The rule to expand, or None when the event is a single instance."""
        if not self.is_recurring:
            return None
        return self.recurrence

    def display_fields(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in DISPLAY_FIELDS}


class Occurrence(_EventDisplay):
    """One concrete, dated instance of a StoredEvent. Never persisted."""

    original_id: str = Field(..., description="ID of the generating StoredEvent")
    occurrence_id: str = Field(..., description="Deterministic per-instance ID")
    start: datetime = Field(..., description="Instance start")
    end: datetime = Field(..., description="Instance end")
    is_recurring: bool = Field(default=False, description="Produced from a recurrence rule")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, window_start: datetime, window_end: datetime) -> bool:
        """Half-open overlap test: end touching window_start counts, start at window_end does not."""
        return self.end >= window_start and self.start < window_end

    @field_serializer("start", "end")
    def serialize_datetime(self, dt: datetime) -> str:
        """Serialize datetime to ISO format."""
        return dt.isoformat()
