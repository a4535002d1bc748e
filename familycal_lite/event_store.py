"""Raw event query interface consumed by the view cache.

The hosted store is an external collaborator; this module only fixes the
contract (``EventQuery``), the two filter shapes it must understand, and an
in-memory implementation used by tests and the developer CLI.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol, Union, runtime_checkable

from .models import StoredEvent
from .records import events_from_records
from .timezone_utils import ensure_aware

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RangeFilter:
    """Events relevant to [start, end): overlapping one-offs plus every recurring event.

    Recurring events are returned regardless of their original start because
    any of their occurrences might land in the range.
    """

    start: datetime
    end: datetime

    def matches(self, event: StoredEvent) -> bool:
        if event.is_recurring:
            return True
        start = ensure_aware(self.start)
        end = ensure_aware(self.end)
        return event.end_time >= start and event.start_time < end


@dataclass(frozen=True)
class UpcomingFilter:
    """Recurring events plus one-offs starting at or after `since`; no end bound."""

    since: datetime

    def matches(self, event: StoredEvent) -> bool:
        return event.is_recurring or event.start_time >= ensure_aware(self.since)


QueryFilter = Union[RangeFilter, UpcomingFilter]


@runtime_checkable
class EventQuery(Protocol):
    """Read contract of the external event store."""

    async def query_events(
        self, family_id: str, query_filter: QueryFilter
    ) -> Sequence[StoredEvent]:
        """Return the family's stored events matching the filter, ordered by start.

        Failures are raised as exceptions; callers convert them to cache state.
        """
        ...


class InMemoryEventStore:
    """Dictionary-backed EventQuery implementation.

    Events without a family_id are visible to every family. `fail_with` makes
    every subsequent query raise the given exception until cleared, and
    `latency` adds an awaitable delay so concurrent callers can overlap.
    """

    def __init__(
        self,
        events: Iterable[StoredEvent] = (),
        latency: float = 0.0,
    ) -> None:
        self._events: dict[str, StoredEvent] = {}
        self.latency = latency
        self.fail_with: Optional[BaseException] = None
        self.query_count = 0
        for event in events:
            self.add(event)

    def add(self, event: StoredEvent) -> None:
        """Insert or replace an event by id."""
        self._events[event.id] = event

    def remove(self, event_id: str) -> bool:
        """Delete an event; returns False when it was not present."""
        return self._events.pop(event_id, None) is not None

    def load_records(self, rows: Iterable[Mapping[str, Any]]) -> int:
        """Add events parsed from store rows; returns how many were added."""
        added = 0
        for event in events_from_records(rows):
            self.add(event)
            added += 1
        logger.debug("Loaded %d events into in-memory store", added)
        return added

    def __len__(self) -> int:
        return len(self._events)

    async def query_events(
        self, family_id: str, query_filter: QueryFilter
    ) -> list[StoredEvent]:
        self.query_count += 1
        # Always suspend so callers observe a real in-flight window
        await asyncio.sleep(self.latency)
        if self.fail_with is not None:
            raise self.fail_with

        matching = [
            event
            for event in self._events.values()
            if (event.family_id is None or event.family_id == family_id)
            and query_filter.matches(event)
        ]
        matching.sort(key=lambda e: (e.start_time, e.id))
        logger.debug(
            "Query %d for family %s (%s) matched %d of %d events",
            self.query_count,
            family_id,
            type(query_filter).__name__,
            len(matching),
            len(self._events),
        )
        return matching
