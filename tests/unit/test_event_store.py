"""Tests for familycal_lite.event_store filters and the in-memory store."""

from datetime import datetime, timedelta, timezone

import pytest

from familycal_lite.event_store import EventQuery, InMemoryEventStore, RangeFilter, UpcomingFilter
from familycal_lite.exceptions import EventQueryError
from familycal_lite.models import DailyRule

pytestmark = pytest.mark.unit


def _dt(day: int, hour: int = 0) -> datetime:
    return datetime(2025, 1, day, hour, tzinfo=timezone.utc)


class TestFilters:
    def test_range_filter_matches_overlapping_one_offs(self, make_event):
        query_filter = RangeFilter(start=_dt(6), end=_dt(7))

        assert query_filter.matches(make_event("inside", _dt(6, 9)))
        assert query_filter.matches(make_event("spanning", _dt(5, 20), hours=6))
        assert not query_filter.matches(make_event("after", _dt(7)))
        assert not query_filter.matches(make_event("before", _dt(4)))

    def test_range_filter_always_matches_recurring(self, make_event):
        query_filter = RangeFilter(start=_dt(20), end=_dt(21))
        recurring = make_event("r", _dt(1), is_recurring=True, recurrence=DailyRule())

        assert query_filter.matches(recurring)

    def test_upcoming_filter(self, make_event):
        query_filter = UpcomingFilter(since=_dt(6, 9))

        assert query_filter.matches(make_event("future", _dt(6, 9)))
        assert not query_filter.matches(make_event("past", _dt(6, 8)))
        assert query_filter.matches(
            make_event("old-series", _dt(1), is_recurring=True, recurrence=DailyRule())
        )


class TestInMemoryEventStore:
    def test_satisfies_protocol(self, store):
        assert isinstance(store, EventQuery)

    @pytest.mark.asyncio
    async def test_query_filters_family_and_sorts(self, make_event):
        store = InMemoryEventStore(
            [
                make_event("late", _dt(6, 15), family_id="fam"),
                make_event("other", _dt(6, 10), family_id="someone-else"),
                make_event("shared", _dt(6, 12)),
                make_event("early", _dt(6, 8), family_id="fam"),
            ]
        )

        result = await store.query_events("fam", RangeFilter(start=_dt(6), end=_dt(7)))

        assert [e.id for e in result] == ["early", "shared", "late"]
        assert store.query_count == 1

    @pytest.mark.asyncio
    async def test_injected_failure_is_raised(self, store, make_event):
        store.add(make_event("a", _dt(6, 9)))
        store.fail_with = EventQueryError("store offline")

        with pytest.raises(EventQueryError, match="store offline"):
            await store.query_events("fam", UpcomingFilter(since=_dt(1)))
        assert store.query_count == 1

    def test_add_replaces_and_remove(self, store, make_event):
        store.add(make_event("a", _dt(6, 9)))
        store.add(make_event("a", _dt(6, 11)))

        assert len(store) == 1
        assert store.remove("a") is True
        assert store.remove("a") is False
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_load_records(self, store):
        added = store.load_records(
            [
                {
                    "id": "r1",
                    "start_time": "2025-01-06T09:00:00Z",
                    "end_time": "2025-01-06T10:00:00Z",
                    "is_recurring": True,
                    "recurrence_frequency": "daily",
                    "recurrence_count": 2,
                },
                {"id": "broken"},
            ]
        )

        result = await store.query_events("fam", RangeFilter(start=_dt(20), end=_dt(20) + timedelta(days=1)))

        assert added == 1
        assert [e.id for e in result] == ["r1"]
