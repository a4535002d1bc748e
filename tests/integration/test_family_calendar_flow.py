"""End-to-end flows: store rows -> coordinator -> expanded views."""

import asyncio
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from familycal_lite.config_loader import CacheConfig, load_config
from familycal_lite.event_store import InMemoryEventStore
from familycal_lite.timezone_utils import TEST_TIME_ENV
from familycal_lite.view_cache import ChangeKind, EntryState, EventChange, ViewCacheCoordinator

pytestmark = pytest.mark.integration

FAMILY = "smiths"

WEEKLY_MO_FR = {
    "id": "evt-swim",
    "family_id": FAMILY,
    "title": "Swim practice",
    "start_time": "2025-01-06T09:00:00+00:00",
    "end_time": "2025-01-06T10:00:00+00:00",
    "is_recurring": True,
    "recurrence_frequency": "weekly",
    "recurrence_interval": 1,
    "recurrence_days_of_week": ["MO", "FR"],
}


def _utc(month: int, day: int, hour: int = 0) -> datetime:
    return datetime(2025, month, day, hour, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_upcoming_weekly_two_week_horizon(monkeypatch):
    monkeypatch.setenv(TEST_TIME_ENV, "2025-01-06T00:00:00Z")
    store = InMemoryEventStore()
    store.load_records([WEEKLY_MO_FR])
    config = CacheConfig(timezone="UTC", horizon_days=14)
    coordinator = ViewCacheCoordinator(store, FAMILY, config)

    coordinator.ensure_fetched("upcoming")
    entry = await coordinator.refresh("upcoming")

    assert entry.state is EntryState.READY
    assert [o.start for o in entry.occurrences] == [
        _utc(1, 6, 9),
        _utc(1, 10, 9),
        _utc(1, 13, 9),
        _utc(1, 17, 9),
    ]
    assert all(o.end.hour == 10 for o in entry.occurrences)
    assert {o.original_id for o in entry.occurrences} == {"evt-swim"}
    assert len({o.occurrence_id for o in entry.occurrences}) == 4
    assert store.query_count == 1


@pytest.mark.asyncio
async def test_family_views_in_local_timezone(tmp_path):
    config_path = tmp_path / "familycal.yaml"
    config_path.write_text("timezone: America/New_York\nhorizon_months: 1\n", encoding="utf-8")
    config = load_config(str(config_path), environ={})
    tz = ZoneInfo("America/New_York")

    store = InMemoryEventStore(latency=0.005)
    store.load_records(
        [
            WEEKLY_MO_FR,
            {
                "id": "evt-rent",
                "family_id": FAMILY,
                "title": "Pay rent",
                "start_time": "2025-01-31T14:00:00+00:00",
                "end_time": "2025-01-31T14:30:00+00:00",
                "is_recurring": True,
                "recurrence_frequency": "monthly",
            },
            {
                "id": "evt-late",
                "family_id": FAMILY,
                "title": "Late movie",
                # 23:30 in New York on Feb 27
                "start_time": "2025-02-28T04:30:00+00:00",
                "end_time": "2025-02-28T06:30:00+00:00",
            },
            {
                "id": "evt-neighbour",
                "family_id": "joneses",
                "title": "Not ours",
                "start_time": "2025-02-27T15:00:00+00:00",
                "end_time": "2025-02-27T16:00:00+00:00",
            },
        ]
    )
    clock_now = datetime(2025, 2, 27, 12, tzinfo=tz)
    coordinator = ViewCacheCoordinator(store, FAMILY, config, time_provider=lambda: clock_now)

    today, february, rent_day = await asyncio.gather(
        coordinator.refresh("today"),
        coordinator.refresh("month:2025-02"),
        coordinator.refresh("day:2025-02-28"),
    )

    assert [o.title for o in today.occurrences] == ["Late movie"]
    # The late movie runs past local midnight into Feb 28
    assert [o.original_id for o in rent_day.occurrences] == ["evt-late", "evt-swim", "evt-rent"]
    # Rent clamps from Jan 31 to Feb 28
    rent = [o for o in february.occurrences if o.original_id == "evt-rent"]
    assert [o.start.astimezone(tz).day for o in rent] == [28]
    assert all(o.family_id == FAMILY for o in february.occurrences)
    assert [o.start for o in february.occurrences] == sorted(o.start for o in february.occurrences)

    stats = coordinator.get_cache_stats()
    assert stats.total_entries == 3
    assert stats.loading_keys == ()


@pytest.mark.asyncio
async def test_utc_stored_rows_expand_on_local_days():
    new_york = ZoneInfo("America/New_York")
    store = InMemoryEventStore()
    store.load_records(
        [
            {
                "id": "evt-book-club",
                "family_id": FAMILY,
                "title": "Book club",
                # Monday 20:00 in New York
                "start_time": "2025-01-07T01:00:00+00:00",
                "end_time": "2025-01-07T02:00:00+00:00",
                "is_recurring": True,
                "recurrence_frequency": "weekly",
                "recurrence_days_of_week": ["MO"],
            },
            {
                "id": "evt-school-run",
                "family_id": FAMILY,
                "title": "School run",
                "start_time": "2025-03-07T14:00:00Z",
                "end_time": "2025-03-07T14:30:00Z",
                "is_recurring": True,
                "recurrence_frequency": "daily",
                "recurrence_count": 5,
            },
        ]
    )
    config = CacheConfig(timezone="America/New_York", horizon_days=14)
    coordinator = ViewCacheCoordinator(
        store, FAMILY, config, time_provider=lambda: datetime(2025, 1, 6, 12, tzinfo=new_york)
    )

    upcoming, march = await asyncio.gather(
        coordinator.refresh("upcoming"), coordinator.refresh("month:2025-03")
    )

    assert [o.start.astimezone(new_york).strftime("%a %m-%d %H:%M") for o in upcoming.occurrences] == [
        "Mon 01-06 20:00",
        "Mon 01-13 20:00",
    ]
    school_runs = [o for o in march.occurrences if o.original_id == "evt-school-run"]
    assert [o.start.astimezone(new_york).hour for o in school_runs] == [9, 9, 9, 9, 9]
    assert [o.start.astimezone(new_york).day for o in school_runs] == [7, 8, 9, 10, 11]


@pytest.mark.asyncio
async def test_change_notifications_keep_views_current():
    store = InMemoryEventStore()
    store.load_records([WEEKLY_MO_FR])
    config = CacheConfig(timezone="UTC", horizon_days=14)
    coordinator = ViewCacheCoordinator(store, FAMILY, config, time_provider=lambda: _utc(1, 6))
    await asyncio.gather(coordinator.refresh("today"), coordinator.refresh("upcoming"))

    store.load_records(
        [
            {
                "id": "evt-party",
                "family_id": FAMILY,
                "title": "Birthday party",
                "start_time": "2025-01-11T15:00:00+00:00",
                "end_time": "2025-01-11T18:00:00+00:00",
            }
        ]
    )
    await coordinator.handle_change(
        EventChange(ChangeKind.INSERT, "evt-party", new_start=_utc(1, 11, 15))
    )
    assert "evt-party" in [o.original_id for o in coordinator.get_occurrences("upcoming")]

    store.remove("evt-swim")
    await coordinator.handle_change(
        EventChange(ChangeKind.DELETE, "evt-swim", old_start=_utc(1, 6, 9), is_recurring=True)
    )

    assert coordinator.get_occurrences("today") == ()
    assert [o.original_id for o in coordinator.get_occurrences("upcoming")] == ["evt-party"]


@pytest.mark.asyncio
async def test_transient_store_outage_keeps_last_good_view():
    store = InMemoryEventStore()
    store.load_records([WEEKLY_MO_FR])
    coordinator = ViewCacheCoordinator(
        store, FAMILY, CacheConfig(timezone="UTC"), time_provider=lambda: _utc(1, 6)
    )
    good = await coordinator.refresh("today")

    store.fail_with = ConnectionError("network down")
    failed = await coordinator.refresh("today")
    store.fail_with = None
    recovered = await coordinator.refresh("today")

    assert failed.state is EntryState.ERROR
    assert failed.occurrences == good.occurrences
    assert recovered.state is EntryState.READY
    assert recovered.error is None
    assert recovered.occurrences == good.occurrences
