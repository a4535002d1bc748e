import logging
import time
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from familycal_lite.config_loader import ENV_OVERRIDES, CacheConfig
from familycal_lite.event_store import InMemoryEventStore
from familycal_lite.lite_logging import NOISY_LOGGERS, PACKAGE_LOGGERS
from familycal_lite.models import StoredEvent
from familycal_lite.timezone_utils import TEST_TIME_ENV


def pytest_configure(config: Any) -> None:
    """Register test markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Tests exercising several modules together")
    config.addinivalue_line("markers", "fast: Tests that complete in well under a second")


class FakeClock:
    """Mutable time provider for coordinator tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear FAMILYCAL_* variables so host settings never leak into tests.

    Some tests set FAMILYCAL_TEST_TIME to freeze time; it is removed before
    and after each test.
    """
    for var in (TEST_TIME_ENV, "FAMILYCAL_DEBUG", *ENV_OVERRIDES.values()):
        monkeypatch.delenv(var, raising=False)
    yield
    monkeypatch.delenv(TEST_TIME_ENV, raising=False)


@pytest.fixture(autouse=True)
def restore_logging_levels() -> Generator[None, Any, None]:
    """Undo logger level changes made by configure_logging."""
    names = ("", *PACKAGE_LOGGERS, *NOISY_LOGGERS)
    saved = {name: logging.getLogger(name).level for name in names}
    root_handlers = list(logging.getLogger().handlers)
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler not in root_handlers:
            root.removeHandler(handler)


@pytest.fixture
def utc() -> timezone:
    return timezone.utc


@pytest.fixture
def test_timezone() -> str:
    """Deterministic IANA zone with a DST transition, for local-boundary tests."""
    return "America/New_York"


@pytest.fixture
def eastern_host(monkeypatch: Any) -> Generator[None, Any, None]:
    """Switch the process-local zone to US Eastern (POSIX rule, no tz database needed)."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", "EST5EDT,M3.2.0,M11.1.0")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


@pytest.fixture
def fixed_now() -> datetime:
    """Monday 2025-01-06 00:00 UTC."""
    return datetime(2025, 1, 6, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(fixed_now: datetime) -> FakeClock:
    return FakeClock(fixed_now)


@pytest.fixture
def utc_config() -> CacheConfig:
    """Cache configuration with UTC day boundaries and default horizon."""
    return CacheConfig(timezone="UTC")


@pytest.fixture
def make_event() -> Callable[..., StoredEvent]:
    """Factory for StoredEvent with one-hour duration by default.

    Usage: make_event("id", datetime(...), hours=2, is_recurring=True, recurrence=...)
    """

    def _make(
        event_id: str,
        start: datetime,
        hours: float = 1.0,
        **kwargs: Any,
    ) -> StoredEvent:
        kwargs.setdefault("title", f"Event {event_id}")
        return StoredEvent(
            id=event_id,
            start_time=start,
            end_time=start + timedelta(hours=hours),
            **kwargs,
        )

    return _make


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()
