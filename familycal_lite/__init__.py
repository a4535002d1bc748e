"""familycal_lite - recurring-event expansion and view-scoped occurrence cache.

Stored events (one-off or recurring) are expanded into concrete occurrences
for a time window, and a ViewCacheCoordinator caches those occurrences per
named view ("today", "upcoming", "day:YYYY-MM-DD", "month:YYYY-MM").
"""

__version__ = "0.1.0"

from .config_loader import CacheConfig, load_config
from .event_store import EventQuery, InMemoryEventStore, RangeFilter, UpcomingFilter
from .exceptions import (
    EventQueryError,
    FamilyCalError,
    InvalidViewKeyError,
    InvalidWindowError,
    RecordParseError,
)
from .models import DailyRule, MonthlyRule, Occurrence, StoredEvent, WeeklyRule, YearlyRule
from .recurrence import expand, expand_many
from .view_cache import (
    CacheStats,
    ChangeKind,
    EntryState,
    EventChange,
    ViewCacheCoordinator,
    ViewCacheEntry,
)

__all__ = [
    "CacheConfig",
    "CacheStats",
    "ChangeKind",
    "DailyRule",
    "EntryState",
    "EventChange",
    "EventQuery",
    "EventQueryError",
    "FamilyCalError",
    "InMemoryEventStore",
    "InvalidViewKeyError",
    "InvalidWindowError",
    "MonthlyRule",
    "Occurrence",
    "RangeFilter",
    "RecordParseError",
    "StoredEvent",
    "UpcomingFilter",
    "ViewCacheCoordinator",
    "ViewCacheEntry",
    "WeeklyRule",
    "YearlyRule",
    "__version__",
    "expand",
    "expand_many",
    "load_config",
]
