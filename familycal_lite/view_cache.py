"""View-scoped occurrence cache for familycal_lite.

A ViewCacheCoordinator owns one ViewCacheEntry per view key. Screens call
`ensure_fetched` when they appear, `refresh` on an explicit reload, and read
`get_occurrences` / `is_loading` / `get_entry` on every render. Reads never
suspend; only the store query inside a fetch does.

Concurrent requests for the same key are coalesced through the per-key
in-flight task map. The check-and-set on that map happens synchronously in
the event loop, so it needs no lock. The coordinator is not thread-safe.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .config_loader import CacheConfig
from .event_store import EventQuery
from .models import Occurrence
from .recurrence import expand_many
from .timezone_utils import now_utc
from .view_keys import TODAY, UPCOMING, cache_keys_for_event, parse_view_key, validate_view_key

logger = logging.getLogger(__name__)


class EntryState(str, Enum):
    """Fetch state of a view key."""

    ABSENT = "absent"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class ViewCacheEntry:
    """Snapshot of one view key. Replaced wholesale, never mutated.

    `occurrences` holds the result of the last successful fetch; it survives
    a later loading or error state so screens do not fall back to empty on a
    transient failure.
    """

    key: str
    state: EntryState
    occurrences: tuple[Occurrence, ...] = ()
    last_fetched_at: Optional[datetime] = None
    fetch_started_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def has_data(self) -> bool:
        """True once any fetch for this key has succeeded."""
        return self.last_fetched_at is not None


@dataclass(frozen=True)
class CacheStats:
    total_entries: int
    total_occurrences: int
    loading_keys: tuple[str, ...]


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class EventChange:
    """Store-side change notification for one event.

    `old_start` is the start before an update or delete, `new_start` the start
    after an insert or update. A change to a recurring event can move
    occurrences into any view, so it affects every cached key.
    """

    kind: ChangeKind
    event_id: str
    new_start: Optional[datetime] = None
    old_start: Optional[datetime] = None
    is_recurring: bool = False


class ViewCacheCoordinator:
    """Fetches, expands and caches occurrences per view key for one family."""

    def __init__(
        self,
        query: EventQuery,
        family_id: str,
        config: Optional[CacheConfig] = None,
        time_provider: Callable[[], datetime] = now_utc,
    ):
        """Initialize the coordinator.

        Args:
            query: Store the raw events are read from
            family_id: Family whose events are displayed
            config: Cache configuration (defaults when None)
            time_provider: Function returning the current aware time
        """
        self._query = query
        self.family_id = family_id
        self.config = config if config is not None else CacheConfig()
        self._time_provider = time_provider
        self._tz = self.config.tzinfo()
        self._entries: dict[str, ViewCacheEntry] = {}
        self._in_flight: dict[str, asyncio.Task[ViewCacheEntry]] = {}

    # Reads -----------------------------------------------------------------

    def get_entry(self, view_key: str) -> Optional[ViewCacheEntry]:
        """Return the raw entry, or None when the key was never requested."""
        return self._entries.get(view_key)

    def get_state(self, view_key: str) -> EntryState:
        entry = self._entries.get(view_key)
        return entry.state if entry is not None else EntryState.ABSENT

    def get_occurrences(self, view_key: str) -> tuple[Occurrence, ...]:
        """Return the last successfully fetched occurrences (empty when none)."""
        entry = self._entries.get(view_key)
        return entry.occurrences if entry is not None else ()

    def is_loading(self, view_key: str) -> bool:
        return self.get_state(view_key) is EntryState.LOADING

    def get_cache_stats(self) -> CacheStats:
        return CacheStats(
            total_entries=len(self._entries),
            total_occurrences=sum(len(e.occurrences) for e in self._entries.values()),
            loading_keys=tuple(sorted(self._in_flight)),
        )

    # Fetching --------------------------------------------------------------

    def ensure_fetched(self, view_key: str, force_refresh: bool = False) -> None:
        """Start a background fetch for view_key when one is needed.

        A fetch starts when the key has no entry, has never been fetched
        successfully, is stale, or force_refresh is set. When a fetch for the
        key is already in flight this is a no-op; no follow-up is queued.
        Must be called with a running event loop.

        Raises:
            InvalidViewKeyError: If view_key is not a recognised key
        """
        validate_view_key(view_key)
        if view_key in self._in_flight:
            logger.debug("Fetch for view %s already in flight; skipping", view_key)
            return

        entry = self._entries.get(view_key)
        if entry is None or not entry.has_data or force_refresh:
            self._start_fetch(view_key)
        elif self._is_stale(entry, self._time_provider()):
            logger.debug("View %s is stale; refetching", view_key)
            self._start_fetch(view_key)

    async def refresh(self, view_key: str) -> ViewCacheEntry:
        """Fetch view_key and wait for the result.

        Joins the in-flight fetch for the key when there is one instead of
        starting a duplicate. Fetch failures are reported through the
        returned entry's state and error, never raised.

        Raises:
            InvalidViewKeyError: If view_key is not a recognised key
        """
        validate_view_key(view_key)
        task = self._in_flight.get(view_key)
        if task is None:
            task = self._start_fetch(view_key)
        else:
            logger.debug("Joining in-flight fetch for view %s", view_key)
        return await asyncio.shield(task)

    def _start_fetch(self, view_key: str) -> asyncio.Task[ViewCacheEntry]:
        loop = asyncio.get_running_loop()
        started_at = self._time_provider()
        previous = self._entries.get(view_key)
        if previous is None:
            loading = ViewCacheEntry(view_key, EntryState.LOADING, fetch_started_at=started_at)
        else:
            loading = replace(previous, state=EntryState.LOADING, fetch_started_at=started_at)
        self._entries[view_key] = loading

        task = loop.create_task(
            self._fetch(view_key, started_at), name=f"familycal-fetch:{view_key}"
        )
        self._in_flight[view_key] = task
        logger.debug("Started fetch for view %s", view_key)
        return task

    async def _fetch(self, view_key: str, started_at: datetime) -> ViewCacheEntry:
        try:
            window = parse_view_key(
                view_key,
                started_at,
                self._tz,
                horizon=self.config.horizon,
                upcoming_grace=self.config.upcoming_grace,
            )
            events = await self._query.query_events(self.family_id, window.query_filter)
            occurrences = expand_many(
                events, window.start, window.end, self.config.max_occurrences, tz=self._tz
            )
        except asyncio.CancelledError:
            self._mark_error(view_key, "fetch cancelled")
            raise
        except Exception as e:
            logger.exception("Fetch for view %s failed", view_key)
            return self._mark_error(view_key, str(e) or type(e).__name__)
        else:
            entry = ViewCacheEntry(
                key=view_key,
                state=EntryState.READY,
                occurrences=tuple(occurrences),
                last_fetched_at=self._time_provider(),
                fetch_started_at=started_at,
            )
            self._entries[view_key] = entry
            logger.debug(
                "View %s ready: %d stored events, %d occurrences",
                view_key,
                len(events),
                len(entry.occurrences),
            )
            return entry
        finally:
            if self._in_flight.get(view_key) is asyncio.current_task():
                del self._in_flight[view_key]

    def _mark_error(self, view_key: str, message: str) -> ViewCacheEntry:
        previous = self._entries.get(view_key)
        if previous is None:
            entry = ViewCacheEntry(view_key, EntryState.ERROR, error=message)
        else:
            entry = replace(previous, state=EntryState.ERROR, error=message)
        self._entries[view_key] = entry
        return entry

    def _is_stale(
        self, entry: ViewCacheEntry, now: datetime, max_age: Optional[float] = None
    ) -> bool:
        limit = max_age if max_age is not None else self.config.stale_after_seconds
        if limit is None:
            return False
        if entry.last_fetched_at is None:
            return True
        return now - entry.last_fetched_at >= timedelta(seconds=limit)

    # Invalidation ----------------------------------------------------------

    def invalidate(
        self,
        keys: Optional[Iterable[str]] = None,
        deleted_event_id: Optional[str] = None,
    ) -> list[str]:
        """Drop cached entries.

        With neither argument every entry is dropped. Otherwise the listed
        keys are dropped, and when deleted_event_id is given its occurrences
        are removed from every remaining entry. In-flight fetches are not
        cancelled: a dropped key that is still being fetched is left as an
        empty LOADING entry until that fetch lands.

        Returns:
            Keys whose entries were dropped
        """
        if keys is None and deleted_event_id is None:
            dropped = list(self._entries)
            for key in dropped:
                self._drop_entry(key)
            logger.debug("Invalidated all %d views", len(dropped))
            return dropped

        dropped = [key for key in (keys or ()) if self._drop_entry(key)]

        if deleted_event_id is not None:
            for key, entry in list(self._entries.items()):
                kept = tuple(o for o in entry.occurrences if o.original_id != deleted_event_id)
                if len(kept) != len(entry.occurrences):
                    self._entries[key] = replace(entry, occurrences=kept)
                    logger.debug(
                        "Removed %d occurrences of %s from view %s",
                        len(entry.occurrences) - len(kept),
                        deleted_event_id,
                        key,
                    )

        if dropped:
            logger.debug("Invalidated views: %s", ", ".join(dropped))
        return dropped

    def _drop_entry(self, view_key: str) -> bool:
        previous = self._entries.pop(view_key, None)
        if previous is None:
            return False
        if view_key in self._in_flight:
            self._entries[view_key] = ViewCacheEntry(
                view_key, EntryState.LOADING, fetch_started_at=previous.fetch_started_at
            )
        return True

    def _keys_affected_by(self, change: EventChange) -> list[str]:
        if change.is_recurring:
            affected = list(self._entries)
        else:
            affected = []
            for start in (change.old_start, change.new_start):
                if start is not None:
                    affected.extend(cache_keys_for_event(start, self._tz))
        affected.extend((TODAY, UPCOMING))
        # dict.fromkeys keeps first-seen order
        return list(dict.fromkeys(affected))

    async def handle_change(self, change: EventChange) -> list[str]:
        """Apply a store change notification to the cache.

        Occurrences of a deleted event disappear from every entry at once.
        Each affected key that is cached (or being fetched) is then refetched;
        a fetch already in flight started before the change, so it is awaited
        and followed by a fresh one.

        Returns:
            Keys that were refetched
        """
        logger.debug("Handling %s of event %s", change.kind.value, change.event_id)
        if change.kind is ChangeKind.DELETE:
            self.invalidate(keys=(), deleted_event_id=change.event_id)

        targets = [
            key
            for key in self._keys_affected_by(change)
            if key in self._entries or key in self._in_flight
        ]
        if targets:
            await asyncio.gather(*(self._refetch_after_in_flight(key) for key in targets))
        return targets

    async def _refetch_after_in_flight(self, view_key: str) -> ViewCacheEntry:
        current = self._in_flight.get(view_key)
        if current is not None:
            await asyncio.shield(current)
        return await self.refresh(view_key)

    # Background refresh ----------------------------------------------------

    def refresh_stale(self, max_age: Optional[float] = None) -> list[str]:
        """Start fetches for every cached entry older than max_age seconds.

        max_age defaults to the configured stale_after_seconds; with neither
        set nothing is considered stale. Keys already being fetched are skipped.

        Returns:
            Keys for which a fetch was started
        """
        now = self._time_provider()
        started = []
        for key, entry in list(self._entries.items()):
            if key in self._in_flight:
                continue
            if self._is_stale(entry, now, max_age):
                self._start_fetch(key)
                started.append(key)
        return started

    async def run_refresh_loop(self, stop_event: asyncio.Event) -> None:
        """Background refresher: refetch stale views every auto_refresh_seconds.

        Returns immediately when auto refresh is not configured, otherwise
        when stop_event is set.
        """
        interval = self.config.auto_refresh_seconds
        if not interval:
            logger.debug("Auto refresh disabled; refresh loop not started")
            return

        max_age = self.config.stale_after_seconds or interval
        logger.debug("View refresh loop starting with interval %s seconds", interval)
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                started = self.refresh_stale(max_age=max_age)
                if started:
                    logger.info("Refreshing %d stale views: %s", len(started), ", ".join(started))
            except Exception:
                logger.exception("View refresh loop unexpected error")
        logger.debug("View refresh loop stopped")

    async def aclose(self) -> None:
        """Wait for every in-flight fetch to finish."""
        tasks = list(self._in_flight.values())
        if tasks:
            logger.debug("Waiting for %d in-flight fetches", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)
