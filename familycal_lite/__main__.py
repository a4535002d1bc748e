"""Command-line entry for familycal_lite.

Loads store rows from a YAML/JSON file into an in-memory store, fetches the
requested views through a ViewCacheCoordinator and prints their occurrences.
Exit codes: 0 on success, 1 when any view ended in error, 2 on bad input.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Any, Optional

import yaml

from .config_loader import load_config
from .event_store import InMemoryEventStore
from .exceptions import InvalidViewKeyError
from .lite_logging import configure_logging
from .models import Occurrence
from .timezone_utils import now_utc, parse_timestamp
from .view_cache import EntryState, ViewCacheCoordinator
from .view_keys import TODAY, UPCOMING, validate_view_key

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_VIEW_ERROR = 1
EXIT_USAGE = 2

DEFAULT_FAMILY = "default"


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for familycal_lite CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="familycal_lite",
        description="Family calendar - expand stored events into per-view occurrences",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m familycal_lite --events events.yaml                       # today and upcoming
  python -m familycal_lite --events events.yaml --view day:2025-01-10
  python -m familycal_lite --events events.yaml --view month:2025-02 --now 2025-01-06T00:00:00Z
        """,
    )

    parser.add_argument(
        "--events",
        metavar="FILE",
        help="YAML or JSON file holding a list of stored event rows",
    )
    parser.add_argument(
        "--view",
        action="append",
        dest="views",
        metavar="KEY",
        help="View key to print (repeatable; default: today and upcoming)",
    )
    parser.add_argument(
        "--config",
        metavar="FILE",
        help="Path to a YAML config file (default: ./familycal.yaml)",
    )
    parser.add_argument(
        "--family",
        default=DEFAULT_FAMILY,
        help=f"Family id to query (default: {DEFAULT_FAMILY}; rows without family_id match any)",
    )
    parser.add_argument(
        "--now",
        metavar="ISO",
        help="Pretend the current time is this ISO-8601 timestamp",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    return parser


def _load_rows(path: str) -> list[dict[str, Any]]:
    """Read store rows from a YAML/JSON list, or a mapping with an "events" list."""
    loaded = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if loaded is None:
        return []
    if isinstance(loaded, dict):
        loaded = loaded.get("events", [])
    if not isinstance(loaded, list):
        raise ValueError(f"{path}: expected a list of event rows")
    return [row for row in loaded if isinstance(row, dict)]


def format_occurrence(occurrence: Occurrence, tz: tzinfo) -> str:
    """Render one occurrence as a single display line in tz."""
    start = occurrence.start.astimezone(tz)
    end = occurrence.end.astimezone(tz)
    if occurrence.is_all_day:
        when = f"{start:%Y-%m-%d} all day    "
    else:
        when = f"{start:%Y-%m-%d %H:%M}-{end:%H:%M}"
    marker = "*" if occurrence.is_recurring else " "
    return f"{when} {marker} {occurrence.title or '(untitled)'}  [{occurrence.occurrence_id}]"


async def _print_views(coordinator: ViewCacheCoordinator, views: Sequence[str], tz: tzinfo) -> int:
    entries = await asyncio.gather(*(coordinator.refresh(key) for key in views))
    exit_code = EXIT_OK
    for entry in entries:
        print(f"== {entry.key} ({len(entry.occurrences)} occurrences)")
        if entry.state is EntryState.ERROR:
            print(f"error: view {entry.key} failed: {entry.error}", file=sys.stderr)
            exit_code = EXIT_VIEW_ERROR
        for occurrence in entry.occurrences:
            print(format_occurrence(occurrence, tz))
    await coordinator.aclose()
    return exit_code


def run(args: argparse.Namespace) -> int:
    """Run the CLI for parsed arguments and return the process exit code."""
    configure_logging(debug_mode=args.debug)

    views = args.views or [TODAY, UPCOMING]
    try:
        for key in views:
            validate_view_key(key)
    except InvalidViewKeyError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE

    now: Optional[datetime] = None
    if args.now:
        try:
            now = parse_timestamp(args.now)
        except ValueError as e:
            print(f"error: --now: {e}", file=sys.stderr)
            return EXIT_USAGE

    try:
        config = load_config(args.config)
        rows = _load_rows(args.events) if args.events else []
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE

    store = InMemoryEventStore()
    loaded = store.load_records(rows)
    logger.info("Loaded %d of %d event rows", loaded, len(rows))

    time_provider = (lambda: now) if now is not None else now_utc
    coordinator = ViewCacheCoordinator(store, args.family, config, time_provider=time_provider)
    return asyncio.run(_print_views(coordinator, views, config.tzinfo()))


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the familycal_lite CLI.

    Returns:
        Process exit code (argparse itself exits with 2 on malformed options)
    """
    parser = _create_parser()
    args = parser.parse_args(argv)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
