"""familycal_lite.config_loader

Configuration for the view cache.

- Values come from a YAML file (JSON is valid YAML), then environment
  variables prefixed FAMILYCAL_ override them.
- Exposes a typed dataclass `CacheConfig` and a `load_config()` helper that
  accepts an optional path override.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from datetime import timedelta, tzinfo
from pathlib import Path
from typing import Any, Optional

from dateutil.relativedelta import relativedelta

from .timezone_utils import resolve_timezone

logger = logging.getLogger(__name__)

ENV_PREFIX = "FAMILYCAL_"

# config field -> environment variable
ENV_OVERRIDES: dict[str, str] = {
    "timezone": "FAMILYCAL_TIMEZONE",
    "horizon_months": "FAMILYCAL_HORIZON_MONTHS",
    "horizon_days": "FAMILYCAL_HORIZON_DAYS",
    "max_occurrences": "FAMILYCAL_MAX_OCCURRENCES",
    "stale_after_seconds": "FAMILYCAL_STALE_AFTER_SECONDS",
    "auto_refresh_seconds": "FAMILYCAL_AUTO_REFRESH_SECONDS",
    "upcoming_grace_seconds": "FAMILYCAL_UPCOMING_GRACE_SECONDS",
    "log_level": "FAMILYCAL_LOG_LEVEL",
}


@dataclass
class CacheConfig:
    """Typed configuration for the view cache.

    Fields:
        timezone: IANA zone for day/month boundaries (None = host zone)
        horizon_months: forward horizon of the "upcoming" view (1..24)
        horizon_days: when set, replaces horizon_months with a day count
        max_occurrences: per-event expansion ceiling (1..5000)
        stale_after_seconds: age after which ensure_fetched refetches (None = never)
        auto_refresh_seconds: background refresh period (None = disabled, min 60)
        upcoming_grace_seconds: how far back "upcoming" fetches one-off events
        log_level: logging level name
    """

    timezone: Optional[str] = None
    horizon_months: int = 6
    horizon_days: Optional[int] = None
    max_occurrences: int = 500
    stale_after_seconds: Optional[int] = None
    auto_refresh_seconds: Optional[int] = None
    upcoming_grace_seconds: int = 60
    log_level: str = "INFO"

    @property
    def horizon(self) -> relativedelta:
        if self.horizon_days is not None:
            return relativedelta(days=self.horizon_days)
        return relativedelta(months=self.horizon_months)

    @property
    def upcoming_grace(self) -> timedelta:
        return timedelta(seconds=self.upcoming_grace_seconds)

    def tzinfo(self) -> tzinfo:
        return resolve_timezone(self.timezone)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> CacheConfig:
        """Create CacheConfig from a plain mapping, applying defaults and validation.

        Numeric-like values are coerced to int and clamped to their allowed
        ranges, logging a warning whenever a value is replaced.
        """
        if data is None:
            data = {}

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))

        def _coerce_int(key: str, default: Any) -> Any:
            raw = data.get(key, default)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not an int; using default %r", key, raw, default)
                return default

        def _clamp(key: str, value: int, low: int, high: Optional[int] = None) -> int:
            if value < low:
                logger.warning("%s %d below minimum; coercing to %d", key, value, low)
                return low
            if high is not None and value > high:
                logger.warning("%s %d above maximum; coercing to %d", key, value, high)
                return high
            return value

        horizon_months = _clamp("horizon_months", _coerce_int("horizon_months", 6), 1, 24)

        horizon_days = _coerce_int("horizon_days", None)
        if horizon_days is not None:
            horizon_days = _clamp("horizon_days", horizon_days, 1, 731)

        max_occurrences = _clamp(
            "max_occurrences", _coerce_int("max_occurrences", 500), 1, 5000
        )

        stale_after = _coerce_int("stale_after_seconds", None)
        if stale_after is not None and stale_after <= 0:
            stale_after = None

        auto_refresh = _coerce_int("auto_refresh_seconds", None)
        if auto_refresh is not None:
            auto_refresh = None if auto_refresh <= 0 else _clamp("auto_refresh_seconds", auto_refresh, 60)

        grace = _clamp("upcoming_grace_seconds", _coerce_int("upcoming_grace_seconds", 60), 0, 3600)

        tz_name = data.get("timezone")
        tz_name = str(tz_name) if tz_name else None

        log_level = data.get("log_level", "INFO")
        log_level = str(log_level).upper() if log_level is not None else "INFO"

        return cls(
            timezone=tz_name,
            horizon_months=horizon_months,
            horizon_days=horizon_days,
            max_occurrences=max_occurrences,
            stale_after_seconds=stale_after,
            auto_refresh_seconds=auto_refresh,
            upcoming_grace_seconds=grace,
            log_level=log_level,
        )


def env_overrides(environ: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Collect config values set through FAMILYCAL_* environment variables."""
    env = os.environ if environ is None else environ
    overrides = {}
    for key, var in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is not None and value.strip() != "":
            overrides[key] = value.strip()
    if overrides:
        logger.debug("Config overrides from environment: %s", ", ".join(sorted(overrides)))
    return overrides


def _load_yaml(path: Path) -> Any:
    """Load a YAML (or JSON) document; empty files load as an empty mapping."""
    import yaml  # noqa: PLC0415

    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    return {} if loaded is None else loaded


def load_config(path: Optional[str] = None, environ: Optional[dict[str, str]] = None) -> CacheConfig:
    """Load configuration from a YAML file plus environment overrides.

    Args:
        path: Optional path to the config file. Defaults to ./familycal.yaml.
        environ: Environment mapping (defaults to os.environ)

    Returns:
        CacheConfig with values from file, environment and defaults.

    Behavior:
    - If the file is missing: defaults plus environment overrides.
    - If the file exists but top-level is not a mapping: raises ValueError.
    """
    p = Path(path) if path else Path.cwd() / "familycal.yaml"
    logger.debug("Attempting to load config from %s", p)

    raw: dict[str, Any] = {}
    if p.exists():
        loaded = _load_yaml(p)
        if not isinstance(loaded, dict):
            logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, loaded)
            raise ValueError("Config file must contain a mapping at top level")  # noqa: TRY004
        raw.update(loaded)
        logger.info("Loaded configuration from %s", p)
    else:
        logger.info("Config file %s not found; using defaults", p)

    raw.update(env_overrides(environ))
    cfg = CacheConfig.from_dict(raw)
    logger.debug("Configuration values: %s", cfg)
    return cfg
