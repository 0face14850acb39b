"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    database_busy_timeout_seconds: float
    compatibility_method: str
    suggestion_cache_ttl_seconds: float
    weight_adjustment_interval: int
    pair_min_free_slots: int
    submission_max_attempts: int
    submission_retry_base_delay_seconds: float
    reconciliation_enabled: bool
    reconciliation_interval_seconds: float
    reconciliation_batch_limit: int
    reconciliation_stale_minutes: int
    seed_demo_data: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process; call ``cache_clear`` to reload."""
    return Settings(
        app_name=_env_str("APP_NAME", "Hostel Allocation Engine"),
        app_version=_env_str("APP_VERSION", "1.0.0"),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        database_path=Path(_env_str("DATABASE_PATH", "data/allocation.db")),
        database_busy_timeout_seconds=_env_float("DATABASE_BUSY_TIMEOUT_SECONDS", 5.0),
        compatibility_method=_env_str("COMPATIBILITY_METHOD", "cosine").lower(),
        suggestion_cache_ttl_seconds=_env_float("SUGGESTION_CACHE_TTL_SECONDS", 300.0),
        weight_adjustment_interval=_env_int("WEIGHT_ADJUSTMENT_INTERVAL", 25),
        pair_min_free_slots=_env_int("PAIR_MIN_FREE_SLOTS", 2),
        submission_max_attempts=_env_int("SUBMISSION_MAX_ATTEMPTS", 3),
        submission_retry_base_delay_seconds=_env_float(
            "SUBMISSION_RETRY_BASE_DELAY_SECONDS", 0.05
        ),
        reconciliation_enabled=_env_bool("RECONCILIATION_ENABLED", True),
        reconciliation_interval_seconds=_env_float("RECONCILIATION_INTERVAL_SECONDS", 60.0),
        reconciliation_batch_limit=_env_int("RECONCILIATION_BATCH_LIMIT", 25),
        reconciliation_stale_minutes=_env_int("RECONCILIATION_STALE_MINUTES", 10),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
    )
