"""Domain-level validation rules for workflow tuning parameters."""

from __future__ import annotations

from dataclasses import dataclass

from allocation_engine.utils.config import Settings


SUPPORTED_METHODS = frozenset({"cosine", "euclidean"})


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    base_delay_seconds: float

    def delay_for(self, attempt: int) -> float:
        """Backoff before re-running after the given (1-based) failed attempt."""
        return self.base_delay_seconds * (2 ** (attempt - 1))


@dataclass(frozen=True)
class ReconciliationConfig:
    interval_seconds: float
    batch_limit: int
    stale_minutes: int
    min_free_slots: int


def validate_retry_policy(policy: RetryPolicy) -> None:
    if policy.max_attempts <= 0:
        raise ValueError("max_attempts must be > 0")
    if policy.base_delay_seconds < 0.0:
        raise ValueError("base_delay_seconds must be >= 0")


def validate_reconciliation_config(config: ReconciliationConfig) -> None:
    if config.interval_seconds <= 0.0:
        raise ValueError("interval_seconds must be > 0")
    if config.batch_limit <= 0:
        raise ValueError("batch_limit must be > 0")
    if config.stale_minutes < 0:
        raise ValueError("stale_minutes must be >= 0")
    if config.min_free_slots <= 0:
        raise ValueError("min_free_slots must be > 0")


def validate_compatibility_method(method: str) -> str:
    normalized = (method or "").strip().lower()
    if normalized not in SUPPORTED_METHODS:
        raise ValueError(
            f"compatibility method must be one of {sorted(SUPPORTED_METHODS)}, got {method!r}"
        )
    return normalized


def retry_policy_from_settings(settings: Settings) -> RetryPolicy:
    policy = RetryPolicy(
        max_attempts=settings.submission_max_attempts,
        base_delay_seconds=settings.submission_retry_base_delay_seconds,
    )
    validate_retry_policy(policy)
    return policy


def reconciliation_config_from_settings(settings: Settings) -> ReconciliationConfig:
    config = ReconciliationConfig(
        interval_seconds=settings.reconciliation_interval_seconds,
        batch_limit=settings.reconciliation_batch_limit,
        stale_minutes=settings.reconciliation_stale_minutes,
        min_free_slots=settings.pair_min_free_slots,
    )
    validate_reconciliation_config(config)
    return config
