"""In-memory adaptive trait weights nudged by accumulated admin approvals."""

from __future__ import annotations

from threading import RLock
from typing import Mapping, Optional

from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)

DEFAULT_WEIGHTS: dict[str, float] = {
    "sleep_schedule": 1.0,
    "study_habits": 1.0,
    "cleanliness_level": 1.2,
    "social_preference": 1.0,
    "noise_preference": 1.0,
    "hobbies": 0.6,
    "music_preference": 0.4,
    "visitor_frequency": 0.8,
}

VECTOR_WEIGHT_ORDER = (
    "sleep_schedule",
    "study_habits",
    "cleanliness_level",
    "social_preference",
    "noise_preference",
    "visitor_frequency",
)

CLEANLINESS_STEP = 0.02
CLEANLINESS_CAP = 1.6
SLEEP_STEP = 0.01
SLEEP_CAP = 1.3


class AdaptiveWeightStore:
    """Owns the process-local weight map.

    Not transactional and not persisted: a restart falls back to
    ``DEFAULT_WEIGHTS``. The lock only keeps copies internally consistent.
    """

    def __init__(
        self,
        initial: Optional[Mapping[str, float]] = None,
        adjustment_interval: int = 25,
    ) -> None:
        if adjustment_interval <= 0:
            raise ValueError("adjustment_interval must be > 0")
        self._lock = RLock()
        self._weights = dict(DEFAULT_WEIGHTS)
        self._adjustment_interval = adjustment_interval
        self._last_applied_count = 0
        if initial:
            self.set_weights(initial)

    def get_weights(self) -> dict[str, float]:
        with self._lock:
            return dict(self._weights)

    def set_weights(self, updates: Mapping[str, float]) -> dict[str, float]:
        """Merge ``updates`` into the current map and return the result."""
        for name, value in updates.items():
            if name not in DEFAULT_WEIGHTS:
                raise ValueError(f"Unknown trait weight: {name}")
            if float(value) <= 0.0:
                raise ValueError(f"Weight for {name} must be > 0")
        with self._lock:
            self._weights.update({name: float(value) for name, value in updates.items()})
            return dict(self._weights)

    def vector_weights(self) -> list[float]:
        with self._lock:
            return [self._weights[name] for name in VECTOR_WEIGHT_ORDER]

    def apply_approval_count(self, approval_count: int) -> bool:
        """Nudge cleanliness and sleep weights on every interval-th approval.

        Calling twice with the same count applies the adjustment once.
        """
        if approval_count <= 0 or approval_count % self._adjustment_interval != 0:
            return False
        with self._lock:
            if approval_count <= self._last_applied_count:
                return False
            self._weights["cleanliness_level"] = min(
                CLEANLINESS_CAP,
                round(self._weights["cleanliness_level"] + CLEANLINESS_STEP, 4),
            )
            self._weights["sleep_schedule"] = min(
                SLEEP_CAP,
                round(self._weights["sleep_schedule"] + SLEEP_STEP, 4),
            )
            self._last_applied_count = approval_count
            snapshot = dict(self._weights)
        logger.info(
            "Adaptive weights adjusted | approvals=%s | cleanliness=%.2f | sleep=%.2f",
            approval_count,
            snapshot["cleanliness_level"],
            snapshot["sleep_schedule"],
        )
        return True
