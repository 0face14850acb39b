"""Maps raw personality attributes onto a bounded numeric space."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping, Optional

from allocation_engine.domain.models import NormalizedTraits, TraitBundle


NEUTRAL = 0.5

SLEEP_SCHEDULE_MAP = {"early": 0.0, "flexible": 0.5, "late": 1.0}
STUDY_HABITS_MAP = {"quiet": 0.0, "mixed": 0.5, "group": 1.0}
SOCIAL_PREFERENCE_MAP = {"introvert": 0.0, "balanced": 0.5, "extrovert": 1.0}
NOISE_PREFERENCE_MAP = {"quiet": 0.0, "tolerant": 0.5, "noisy": 1.0}
VISITOR_FREQUENCY_MAP = {"rarely": 0.0, "sometimes": 0.5, "often": 1.0}

CLEANLINESS_MIN = 1.0
CLEANLINESS_MAX = 5.0


def _ordinal(value: Optional[str], table: Mapping[str, float]) -> float:
    if not isinstance(value, str):
        return NEUTRAL
    return table.get(value.strip().lower(), NEUTRAL)


def _cleanliness(value: Any) -> float:
    # bool is an int subclass and never a valid rating
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return NEUTRAL
    clamped = min(CLEANLINESS_MAX, max(CLEANLINESS_MIN, float(value)))
    return (clamped - CLEANLINESS_MIN) / (CLEANLINESS_MAX - CLEANLINESS_MIN)


def normalize_traits(traits: TraitBundle) -> NormalizedTraits:
    """Pure, deterministic projection of a trait bundle into [0, 1]."""
    return NormalizedTraits(
        sleep_schedule=_ordinal(traits.sleep_schedule, SLEEP_SCHEDULE_MAP),
        study_habits=_ordinal(traits.study_habits, STUDY_HABITS_MAP),
        cleanliness_level=_cleanliness(traits.cleanliness_level),
        social_preference=_ordinal(traits.social_preference, SOCIAL_PREFERENCE_MAP),
        noise_preference=_ordinal(traits.noise_preference, NOISE_PREFERENCE_MAP),
        visitor_frequency=_ordinal(traits.visitor_frequency, VISITOR_FREQUENCY_MAP),
        hobbies=frozenset(
            hobby.strip().lower() for hobby in traits.hobbies if hobby and hobby.strip()
        ),
        music_preference=(traits.music_preference or "").strip().lower(),
    )


def trait_signature(traits: TraitBundle) -> str:
    """Stable short hash of the normalized traits, used as a cache key."""
    normalized = normalize_traits(traits)
    canonical = {
        "sleep_schedule": normalized.sleep_schedule,
        "study_habits": normalized.study_habits,
        "cleanliness_level": normalized.cleanliness_level,
        "social_preference": normalized.social_preference,
        "noise_preference": normalized.noise_preference,
        "visitor_frequency": normalized.visitor_frequency,
        "hobbies": sorted(normalized.hobbies),
        "music_preference": normalized.music_preference,
    }
    digest = hashlib.sha1(json.dumps(canonical, sort_keys=True).encode("utf-8"))
    return digest.hexdigest()[:16]
