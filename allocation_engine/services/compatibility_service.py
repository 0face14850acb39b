"""Pairwise compatibility scoring between two residents' trait bundles."""

from __future__ import annotations

import math
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity, euclidean_distances

from allocation_engine.domain.constraints import validate_compatibility_method
from allocation_engine.domain.models import (
    COMPATIBILITY_RANGES,
    RANGE_HIGH,
    RANGE_LOW,
    RANGE_MODERATE,
    RANGE_VERY_HIGH,
    CompatibilityResult,
    MatchSuggestion,
    NormalizedTraits,
    Resident,
    TraitBundle,
)
from allocation_engine.services.trait_normalizer import NEUTRAL, normalize_traits
from allocation_engine.services.weight_store import (
    DEFAULT_WEIGHTS,
    VECTOR_WEIGHT_ORDER,
    AdaptiveWeightStore,
)


SIMILARITY_SHARE = 0.75
AFFINITY_SHARE = 0.25
EXTREME_GAP = 0.8
PENALTY_STEP = 0.1


def classify_compatibility_range(score: int) -> str:
    """85-100 veryHigh | 70-84 high | 55-69 moderate | <55 low."""
    if score >= 85:
        return RANGE_VERY_HIGH
    if score >= 70:
        return RANGE_HIGH
    if score >= 55:
        return RANGE_MODERATE
    return RANGE_LOW


def derive_suggestion_status(range_label: str, score: int) -> str:
    if range_label == RANGE_VERY_HIGH:
        return "auto-pair"
    if range_label == RANGE_HIGH:
        return "suggest" if score >= 75 else "awaiting-review"
    if range_label == RANGE_MODERATE:
        return "needs-admin"
    return "reject"


def _scaled(vector: Sequence[float], weights: Sequence[float]) -> np.ndarray:
    # sqrt-scaling turns a weighted dot product into a plain one
    return (np.asarray(vector, dtype=float) * np.sqrt(np.asarray(weights, dtype=float))).reshape(1, -1)


def weighted_cosine_similarity(
    left: Sequence[float],
    right: Sequence[float],
    weights: Sequence[float],
) -> float:
    a = _scaled(left, weights)
    b = _scaled(right, weights)
    if not np.any(a) or not np.any(b):
        return 1.0 if np.array_equal(a, b) else NEUTRAL
    return float(np.clip(cosine_similarity(a, b)[0, 0], 0.0, 1.0))


def weighted_euclidean_similarity(
    left: Sequence[float],
    right: Sequence[float],
    weights: Sequence[float],
) -> float:
    distance = float(euclidean_distances(_scaled(left, weights), _scaled(right, weights))[0, 0])
    return 1.0 - min(1.0, distance)


def interest_affinity(
    left: NormalizedTraits,
    right: NormalizedTraits,
    weights: Mapping[str, float],
) -> float:
    """Blend hobby Jaccard overlap with an exact music-preference match."""
    union = left.hobbies | right.hobbies
    hobby_score = len(left.hobbies & right.hobbies) / len(union) if union else NEUTRAL
    if left.music_preference and right.music_preference:
        music_score = 1.0 if left.music_preference == right.music_preference else 0.0
    else:
        music_score = NEUTRAL
    hobby_weight = weights["hobbies"]
    music_weight = weights["music_preference"]
    return (hobby_score * hobby_weight + music_score * music_weight) / (hobby_weight + music_weight)


def mismatch_penalty(left: NormalizedTraits, right: NormalizedTraits) -> float:
    penalty = 0.0
    for a, b in (
        (left.cleanliness_level, right.cleanliness_level),
        (left.sleep_schedule, right.sleep_schedule),
        (left.noise_preference, right.noise_preference),
    ):
        if abs(a - b) > EXTREME_GAP:
            penalty += PENALTY_STEP
    return penalty


def compute_compatibility(
    first: TraitBundle,
    second: TraitBundle,
    weights: Optional[Mapping[str, float]] = None,
    method: str = "cosine",
) -> CompatibilityResult:
    """Score two trait bundles on a 0-100 scale; pure and argument-order independent."""
    method = validate_compatibility_method(method)
    resolved = dict(DEFAULT_WEIGHTS)
    if weights:
        resolved.update(weights)
    vector_weights = [resolved[name] for name in VECTOR_WEIGHT_ORDER]

    left = normalize_traits(first)
    right = normalize_traits(second)
    # canonical order keeps floating-point evaluation identical for (a, b) and (b, a)
    low_vec, high_vec = sorted((tuple(left.as_vector()), tuple(right.as_vector())))
    if method == "euclidean":
        base = weighted_euclidean_similarity(low_vec, high_vec, vector_weights)
    else:
        base = weighted_cosine_similarity(low_vec, high_vec, vector_weights)

    affinity = interest_affinity(left, right, resolved)
    penalty = mismatch_penalty(left, right)
    raw = base * SIMILARITY_SHARE + affinity * AFFINITY_SHARE
    penalized = max(0.0, raw - penalty)
    score = min(100, int(math.floor(penalized * 100 + 0.5)))
    return CompatibilityResult(
        score=score,
        range=classify_compatibility_range(score),
        base=round(base, 2),
        affinity=round(affinity, 2),
        penalty=round(penalty, 2),
    )


def group_by_range(suggestions: list[MatchSuggestion]) -> dict[str, list[MatchSuggestion]]:
    grouped: dict[str, list[MatchSuggestion]] = {
        label: [item for item in suggestions if item.range == label]
        for label in COMPATIBILITY_RANGES
    }
    grouped["all"] = list(suggestions)
    return grouped


class CompatibilityScorer:
    """Binds the pure scoring function to an injected adaptive weight store."""

    def __init__(
        self,
        weight_store: Optional[AdaptiveWeightStore] = None,
        default_method: str = "cosine",
    ) -> None:
        self._weight_store = weight_store or AdaptiveWeightStore()
        self._default_method = validate_compatibility_method(default_method)

    @property
    def weight_store(self) -> AdaptiveWeightStore:
        return self._weight_store

    def score(
        self,
        first: TraitBundle,
        second: TraitBundle,
        method: Optional[str] = None,
    ) -> CompatibilityResult:
        return compute_compatibility(
            first,
            second,
            weights=self._weight_store.get_weights(),
            method=method or self._default_method,
        )

    def score_residents(
        self,
        first: Resident,
        second: Resident,
        method: Optional[str] = None,
    ) -> CompatibilityResult:
        return self.score(first.traits, second.traits, method=method)

    def rank_candidates(
        self,
        target: Resident,
        candidates: Iterable[Resident],
        method: Optional[str] = None,
    ) -> dict[str, list[MatchSuggestion]]:
        """Score every other candidate and group the results by range, best first."""
        results: list[MatchSuggestion] = []
        for candidate in candidates:
            if candidate.resident_id == target.resident_id:
                continue
            outcome = self.score_residents(target, candidate, method=method)
            results.append(
                MatchSuggestion(
                    resident_id=target.resident_id,
                    match_id=candidate.resident_id,
                    compatibility_score=outcome.score,
                    range=outcome.range,
                    status=derive_suggestion_status(outcome.range, outcome.score),
                    breakdown=outcome.breakdown(),
                )
            )
        results.sort(key=lambda item: (-item.compatibility_score, item.match_id))
        return group_by_range(results)
