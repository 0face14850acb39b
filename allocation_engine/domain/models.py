"""Domain models for compatibility scoring and room allocation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional


STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"

RANGE_VERY_HIGH = "veryHigh"
RANGE_HIGH = "high"
RANGE_MODERATE = "moderate"
RANGE_LOW = "low"

COMPATIBILITY_RANGES = (RANGE_VERY_HIGH, RANGE_HIGH, RANGE_MODERATE, RANGE_LOW)
AUTO_PAIR_RANGES = frozenset({RANGE_VERY_HIGH, RANGE_HIGH})
REALLOCATION_RANGES = frozenset({RANGE_VERY_HIGH, RANGE_HIGH, RANGE_MODERATE})

RANGE_DEFINITIONS = {
    RANGE_VERY_HIGH: "85-100",
    RANGE_HIGH: "70-84",
    RANGE_MODERATE: "55-69",
    RANGE_LOW: "0-54",
}

GENDERS = frozenset({"male", "female"})


def _pick(raw: Mapping[str, Any], snake: str, camel: str) -> Any:
    if snake in raw:
        return raw[snake]
    return raw.get(camel)


@dataclass(frozen=True)
class TraitBundle:
    """Raw personality attributes as captured on the resident profile."""

    sleep_schedule: Optional[str] = None
    study_habits: Optional[str] = None
    cleanliness_level: Optional[float] = None
    social_preference: Optional[str] = None
    noise_preference: Optional[str] = None
    hobbies: tuple[str, ...] = ()
    music_preference: Optional[str] = None
    visitor_frequency: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "TraitBundle":
        """Accept either snake_case or the profile service's camelCase keys."""
        if not raw:
            return cls()
        hobbies = _pick(raw, "hobbies", "hobbies") or ()
        if isinstance(hobbies, str):
            hobbies = (hobbies,)
        return cls(
            sleep_schedule=_pick(raw, "sleep_schedule", "sleepSchedule"),
            study_habits=_pick(raw, "study_habits", "studyHabits"),
            cleanliness_level=_pick(raw, "cleanliness_level", "cleanlinessLevel"),
            social_preference=_pick(raw, "social_preference", "socialPreference"),
            noise_preference=_pick(raw, "noise_preference", "noisePreference"),
            hobbies=tuple(str(item) for item in hobbies),
            music_preference=_pick(raw, "music_preference", "musicPreference"),
            visitor_frequency=_pick(raw, "visitor_frequency", "visitorFrequency"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sleep_schedule": self.sleep_schedule,
            "study_habits": self.study_habits,
            "cleanliness_level": self.cleanliness_level,
            "social_preference": self.social_preference,
            "noise_preference": self.noise_preference,
            "hobbies": list(self.hobbies),
            "music_preference": self.music_preference,
            "visitor_frequency": self.visitor_frequency,
        }


@dataclass(frozen=True)
class NormalizedTraits:
    sleep_schedule: float
    study_habits: float
    cleanliness_level: float
    social_preference: float
    noise_preference: float
    visitor_frequency: float
    hobbies: frozenset[str]
    music_preference: str

    def as_vector(self) -> list[float]:
        return [
            self.sleep_schedule,
            self.study_habits,
            self.cleanliness_level,
            self.social_preference,
            self.noise_preference,
            self.visitor_frequency,
        ]


@dataclass(frozen=True)
class Resident:
    resident_id: int
    full_name: str
    gender: str
    traits: TraitBundle


@dataclass(frozen=True)
class HousingUnit:
    unit_id: int
    name: str
    unit_type: str
    capacity: int


@dataclass(frozen=True)
class Room:
    room_id: int
    unit_id: int
    room_number: str
    capacity: int
    occupied: int
    unit_type: str

    @property
    def free_slots(self) -> int:
        return self.capacity - self.occupied


@dataclass(frozen=True)
class AllocationRequest:
    request_id: int
    resident_id: int
    session_label: str
    status: str
    room_id: Optional[int]
    compatibility_score: Optional[int]
    compatibility_range: Optional[str]
    auto_paired: bool
    allocated_at: Optional[str]
    created_at: str

    @property
    def is_unassigned_pending(self) -> bool:
        return self.status == STATUS_PENDING and self.room_id is None


@dataclass(frozen=True)
class CompatibilityResult:
    score: int
    range: str
    base: float
    affinity: float
    penalty: float

    def breakdown(self) -> dict[str, float]:
        return {"base": self.base, "affinity": self.affinity, "penalty": self.penalty}

    def to_dict(self) -> dict[str, Any]:
        return {"score": self.score, "range": self.range, "breakdown": self.breakdown()}


@dataclass(frozen=True)
class SubmissionResult:
    request_id: int
    status: str
    auto_paired: bool
    room_id: Optional[int]
    compatibility: Optional[CompatibilityResult]

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "status": self.status,
            "auto_paired": self.auto_paired,
            "room_id": self.room_id,
            "compatibility": self.compatibility.to_dict() if self.compatibility else None,
        }


@dataclass(frozen=True)
class ReallocationResult:
    request_id: int
    room_id: int
    status: str = "reallocated"

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "request_id": self.request_id, "room_id": self.room_id}


@dataclass(frozen=True)
class MatchSuggestion:
    resident_id: int
    match_id: int
    compatibility_score: int
    range: str
    status: str
    breakdown: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "resident_id": self.resident_id,
            "match_id": self.match_id,
            "compatibility_score": self.compatibility_score,
            "range": self.range,
            "status": self.status,
            "breakdown": dict(self.breakdown),
        }


@dataclass(frozen=True)
class SuggestionReport:
    resident_id: int
    suggestions: dict[str, list[MatchSuggestion]]
    range_definitions: dict[str, str] = field(default_factory=lambda: dict(RANGE_DEFINITIONS))

    def to_dict(self) -> dict[str, Any]:
        return {
            "suggestions": {
                group: [item.to_dict() for item in items]
                for group, items in self.suggestions.items()
            },
            "range_definitions": dict(self.range_definitions),
        }


@dataclass(frozen=True)
class ApprovedPairing:
    resident_a_id: int
    resident_b_id: int
    approved_by: int
    approved_at: str
    weight_snapshot: dict[str, float]


@dataclass(frozen=True)
class ReconciliationReport:
    processed: int
    paired: int
