from __future__ import annotations

import random
from dataclasses import replace
from pathlib import Path

import pytest

from allocation_engine.domain.errors import (
    CapacityExceededError,
    CompatibilityRequirementError,
    GenderMismatchError,
    NotFoundError,
    ValidationError,
)
from allocation_engine.repository.data_repository import DataRepository
from allocation_engine.services.reallocation_service import ReallocationService
from allocation_engine.services.room_selection_service import FairnessRoomSelector
from allocation_engine.services.submission_service import AllocationSubmissionService
from allocation_engine.utils.config import get_settings


SESSION = "2026"

QUIET_PROFILE = {
    "sleep_schedule": "early",
    "study_habits": "quiet",
    "cleanliness_level": 4,
    "social_preference": "balanced",
    "noise_preference": "quiet",
    "hobbies": ["reading", "chess"],
    "music_preference": "jazz",
    "visitor_frequency": "rarely",
}

OPPOSITE_PROFILE = {
    "sleep_schedule": "late",
    "study_habits": "group",
    "cleanliness_level": 1,
    "social_preference": "extrovert",
    "noise_preference": "noisy",
    "hobbies": ["gaming"],
    "music_preference": "metal",
    "visitor_frequency": "often",
}


def _build_fixture(tmp_path: Path, filename: str):
    settings = replace(
        get_settings(),
        database_path=tmp_path / filename,
        reconciliation_enabled=False,
        seed_demo_data=False,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    male_unit = repository.create_housing_unit("North", "male", 10)
    female_unit = repository.create_housing_unit("South", "female", 10)
    rooms = {
        "a": repository.create_room(male_unit, "N1", 2),
        "b": repository.create_room(male_unit, "N2", 2),
        "full": repository.create_room(male_unit, "N3", 1, occupied=1),
        "female": repository.create_room(female_unit, "S1", 2),
    }
    service = ReallocationService(repository=repository, settings=settings)
    return service, repository, rooms, settings


def test_pending_request_moves_into_room(tmp_path: Path) -> None:
    service, repository, rooms, _ = _build_fixture(tmp_path, "move_pending.db")
    resident = repository.create_resident("Xavier", "male", QUIET_PROFILE)
    request_id = repository.create_pending_request(resident, SESSION)

    result = service.reallocate(request_id, rooms["a"])

    assert result.to_dict() == {"status": "reallocated", "request_id": request_id, "room_id": rooms["a"]}
    request = repository.get_request(request_id)
    assert request.status == "approved"
    assert request.room_id == rooms["a"]
    assert repository.get_room(rooms["a"]).occupied == 1


def test_move_between_rooms_updates_both_occupancies(tmp_path: Path) -> None:
    service, repository, rooms, _ = _build_fixture(tmp_path, "move_between.db")
    resident = repository.create_resident("Xavier", "male", QUIET_PROFILE)
    request_id = repository.create_pending_request(resident, SESSION)
    service.reallocate(request_id, rooms["a"])

    service.reallocate(request_id, rooms["b"])

    assert repository.get_room(rooms["a"]).occupied == 0
    assert repository.get_room(rooms["b"]).occupied == 1

    with pytest.raises(ValidationError):
        service.reallocate(request_id, rooms["b"])


def test_low_compatibility_with_occupant_is_rejected(tmp_path: Path) -> None:
    service, repository, rooms, _ = _build_fixture(tmp_path, "low_compat.db")
    occupant = repository.create_resident("Xavier", "male", QUIET_PROFILE)
    occupant_request = repository.create_pending_request(occupant, SESSION)
    service.reallocate(occupant_request, rooms["a"])

    mover = repository.create_resident("Omar", "male", OPPOSITE_PROFILE)
    mover_request = repository.create_pending_request(mover, SESSION)

    with pytest.raises(CompatibilityRequirementError):
        service.reallocate(mover_request, rooms["a"])

    assert repository.get_room(rooms["a"]).occupied == 1
    assert repository.get_request(mover_request).is_unassigned_pending


def test_full_room_and_gender_mismatch(tmp_path: Path) -> None:
    service, repository, rooms, _ = _build_fixture(tmp_path, "guards.db")
    resident = repository.create_resident("Xavier", "male", QUIET_PROFILE)
    request_id = repository.create_pending_request(resident, SESSION)

    with pytest.raises(CapacityExceededError):
        service.reallocate(request_id, rooms["full"])
    with pytest.raises(GenderMismatchError):
        service.reallocate(request_id, rooms["female"])

    assert repository.get_room(rooms["full"]).occupied == 1
    assert repository.get_room(rooms["female"]).occupied == 0


def test_missing_request_or_room(tmp_path: Path) -> None:
    service, repository, rooms, _ = _build_fixture(tmp_path, "missing.db")
    resident = repository.create_resident("Xavier", "male", QUIET_PROFILE)
    request_id = repository.create_pending_request(resident, SESSION)

    with pytest.raises(NotFoundError):
        service.reallocate(999, rooms["a"])
    with pytest.raises(NotFoundError):
        service.reallocate(request_id, 999)


def test_rejected_request_cannot_be_moved(tmp_path: Path) -> None:
    service, repository, rooms, _ = _build_fixture(tmp_path, "rejected.db")
    resident = repository.create_resident("Xavier", "male", QUIET_PROFILE)
    request_id = repository.create_pending_request(resident, SESSION)
    with repository.transaction() as conn:
        conn.execute("UPDATE AllocationRequests SET status = 'rejected' WHERE id = ?;", (request_id,))

    with pytest.raises(ValidationError):
        service.reallocate(request_id, rooms["a"])
    assert repository.get_room(rooms["a"]).occupied == 0


def test_auto_paired_request_becomes_manual_after_move(tmp_path: Path) -> None:
    service, repository, rooms, settings = _build_fixture(tmp_path, "auto_to_manual.db")
    submissions = AllocationSubmissionService(
        repository=repository,
        selector=FairnessRoomSelector(repository, rng=random.Random(7)),
        settings=settings,
        sleep=lambda _: None,
    )
    first = repository.create_resident("Xavier", "male", QUIET_PROFILE)
    second = repository.create_resident("Yusuf", "male", QUIET_PROFILE)
    submissions.submit_allocation(first, SESSION)
    paired = submissions.submit_allocation(second, SESSION)
    source_room = paired.room_id
    target_room = rooms["b"] if source_room == rooms["a"] else rooms["a"]

    service.reallocate(paired.request_id, target_room)

    moved = repository.get_request(paired.request_id)
    assert moved.auto_paired is False
    assert moved.room_id == target_room
    assert repository.get_room(source_room).occupied == 1
    assert repository.get_room(target_room).occupied == 1
