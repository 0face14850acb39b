from __future__ import annotations

import random
from dataclasses import replace
from pathlib import Path

from allocation_engine.domain.models import TraitBundle
from allocation_engine.repository.data_repository import DataRepository
from allocation_engine.services.compatibility_service import compute_compatibility
from allocation_engine.services.pairing import commit_auto_pair
from allocation_engine.services.room_selection_service import FairnessRoomSelector
from allocation_engine.utils.config import get_settings


def _build_repository(tmp_path: Path, filename: str) -> DataRepository:
    settings = replace(
        get_settings(),
        database_path=tmp_path / filename,
        reconciliation_enabled=False,
        seed_demo_data=False,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    return repository


def _select(repository: DataRepository, selector: FairnessRoomSelector, gender: str, slots: int = 2):
    with repository.transaction() as conn:
        return selector.select_room(conn, gender, min_free_slots=slots)


def test_selection_rotates_across_units(tmp_path: Path) -> None:
    repository = _build_repository(tmp_path, "rotation.db")
    north = repository.create_housing_unit("North", "male", 10)
    south = repository.create_housing_unit("South", "male", 10)
    repository.create_housing_unit("West", "female", 10)
    north_room = repository.create_room(north, "N1", 4)
    south_room = repository.create_room(south, "S1", 4)
    selector = FairnessRoomSelector(repository, rng=random.Random(7))

    picks = [_select(repository, selector, "male").room_id for _ in range(4)]

    assert picks == [north_room, south_room, north_room, south_room]
    assert repository.get_fairness_cursor() == 1


def test_cursor_survives_new_selector_instances(tmp_path: Path) -> None:
    repository = _build_repository(tmp_path, "cursor.db")
    north = repository.create_housing_unit("North", "male", 10)
    south = repository.create_housing_unit("South", "male", 10)
    repository.create_room(north, "N1", 4)
    south_room = repository.create_room(south, "S1", 4)

    assert repository.get_fairness_cursor() == -1
    _select(repository, FairnessRoomSelector(repository, rng=random.Random(1)), "male")

    fresh = FairnessRoomSelector(repository, rng=random.Random(2))
    assert _select(repository, fresh, "male").room_id == south_room


def test_full_units_are_skipped(tmp_path: Path) -> None:
    repository = _build_repository(tmp_path, "skip_full.db")
    north = repository.create_housing_unit("North", "female", 10)
    south = repository.create_housing_unit("South", "female", 10)
    repository.create_room(north, "N1", 2, occupied=1)
    south_room = repository.create_room(south, "S1", 2)
    selector = FairnessRoomSelector(repository, rng=random.Random(7))

    assert _select(repository, selector, "female").room_id == south_room
    assert _select(repository, selector, "female").room_id == south_room
    assert repository.get_fairness_cursor() == 1


def test_room_with_best_free_ratio_wins(tmp_path: Path) -> None:
    repository = _build_repository(tmp_path, "ratio.db")
    unit = repository.create_housing_unit("North", "male", 10)
    repository.create_room(unit, "N1", 4, occupied=2)
    emptiest = repository.create_room(unit, "N2", 4)
    repository.create_room(unit, "N3", 4, occupied=1)
    selector = FairnessRoomSelector(repository, rng=random.Random(7))

    assert _select(repository, selector, "male").room_id == emptiest


def test_no_eligible_room_returns_none(tmp_path: Path) -> None:
    repository = _build_repository(tmp_path, "none.db")
    selector = FairnessRoomSelector(repository, rng=random.Random(7))

    assert _select(repository, selector, "male") is None

    unit = repository.create_housing_unit("North", "male", 10)
    repository.create_room(unit, "N1", 4, occupied=3)
    assert _select(repository, selector, "male") is None
    assert _select(repository, selector, "male", slots=1) is not None
    assert _select(repository, selector, "female") is None


def test_cursor_is_restored_when_selected_room_fails_recheck(tmp_path: Path, monkeypatch) -> None:
    repository = _build_repository(tmp_path, "recheck.db")
    north = repository.create_housing_unit("North", "male", 10)
    south = repository.create_housing_unit("South", "male", 10)
    north_room = repository.create_room(north, "N1", 2)
    repository.create_room(south, "S1", 2)
    selector = FairnessRoomSelector(repository, rng=random.Random(7))
    compatibility = compute_compatibility(TraitBundle(), TraitBundle())

    # the room fills up between selection and the commit re-read
    full_room = replace(repository.get_room(north_room), occupied=2)
    monkeypatch.setattr(repository, "get_room", lambda room_id, conn=None: full_room)

    with repository.transaction() as conn:
        placed = commit_auto_pair(
            conn,
            repository=repository,
            selector=selector,
            gender="male",
            request_ids=(1, 2),
            compatibility=compatibility,
        )

    assert placed is None
    assert repository.get_fairness_cursor() == -1
    monkeypatch.undo()
    assert _select(repository, selector, "male").room_id == north_room
