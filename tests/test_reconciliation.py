from __future__ import annotations

import random
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from allocation_engine.repository.data_repository import DataRepository, utc_now_iso
from allocation_engine.services.reconciliation_worker import ReconciliationWorker
from allocation_engine.services.room_selection_service import FairnessRoomSelector
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


def _build_worker(tmp_path: Path, filename: str, with_room: bool = True):
    settings = replace(
        get_settings(),
        database_path=tmp_path / filename,
        reconciliation_enabled=False,
        seed_demo_data=False,
        reconciliation_interval_seconds=3600.0,
        reconciliation_stale_minutes=10,
        reconciliation_batch_limit=25,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    room_id = None
    if with_room:
        unit_id = repository.create_housing_unit("North", "male", 10)
        room_id = repository.create_room(unit_id, "N1", 2)
    worker = ReconciliationWorker(
        repository=repository,
        selector=FairnessRoomSelector(repository, rng=random.Random(7)),
        settings=settings,
    )
    return worker, repository, room_id


def _stale_request(
    repository: DataRepository,
    name: str,
    profile: dict,
    gender: str = "male",
    session: str = SESSION,
    resident_id: Optional[int] = None,
) -> int:
    if resident_id is None:
        resident_id = repository.create_resident(name, gender, profile)
    created_at = utc_now_iso(datetime.now(timezone.utc) - timedelta(minutes=30))
    return repository.create_pending_request(resident_id, session, created_at=created_at)


def test_stale_compatible_requests_are_paired(tmp_path: Path) -> None:
    worker, repository, room_id = _build_worker(tmp_path, "stale_pair.db")
    first = _stale_request(repository, "Xavier", QUIET_PROFILE)
    second = _stale_request(repository, "Yusuf", QUIET_PROFILE)

    report = worker.run_cycle()

    assert report.processed == 2
    assert report.paired == 2
    for request_id in (first, second):
        request = repository.get_request(request_id)
        assert request.status == "approved"
        assert request.room_id == room_id
        assert request.auto_paired is True
    assert repository.get_room(room_id).occupied == 2

    assert worker.run_cycle().processed == 0


def test_fresh_requests_are_left_alone(tmp_path: Path) -> None:
    worker, repository, _ = _build_worker(tmp_path, "fresh.db")
    for name in ("Xavier", "Yusuf"):
        resident = repository.create_resident(name, "male", QUIET_PROFILE)
        repository.create_pending_request(resident, SESSION)

    report = worker.run_cycle()

    assert report.processed == 0
    assert report.paired == 0


def test_incompatible_and_cross_gender_requests_stay_pending(tmp_path: Path) -> None:
    worker, repository, room_id = _build_worker(tmp_path, "incompatible.db")
    _stale_request(repository, "Xavier", QUIET_PROFILE)
    _stale_request(repository, "Omar", OPPOSITE_PROFILE)
    _stale_request(repository, "Yara", QUIET_PROFILE, gender="female")

    report = worker.run_cycle()

    assert report.processed == 3
    assert report.paired == 0
    assert all(item.is_unassigned_pending for item in repository.list_requests())
    assert repository.get_room(room_id).occupied == 0


def test_requests_from_different_sessions_are_not_paired(tmp_path: Path) -> None:
    worker, repository, room_id = _build_worker(tmp_path, "cross_session.db")
    _stale_request(repository, "Xavier", QUIET_PROFILE, session="2025")
    _stale_request(repository, "Yusuf", QUIET_PROFILE, session="2026")

    report = worker.run_cycle()

    assert report.processed == 2
    assert report.paired == 0
    assert all(item.is_unassigned_pending for item in repository.list_requests())
    assert repository.get_room(room_id).occupied == 0


def test_resident_is_never_paired_with_own_request(tmp_path: Path) -> None:
    worker, repository, room_id = _build_worker(tmp_path, "self_pair.db")
    resident = repository.create_resident("Xavier", "male", QUIET_PROFILE)
    _stale_request(repository, "Xavier", QUIET_PROFILE, session="2025", resident_id=resident)
    _stale_request(repository, "Xavier", QUIET_PROFILE, session="2026", resident_id=resident)

    report = worker.run_cycle()

    assert report.paired == 0
    assert all(item.is_unassigned_pending for item in repository.list_requests())
    assert repository.get_room(room_id).occupied == 0


def test_same_session_peer_is_found_past_other_sessions(tmp_path: Path) -> None:
    worker, repository, room_id = _build_worker(tmp_path, "session_scan.db")
    first = _stale_request(repository, "Xavier", QUIET_PROFILE, session="2026")
    other_session = _stale_request(repository, "Yusuf", QUIET_PROFILE, session="2025")
    peer = _stale_request(repository, "Zane", QUIET_PROFILE, session="2026")

    report = worker.run_cycle()

    assert report.paired == 2
    assert repository.get_request(first).room_id == room_id
    assert repository.get_request(peer).room_id == room_id
    assert repository.get_request(other_session).is_unassigned_pending


def test_failed_pair_moves_on_to_next_candidate(tmp_path: Path, monkeypatch) -> None:
    worker, repository, room_id = _build_worker(tmp_path, "next_candidate.db")
    first = _stale_request(repository, "Xavier", QUIET_PROFILE)
    contested = _stale_request(repository, "Yusuf", QUIET_PROFILE)
    third = _stale_request(repository, "Zane", QUIET_PROFILE)

    original = repository.approve_pending_request

    def approve_unless_contested(conn, *, request_id, **kwargs):
        if request_id == contested:
            return False
        return original(conn, request_id=request_id, **kwargs)

    monkeypatch.setattr(repository, "approve_pending_request", approve_unless_contested)

    report = worker.run_cycle()

    assert report.paired == 2
    assert repository.get_request(first).room_id == room_id
    assert repository.get_request(third).room_id == room_id
    assert repository.get_request(contested).is_unassigned_pending
    assert repository.get_room(room_id).occupied == 2


def test_no_room_keeps_requests_pending(tmp_path: Path) -> None:
    worker, repository, _ = _build_worker(tmp_path, "no_room.db", with_room=False)
    _stale_request(repository, "Xavier", QUIET_PROFILE)
    _stale_request(repository, "Yusuf", QUIET_PROFILE)

    report = worker.run_cycle()

    assert report.processed == 2
    assert report.paired == 0
    assert all(item.is_unassigned_pending for item in repository.list_requests())


def test_worker_start_and_stop_are_idempotent(tmp_path: Path) -> None:
    worker, _, _ = _build_worker(tmp_path, "lifecycle.db")

    worker.start()
    worker.start()
    assert worker.is_running

    worker.stop()
    assert not worker.is_running
    worker.stop()
