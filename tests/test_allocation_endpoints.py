from __future__ import annotations

from dataclasses import replace

from fastapi.testclient import TestClient

from allocation_engine.domain.errors import StaleRequestError, TransientConflictError
from allocation_engine.main import create_app
from allocation_engine.utils.config import get_settings


SESSION = "2026"

QUIET_PROFILE = {
    "sleepSchedule": "early",
    "studyHabits": "quiet",
    "cleanlinessLevel": 4,
    "socialPreference": "balanced",
    "noisePreference": "quiet",
    "hobbies": ["reading", "chess"],
    "musicPreference": "jazz",
    "visitorFrequency": "rarely",
}


def _build_test_app(tmp_path, filename: str = "endpoints.db"):
    get_settings.cache_clear()
    settings = replace(
        get_settings(),
        database_path=tmp_path / filename,
        reconciliation_enabled=False,
        seed_demo_data=True,
    )
    return create_app(settings)


def test_submission_flow_over_http(tmp_path) -> None:
    app = _build_test_app(tmp_path)

    with TestClient(app) as client:
        repository = app.state.repository
        first = repository.create_resident("Xavier", "male", QUIET_PROFILE)
        second = repository.create_resident("Yusuf", "male", {**QUIET_PROFILE, "cleanlinessLevel": 5})

        waiting = client.post("/allocations", json={"resident_id": first, "session_label": SESSION})
        assert waiting.status_code == 201
        assert waiting.json()["status"] == "pending"
        assert waiting.json()["compatibility"] is None

        paired = client.post("/allocations", json={"resident_id": second, "session_label": SESSION})
        assert paired.status_code == 201
        body = paired.json()
        assert body["status"] == "approved"
        assert body["auto_paired"] is True
        assert body["room_id"] is not None
        assert body["compatibility"]["range"] in {"veryHigh", "high"}
        assert set(body["compatibility"]["breakdown"]) == {"base", "affinity", "penalty"}

        duplicate = client.post("/allocations", json={"resident_id": first, "session_label": SESSION})
        assert duplicate.status_code == 400

        missing = client.post("/allocations", json={"resident_id": 9999, "session_label": SESSION})
        assert missing.status_code == 404

        invalid = client.post("/allocations", json={"resident_id": 0})
        assert invalid.status_code == 422


def test_transient_conflict_maps_to_409(tmp_path, monkeypatch) -> None:
    app = _build_test_app(tmp_path, "conflict.db")

    def locked(*args, **kwargs):
        raise TransientConflictError("database is locked")

    with TestClient(app) as client:
        monkeypatch.setattr(app.state.submission_service, "submit_allocation", locked)
        response = client.post("/allocations", json={"resident_id": 1})

    assert response.status_code == 409


def test_reallocation_over_http(tmp_path) -> None:
    app = _build_test_app(tmp_path, "reallocate.db")

    with TestClient(app) as client:
        repository = app.state.repository
        resident = repository.create_resident("Xavier", "male", QUIET_PROFILE)
        request_id = repository.create_pending_request(resident, SESSION)
        rooms = repository.list_rooms()
        male_room = next(room for room in rooms if room.unit_type == "male")
        female_room = next(room for room in rooms if room.unit_type == "female")

        mismatch = client.post(
            f"/allocations/{request_id}/reallocate",
            json={"target_room_id": female_room.room_id},
        )
        assert mismatch.status_code == 400

        moved = client.post(
            f"/allocations/{request_id}/reallocate",
            json={"target_room_id": male_room.room_id},
        )
        assert moved.status_code == 200
        assert moved.json() == {
            "status": "reallocated",
            "request_id": request_id,
            "room_id": male_room.room_id,
        }
        assert repository.get_room(male_room.room_id).occupied == 1

        missing = client.post("/allocations/9999/reallocate", json={"target_room_id": male_room.room_id})
        assert missing.status_code == 404


def test_match_suggestions_over_http(tmp_path) -> None:
    app = _build_test_app(tmp_path, "suggestions.db")

    with TestClient(app) as client:
        repository = app.state.repository
        target = repository.create_resident("Xena", "female", QUIET_PROFILE)
        match = repository.create_resident("Yara", "female", QUIET_PROFILE)

        response = client.get(f"/residents/{target}/match-suggestions")
        assert response.status_code == 200
        payload = response.json()
        assert payload["range_definitions"]["veryHigh"] == "85-100"
        assert payload["suggestions"]["all"][0]["match_id"] == match
        assert payload["suggestions"]["all"][0]["status"] == "auto-pair"

        assert client.get("/residents/9999/match-suggestions").status_code == 404


def test_reallocation_lost_race_maps_to_409(tmp_path, monkeypatch) -> None:
    app = _build_test_app(tmp_path, "stale_reallocate.db")

    def moved_elsewhere(*args, **kwargs):
        raise StaleRequestError("Allocation request 1 could not be moved")

    with TestClient(app) as client:
        monkeypatch.setattr(app.state.reallocation_service, "reallocate", moved_elsewhere)
        response = client.post("/allocations/1/reallocate", json={"target_room_id": 1})

    assert response.status_code == 409
