"""Commit step shared by live submission and background reconciliation."""

from __future__ import annotations

import sqlite3
from typing import Optional

from allocation_engine.domain.errors import CapacityExceededError, StaleRequestError
from allocation_engine.domain.models import CompatibilityResult, Room
from allocation_engine.repository.data_repository import DataRepository, utc_now_iso
from allocation_engine.services.room_selection_service import FairnessRoomSelector
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)


def commit_auto_pair(
    conn: sqlite3.Connection,
    *,
    repository: DataRepository,
    selector: FairnessRoomSelector,
    gender: str,
    request_ids: tuple[int, int],
    compatibility: CompatibilityResult,
    min_free_slots: int = 2,
) -> Optional[Room]:
    """Place two pending requests into one fairly selected room.

    Returns None when no eligible room exists; the requests stay pending.
    Raises when a guarded write finds the state changed underneath, so the
    caller's transaction rolls back without a partial occupancy change.
    """
    previous_cursor = repository.get_fairness_cursor(conn=conn)
    selected = selector.select_room(conn, gender, min_free_slots=min_free_slots)
    if selected is None:
        return None

    room = repository.get_room(selected.room_id, conn=conn)
    if room is None or room.free_slots < len(request_ids) or room.unit_type != gender:
        logger.warning(
            "Selected room failed re-check; cursor restored | room_id=%s | gender=%s",
            selected.room_id,
            gender,
        )
        # the rotation advances only when a pair is placed
        repository.set_fairness_cursor(conn, previous_cursor)
        return None

    allocated_at = utc_now_iso()
    for request_id in request_ids:
        approved = repository.approve_pending_request(
            conn,
            request_id=request_id,
            room_id=room.room_id,
            compatibility=compatibility,
            allocated_at=allocated_at,
        )
        if not approved:
            raise StaleRequestError(f"Request {request_id} is no longer pending")

    if not repository.reserve_room_slots(conn, room.room_id, len(request_ids)):
        raise CapacityExceededError(f"Room {room.room_id} cannot take {len(request_ids)} residents")

    logger.info(
        "Auto-pair committed | request_ids=%s | room_id=%s | score=%s | range=%s",
        list(request_ids),
        room.room_id,
        compatibility.score,
        compatibility.range,
    )
    return repository.get_room(room.room_id, conn=conn)
