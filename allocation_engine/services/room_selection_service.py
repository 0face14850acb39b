"""Fairness-based room selection rotating across eligible housing units."""

from __future__ import annotations

import random
import sqlite3
from typing import Optional

from allocation_engine.domain.models import Room
from allocation_engine.repository.data_repository import DataRepository
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)

TIE_BREAK_JITTER = 0.005


class FairnessRoomSelector:
    """Round-robins over housing units of the requested type.

    The cursor read, room scan and cursor write all go through the caller's
    transaction so two concurrent selections cannot both claim the last free
    slots of the same room.
    """

    def __init__(
        self,
        repository: DataRepository,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._repository = repository
        self._rng = rng or random.Random()

    def _best_room(self, rooms: list[Room], min_free_slots: int) -> Optional[Room]:
        best: Optional[Room] = None
        best_score = float("-inf")
        for room in rooms:
            if room.capacity <= 0 or room.free_slots < min_free_slots:
                continue
            score = room.free_slots / room.capacity + self._rng.random() * TIE_BREAK_JITTER
            if score > best_score:
                best, best_score = room, score
        return best

    def select_room(
        self,
        conn: sqlite3.Connection,
        gender: str,
        min_free_slots: int = 2,
    ) -> Optional[Room]:
        units = self._repository.list_housing_units(unit_type=gender, conn=conn)
        if not units:
            logger.info("No housing units available | gender=%s", gender)
            return None

        index = self._repository.get_fairness_cursor(conn=conn)
        for _ in range(len(units)):
            index = (index + 1) % len(units)
            unit = units[index]
            room = self._best_room(
                self._repository.list_rooms_in_unit(unit.unit_id, conn=conn),
                min_free_slots,
            )
            if room is None:
                continue
            self._repository.set_fairness_cursor(conn, index)
            logger.debug(
                "Room selected | unit_id=%s | room_id=%s | cursor=%s | free=%s",
                unit.unit_id,
                room.room_id,
                index,
                room.free_slots,
            )
            return room

        logger.info(
            "No room with enough free slots | gender=%s | min_free_slots=%s | units=%s",
            gender,
            min_free_slots,
            len(units),
        )
        return None
