"""Admin-driven move of a resident into a different room."""

from __future__ import annotations

from typing import Optional

from allocation_engine.domain.errors import (
    CapacityExceededError,
    CompatibilityRequirementError,
    GenderMismatchError,
    NotFoundError,
    StaleRequestError,
    ValidationError,
)
from allocation_engine.domain.models import (
    REALLOCATION_RANGES,
    STATUS_REJECTED,
    ReallocationResult,
)
from allocation_engine.repository.data_repository import DataRepository, utc_now_iso
from allocation_engine.services.compatibility_service import CompatibilityScorer
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)


class ReallocationService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        scorer: Optional[CompatibilityScorer] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._scorer = scorer or CompatibilityScorer(
            default_method=self._settings.compatibility_method
        )

    def reallocate(self, request_id: int, target_room_id: int) -> ReallocationResult:
        """Move a request into ``target_room_id`` if capacity, gender and occupants allow.

        Everything runs in one transaction; any failure leaves both rooms'
        occupancy untouched. Conflicts are not retried here.
        """
        with self._repository.transaction() as conn:
            request = self._repository.get_request(request_id, conn=conn)
            if request is None:
                raise NotFoundError(f"Allocation request {request_id} not found")
            if request.status == STATUS_REJECTED:
                raise ValidationError(f"Allocation request {request_id} was rejected")

            room = self._repository.get_room(target_room_id, conn=conn)
            if room is None:
                raise NotFoundError(f"Room {target_room_id} not found")
            if request.room_id == room.room_id:
                raise ValidationError(f"Request {request_id} is already in room {room.room_id}")

            resident = self._repository.get_resident(request.resident_id, conn=conn)
            if resident is None:
                raise NotFoundError(f"Resident {request.resident_id} not found")

            if room.free_slots <= 0:
                raise CapacityExceededError(f"Room {room.room_id} is full")
            if resident.gender != room.unit_type:
                raise GenderMismatchError(
                    f"Resident gender {resident.gender} does not match {room.unit_type} housing"
                )

            occupants = self._repository.list_approved_requests_for_room(
                conn,
                room.room_id,
                exclude_request_id=request.request_id,
            )
            for occupant in occupants:
                occupant_resident = self._repository.get_resident(occupant.resident_id, conn=conn)
                if occupant_resident is None:
                    continue
                compatibility = self._scorer.score_residents(resident, occupant_resident)
                if compatibility.range not in REALLOCATION_RANGES:
                    raise CompatibilityRequirementError(
                        "Compatibility requirement unmet with occupant request "
                        f"{occupant.request_id} (score={compatibility.score}, range={compatibility.range})"
                    )

            if not self._repository.reserve_room_slots(conn, room.room_id, 1):
                raise CapacityExceededError(f"Room {room.room_id} is full")
            if request.room_id is not None:
                self._repository.release_room_slot(conn, request.room_id)
            moved = self._repository.move_request(
                conn,
                request_id=request.request_id,
                room_id=room.room_id,
                allocated_at=utc_now_iso(),
            )
            if not moved:
                raise StaleRequestError(f"Allocation request {request_id} could not be moved")

        logger.info(
            "Request reallocated | request_id=%s | from_room_id=%s | to_room_id=%s | occupants_checked=%s",
            request_id,
            request.room_id,
            room.room_id,
            len(occupants),
        )
        return ReallocationResult(request_id=request_id, room_id=room.room_id)
