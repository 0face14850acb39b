"""Ledger of admin-approved pairings feeding the adaptive weight store."""

from __future__ import annotations

from typing import Optional

from allocation_engine.domain.errors import NotFoundError, ValidationError
from allocation_engine.domain.models import ApprovedPairing
from allocation_engine.repository.data_repository import DataRepository
from allocation_engine.services.weight_store import AdaptiveWeightStore
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)


class ApprovedPairingService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        weight_store: Optional[AdaptiveWeightStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._weight_store = weight_store or AdaptiveWeightStore(
            adjustment_interval=self._settings.weight_adjustment_interval
        )

    def record_approved_pairing(
        self,
        resident_a_id: int,
        resident_b_id: int,
        approved_by: int,
    ) -> bool:
        """Store the pair once and let the approval count tune the weights.

        Returns whether a new ledger row was written. The weight adjustment
        runs after the ledger commit and is not part of that transaction.
        """
        if resident_a_id == resident_b_id:
            raise ValidationError("A pairing needs two different residents")
        first, second = sorted((resident_a_id, resident_b_id))
        with self._repository.transaction() as conn:
            for resident_id in (first, second):
                if self._repository.get_resident(resident_id, conn=conn) is None:
                    raise NotFoundError(f"Resident {resident_id} not found")
            inserted = self._repository.insert_approved_pairing(
                conn,
                resident_a_id=first,
                resident_b_id=second,
                approved_by=approved_by,
                weight_snapshot=self._weight_store.get_weights(),
            )
            approval_count = self._repository.count_approved_pairings(conn=conn)

        self._weight_store.apply_approval_count(approval_count)
        logger.info(
            "Approved pairing recorded | resident_a_id=%s | resident_b_id=%s | new=%s | total=%s",
            first,
            second,
            inserted,
            approval_count,
        )
        return inserted

    def list_approved_pairings(self) -> list[ApprovedPairing]:
        return self._repository.list_approved_pairings()
