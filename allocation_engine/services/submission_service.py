"""Allocation submission with compatibility-driven auto-pairing."""

from __future__ import annotations

import sqlite3
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from allocation_engine.domain.constraints import RetryPolicy, retry_policy_from_settings
from allocation_engine.domain.errors import (
    DuplicateRequestError,
    NotFoundError,
    RetryableError,
)
from allocation_engine.domain.models import (
    AUTO_PAIR_RANGES,
    STATUS_APPROVED,
    STATUS_PENDING,
    AllocationRequest,
    CompatibilityResult,
    Resident,
    SubmissionResult,
)
from allocation_engine.repository.data_repository import DataRepository, UniqueViolationError
from allocation_engine.services.compatibility_service import CompatibilityScorer
from allocation_engine.services.pairing import commit_auto_pair
from allocation_engine.services.room_selection_service import FairnessRoomSelector
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)


def default_session_label() -> str:
    return str(datetime.now(timezone.utc).year)


class AllocationSubmissionService:
    """Creates a pending request and tries to pair it inside one transaction."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        scorer: Optional[CompatibilityScorer] = None,
        selector: Optional[FairnessRoomSelector] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._scorer = scorer or CompatibilityScorer(
            default_method=self._settings.compatibility_method
        )
        self._selector = selector or FairnessRoomSelector(self._repository)
        self._retry_policy: RetryPolicy = retry_policy_from_settings(self._settings)
        self._sleep = sleep

    def submit_allocation(
        self,
        resident_id: int,
        session_label: Optional[str] = None,
    ) -> SubmissionResult:
        label = (session_label or "").strip() or default_session_label()
        attempt = 1
        while True:
            try:
                return self._submit_once(resident_id, label)
            except UniqueViolationError as exc:
                raise DuplicateRequestError(
                    f"Duplicate request for session {label}"
                ) from exc
            except RetryableError as exc:
                if attempt >= self._retry_policy.max_attempts:
                    logger.error(
                        "Submission retries exhausted | resident_id=%s | attempts=%s | error=%s",
                        resident_id,
                        attempt,
                        exc,
                    )
                    raise
                delay = self._retry_policy.delay_for(attempt)
                logger.warning(
                    "Transient conflict on submission; retrying | resident_id=%s | attempt=%s | delay=%.3f",
                    resident_id,
                    attempt,
                    delay,
                )
                self._sleep(delay)
                attempt += 1

    def _submit_once(self, resident_id: int, session_label: str) -> SubmissionResult:
        with self._repository.transaction() as conn:
            resident = self._repository.get_resident(resident_id, conn=conn)
            if resident is None:
                raise NotFoundError(f"Resident {resident_id} not found")
            if self._repository.find_active_request(conn, resident_id, session_label) is not None:
                raise DuplicateRequestError(
                    f"Duplicate request for session {session_label}"
                )

            request_id = self._repository.insert_pending_request(conn, resident_id, session_label)
            match = self._find_compatible_peer(conn, resident, request_id, session_label)
            if match is None:
                logger.info(
                    "Submission left pending | request_id=%s | resident_id=%s | reason=no_peer",
                    request_id,
                    resident_id,
                )
                return SubmissionResult(
                    request_id=request_id,
                    status=STATUS_PENDING,
                    auto_paired=False,
                    room_id=None,
                    compatibility=None,
                )

            peer, compatibility = match
            room = commit_auto_pair(
                conn,
                repository=self._repository,
                selector=self._selector,
                gender=resident.gender,
                request_ids=(request_id, peer.request_id),
                compatibility=compatibility,
                min_free_slots=self._settings.pair_min_free_slots,
            )
            if room is None:
                logger.info(
                    "Submission left pending | request_id=%s | peer_id=%s | reason=no_room",
                    request_id,
                    peer.request_id,
                )
                return SubmissionResult(
                    request_id=request_id,
                    status=STATUS_PENDING,
                    auto_paired=False,
                    room_id=None,
                    compatibility=None,
                )

            return SubmissionResult(
                request_id=request_id,
                status=STATUS_APPROVED,
                auto_paired=True,
                room_id=room.room_id,
                compatibility=compatibility,
            )

    def _find_compatible_peer(
        self,
        conn: sqlite3.Connection,
        resident: Resident,
        request_id: int,
        session_label: str,
    ) -> Optional[tuple[AllocationRequest, CompatibilityResult]]:
        """Return the first pending peer, in arrival order, scoring high or better."""
        peers = self._repository.list_pending_unassigned_requests(
            conn,
            session_label=session_label,
            gender=resident.gender,
            exclude_request_id=request_id,
        )
        for peer in peers:
            peer_resident = self._repository.get_resident(peer.resident_id, conn=conn)
            if peer_resident is None:
                continue
            compatibility = self._scorer.score_residents(resident, peer_resident)
            if compatibility.range in AUTO_PAIR_RANGES:
                return peer, compatibility
        return None
