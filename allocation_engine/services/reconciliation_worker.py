"""Background loop that retries pairing for stale pending requests."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from allocation_engine.domain.constraints import (
    ReconciliationConfig,
    reconciliation_config_from_settings,
)
from allocation_engine.domain.errors import AllocationError
from allocation_engine.domain.models import (
    AUTO_PAIR_RANGES,
    AllocationRequest,
    ReconciliationReport,
)
from allocation_engine.repository.data_repository import DataRepository, utc_now_iso
from allocation_engine.services.compatibility_service import CompatibilityScorer
from allocation_engine.services.pairing import commit_auto_pair
from allocation_engine.services.room_selection_service import FairnessRoomSelector
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)


class ReconciliationWorker:
    """Periodically pairs requests the live submission path left pending.

    Multiple instances may scan overlapping batches; every commit re-checks
    that both requests are still pending and room-less, so duplicate work
    fails harmlessly instead of double-booking a room.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        scorer: Optional[CompatibilityScorer] = None,
        selector: Optional[FairnessRoomSelector] = None,
        settings: Optional[Settings] = None,
        config: Optional[ReconciliationConfig] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._scorer = scorer or CompatibilityScorer(
            default_method=self._settings.compatibility_method
        )
        self._selector = selector or FairnessRoomSelector(self._repository)
        self._config = config or reconciliation_config_from_settings(self._settings)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _fresh(self, request_id: int) -> Optional[AllocationRequest]:
        request = self._repository.get_request(request_id)
        if request is None or not request.is_unassigned_pending:
            return None
        return request

    def run_cycle(self, now: Optional[datetime] = None) -> ReconciliationReport:
        moment = now or datetime.now(timezone.utc)
        cutoff = utc_now_iso(moment - timedelta(minutes=self._config.stale_minutes))
        stale = self._repository.list_stale_pending_requests(
            cutoff=cutoff,
            limit=self._config.batch_limit,
        )
        if not stale:
            return ReconciliationReport(processed=0, paired=0)

        paired = 0
        for index, candidate in enumerate(stale):
            first = self._fresh(candidate.request_id)
            if first is None:
                continue
            first_resident = self._repository.get_resident(first.resident_id)
            if first_resident is None:
                continue

            for other in stale[index + 1:]:
                second = self._fresh(other.request_id)
                if second is None:
                    continue
                if (
                    second.resident_id == first.resident_id
                    or second.session_label != first.session_label
                ):
                    continue
                second_resident = self._repository.get_resident(second.resident_id)
                if second_resident is None or second_resident.gender != first_resident.gender:
                    continue
                compatibility = self._scorer.score_residents(first_resident, second_resident)
                if compatibility.range not in AUTO_PAIR_RANGES:
                    continue

                try:
                    with self._repository.transaction() as conn:
                        room = commit_auto_pair(
                            conn,
                            repository=self._repository,
                            selector=self._selector,
                            gender=first_resident.gender,
                            request_ids=(first.request_id, second.request_id),
                            compatibility=compatibility,
                            min_free_slots=self._config.min_free_slots,
                        )
                except AllocationError as exc:
                    logger.warning(
                        "Reconciliation pair attempt failed | request_id=%s | peer_id=%s | error=%s",
                        first.request_id,
                        second.request_id,
                        exc,
                    )
                    continue
                except Exception:
                    logger.exception(
                        "Unexpected reconciliation failure | request_id=%s | peer_id=%s",
                        first.request_id,
                        second.request_id,
                    )
                    continue

                if room is not None:
                    paired += 2
                break

        return ReconciliationReport(processed=len(stale), paired=paired)

    def _loop(self) -> None:
        while not self._stop_event.wait(self._config.interval_seconds):
            try:
                report = self.run_cycle()
                if report.processed:
                    logger.info(
                        "Reconciliation cycle | processed=%s | paired=%s",
                        report.processed,
                        report.paired,
                    )
            except Exception:
                logger.exception("Reconciliation cycle failed")

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop,
                name="reconciliation-worker",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "Reconciliation worker started | interval=%.1fs | stale_minutes=%s | batch=%s",
            self._config.interval_seconds,
            self._config.stale_minutes,
            self._config.batch_limit,
        )

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            thread.join(timeout)
            self._thread = None
        logger.info("Reconciliation worker stopped")
