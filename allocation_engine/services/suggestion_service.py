"""Read-only roommate suggestions backed by the suggestion cache."""

from __future__ import annotations

from typing import Optional

from allocation_engine.domain.errors import NotFoundError
from allocation_engine.domain.models import SuggestionReport
from allocation_engine.repository.data_repository import DataRepository
from allocation_engine.services.compatibility_service import CompatibilityScorer
from allocation_engine.services.suggestion_cache import SuggestionCache
from allocation_engine.services.trait_normalizer import trait_signature
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)


class SuggestionService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        scorer: Optional[CompatibilityScorer] = None,
        cache: Optional[SuggestionCache] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._scorer = scorer or CompatibilityScorer(
            default_method=self._settings.compatibility_method
        )
        self._cache = cache or SuggestionCache(self._settings.suggestion_cache_ttl_seconds)

    def get_suggestions(self, resident_id: int) -> SuggestionReport:
        resident = self._repository.get_resident(resident_id)
        if resident is None:
            raise NotFoundError(f"Resident {resident_id} not found")

        signature = trait_signature(resident.traits)
        cached = self._cache.get(resident_id, signature)
        if cached is not None:
            logger.debug("Suggestion cache hit | resident_id=%s", resident_id)
            return cached

        candidates = self._repository.list_residents(gender=resident.gender)
        report = SuggestionReport(
            resident_id=resident_id,
            suggestions=self._scorer.rank_candidates(resident, candidates),
        )
        self._cache.put(resident_id, signature, report)
        logger.info(
            "Suggestions computed | resident_id=%s | candidates=%s",
            resident_id,
            len(report.suggestions["all"]),
        )
        return report
