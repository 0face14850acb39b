"""FastAPI application bootstrap and lifecycle wiring."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from allocation_engine.controllers.allocation_controller import router as allocation_router
from allocation_engine.repository.data_repository import DataRepository
from allocation_engine.services.approval_service import ApprovedPairingService
from allocation_engine.services.compatibility_service import CompatibilityScorer
from allocation_engine.services.reallocation_service import ReallocationService
from allocation_engine.services.reconciliation_worker import ReconciliationWorker
from allocation_engine.services.room_selection_service import FairnessRoomSelector
from allocation_engine.services.submission_service import AllocationSubmissionService
from allocation_engine.services.suggestion_cache import SuggestionCache
from allocation_engine.services.suggestion_service import SuggestionService
from allocation_engine.services.weight_store import AdaptiveWeightStore
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app with one shared weight store, cache and scorer.

    Nothing is module-global: every workflow receives the same instances
    through its constructor and they live as long as the app.
    """
    settings = settings or get_settings()
    repository = DataRepository(settings)
    weight_store = AdaptiveWeightStore(adjustment_interval=settings.weight_adjustment_interval)
    scorer = CompatibilityScorer(
        weight_store=weight_store,
        default_method=settings.compatibility_method,
    )
    selector = FairnessRoomSelector(repository)
    suggestion_cache = SuggestionCache(ttl_seconds=settings.suggestion_cache_ttl_seconds)

    submission_service = AllocationSubmissionService(
        repository=repository,
        scorer=scorer,
        selector=selector,
        settings=settings,
    )
    reallocation_service = ReallocationService(
        repository=repository,
        scorer=scorer,
        settings=settings,
    )
    suggestion_service = SuggestionService(
        repository=repository,
        scorer=scorer,
        cache=suggestion_cache,
        settings=settings,
    )
    approval_service = ApprovedPairingService(
        repository=repository,
        weight_store=weight_store,
        settings=settings,
    )
    reconciliation_worker = ReconciliationWorker(
        repository=repository,
        scorer=scorer,
        selector=selector,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        startup(app)
        try:
            yield
        finally:
            shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.include_router(allocation_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.weight_store = weight_store
    app.state.scorer = scorer
    app.state.suggestion_cache = suggestion_cache
    app.state.submission_service = submission_service
    app.state.reallocation_service = reallocation_service
    app.state.suggestion_service = suggestion_service
    app.state.approval_service = approval_service
    app.state.reconciliation_worker = reconciliation_worker

    return app


def startup(app: FastAPI) -> None:
    """Initialize schema, optionally seed housing, and start the worker."""
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository

    repository.initialize_database()
    if settings.seed_demo_data:
        repository.seed_demo_housing()
    if settings.reconciliation_enabled:
        app.state.reconciliation_worker.start()
    else:
        logger.info("Reconciliation worker disabled by configuration")
    logger.info("System startup completed")


def shutdown(app: FastAPI) -> None:
    worker: ReconciliationWorker = app.state.reconciliation_worker
    worker.stop()
    logger.info("System shutdown completed")


app = create_app()
