"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from allocation_engine.services.reallocation_service import ReallocationService
from allocation_engine.services.submission_service import AllocationSubmissionService
from allocation_engine.services.suggestion_service import SuggestionService


def _service_from_state(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_submission_service(request: Request) -> AllocationSubmissionService:
    return _service_from_state(request, "submission_service", "Submission service")


def get_reallocation_service(request: Request) -> ReallocationService:
    return _service_from_state(request, "reallocation_service", "Reallocation service")


def get_suggestion_service(request: Request) -> SuggestionService:
    return _service_from_state(request, "suggestion_service", "Suggestion service")
