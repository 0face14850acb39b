"""HTTP adapter over the allocation workflows."""

from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from allocation_engine.controllers.dependencies import (
    get_reallocation_service,
    get_submission_service,
    get_suggestion_service,
)
from allocation_engine.domain.errors import (
    NotFoundError,
    StaleRequestError,
    TransientConflictError,
    ValidationError,
)
from allocation_engine.services.reallocation_service import ReallocationService
from allocation_engine.services.submission_service import AllocationSubmissionService
from allocation_engine.services.suggestion_service import SuggestionService
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["allocation"])


class SubmitAllocationRequest(BaseModel):
    resident_id: int = Field(gt=0)
    session_label: str | None = Field(default=None, max_length=32)


class CompatibilityResponse(BaseModel):
    score: int = Field(ge=0, le=100)
    range: str
    breakdown: dict[str, float]


class SubmitAllocationResponse(BaseModel):
    request_id: int = Field(gt=0)
    status: str
    auto_paired: bool
    room_id: int | None = None
    compatibility: CompatibilityResponse | None = None


class ReallocateRequest(BaseModel):
    target_room_id: int = Field(gt=0)


class ReallocateResponse(BaseModel):
    status: str
    request_id: int = Field(gt=0)
    room_id: int = Field(gt=0)


class MatchSuggestionResponse(BaseModel):
    resident_id: int
    match_id: int
    compatibility_score: int = Field(ge=0, le=100)
    range: str
    status: str
    breakdown: dict[str, float]


class SuggestionsResponse(BaseModel):
    suggestions: dict[str, list[MatchSuggestionResponse]]
    range_definitions: dict[str, str]


def _raise_http(exc: Exception, failure_detail: str) -> NoReturn:
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (TransientConflictError, StaleRequestError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    logger.exception(failure_detail)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=failure_detail,
    ) from exc


@router.post(
    "/allocations",
    response_model=SubmitAllocationResponse,
    status_code=status.HTTP_201_CREATED,
)
def submit_allocation(
    payload: SubmitAllocationRequest,
    service: AllocationSubmissionService = Depends(get_submission_service),
) -> SubmitAllocationResponse:
    """Create a pending request and auto-pair it when a compatible peer is waiting."""
    try:
        result = service.submit_allocation(payload.resident_id, payload.session_label)
    except Exception as exc:
        _raise_http(exc, "Failed to submit allocation")
    return SubmitAllocationResponse(**result.to_dict())


@router.post(
    "/allocations/{request_id}/reallocate",
    response_model=ReallocateResponse,
    status_code=status.HTTP_200_OK,
)
def reallocate(
    request_id: int,
    payload: ReallocateRequest,
    service: ReallocationService = Depends(get_reallocation_service),
) -> ReallocateResponse:
    try:
        result = service.reallocate(request_id, payload.target_room_id)
    except Exception as exc:
        _raise_http(exc, "Failed to reallocate")
    return ReallocateResponse(**result.to_dict())


@router.get(
    "/residents/{resident_id}/match-suggestions",
    response_model=SuggestionsResponse,
    status_code=status.HTTP_200_OK,
)
def match_suggestions(
    resident_id: int,
    service: SuggestionService = Depends(get_suggestion_service),
) -> SuggestionsResponse:
    try:
        report = service.get_suggestions(resident_id)
    except Exception as exc:
        _raise_http(exc, "Failed to compute suggestions")
    return SuggestionsResponse(**report.to_dict())
