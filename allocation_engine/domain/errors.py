"""Error taxonomy shared by the allocation workflows."""

from __future__ import annotations


class AllocationError(Exception):
    """Base exception for allocation engine failures."""


class ValidationError(AllocationError):
    """Input or state rejected; surfaced to the caller and never retried."""


class DuplicateRequestError(ValidationError):
    """Raised when a resident already holds an active request for the session."""


class CapacityExceededError(ValidationError):
    """Raised when a room cannot take the requested number of occupants."""


class GenderMismatchError(ValidationError):
    """Raised when a resident is not eligible for a housing unit's type."""


class CompatibilityRequirementError(ValidationError):
    """Raised when an existing occupant scores too low against the resident."""


class NotFoundError(AllocationError):
    """Raised when a resident, room or request id does not exist."""


class RetryableError(AllocationError):
    """Marker for failures that may succeed if the unit of work is re-run."""


class TransientConflictError(RetryableError):
    """Write conflict or lock timeout reported by the persistence layer."""


class StaleRequestError(AllocationError):
    """Raised when a guarded update finds the request already moved on."""
