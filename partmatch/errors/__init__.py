"""Error handling module."""
from partmatch.errors.exceptions import (
    ReconciliationError,
    InputError,
    DatabaseError,
    CatalogUnavailableError,
    CandidateSinkError,
    JobNotFoundError,
    InvalidJobTransitionError,
    DecisionConflictError,
    ExternalStageError,
    RetryableStageError,
)

__all__ = [
    "ReconciliationError",
    "InputError",
    "DatabaseError",
    "CatalogUnavailableError",
    "CandidateSinkError",
    "JobNotFoundError",
    "InvalidJobTransitionError",
    "DecisionConflictError",
    "ExternalStageError",
    "RetryableStageError",
]
