"""Custom exception hierarchy for part reconciliation errors."""


class ReconciliationError(Exception):
    """Base exception for all reconciliation errors."""

    def __init__(self, message: str, *args, **kwargs):
        """Initialize error with message."""
        self.message = message
        super().__init__(message, *args, **kwargs)


class InputError(ReconciliationError):
    """Raised when a single record is malformed (missing or unusable part number)."""
    pass


class DatabaseError(ReconciliationError):
    """Raised when persistence operations fail."""
    pass


class CatalogUnavailableError(DatabaseError):
    """Raised when the catalog reader cannot serve store/supplier/interchange rows."""
    pass


class CandidateSinkError(DatabaseError):
    """Raised when match candidates cannot be written or read back."""
    pass


class JobNotFoundError(ReconciliationError):
    """Raised when a matching job does not exist in the job store."""
    pass


class InvalidJobTransitionError(ReconciliationError):
    """Raised when a job state change is not allowed by the state machine."""

    def __init__(self, job_id: str, current: str, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id} cannot move from {current} to {target}")


class DecisionConflictError(ReconciliationError):
    """Raised when a store item already has a different confirmed candidate."""
    pass


class ExternalStageError(ReconciliationError):
    """Raised when an AI / web-search collaborator fails."""
    pass


class RetryableStageError(ExternalStageError):
    """Raised for transient collaborator failures (rate limits, timeouts, 5xx)."""
    pass
