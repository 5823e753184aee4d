"""Exception hierarchy for the ingestion pipeline."""
from typing import Any, Dict, Optional

from ..models.synthesis import SynthesisErrorKind


class IngestionError(Exception):
    """Base exception for ingestion errors that reach an operator."""

    def __init__(self, message: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class CatalogError(IngestionError):
    """Raised when an external catalog is unreachable or rejects the query."""

    def __init__(self, catalog: str, message: str):
        super().__init__(
            f"Failed to fetch items from {catalog}: {message}",
            status_code=400,
            details={"catalog": catalog},
        )


class NoItemsFoundError(IngestionError):
    """Raised when a catalog query yields zero candidate items."""

    def __init__(self, category: str):
        super().__init__(
            f"No {category} items found matching the criteria",
            status_code=404,
            details={"category": category},
        )


class JobNotFoundError(IngestionError):
    """Raised when a job id is unknown."""

    def __init__(self, job_id: str):
        super().__init__(
            f"Job {job_id} not found",
            status_code=404,
            details={"job_id": job_id},
        )


class InvalidJobStateError(IngestionError):
    """Raised when an operation is not allowed in the job's current state."""

    def __init__(self, job_id: str, status: str, action: str):
        super().__init__(
            f"Cannot {action} job {job_id} in status '{status}'",
            status_code=409,
            details={"job_id": job_id, "status": status},
        )


class SynthesisError(Exception):
    """Raised by a content synthesizer; carries the retry classification."""

    kind = SynthesisErrorKind.TRANSIENT

    def __init__(self, message: str, kind: Optional[SynthesisErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class ContentAlreadyExistsError(SynthesisError):
    """The item already has a review; never retried."""

    kind = SynthesisErrorKind.ALREADY_EXISTS

    def __init__(self, message: str = "Already exists"):
        super().__init__(message)


class FatalSynthesisError(SynthesisError):
    """Non-retryable failure such as invalid generator output."""

    kind = SynthesisErrorKind.FATAL
