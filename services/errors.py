# User value: This file gives every failure a clear kind so users see the right message and workers retry only what can succeed.
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class FieldError:
    path: str
    message: str

    def to_dict(self) -> dict:
        return {"path": self.path, "message": self.message}


class TranslationServiceError(Exception):
    """Base error for the job pipeline."""

    status_code = 500
    error_code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def detail(self):
        return self.message


class ValidationError(TranslationServiceError):
    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, errors: List[FieldError], message: str = "Invalid Request Data"):
        super().__init__(message)
        self.errors = list(errors)

    @property
    def detail(self):
        return [e.to_dict() for e in self.errors]

    def fields(self) -> List[str]:
        return [e.path for e in self.errors]


class NotFoundOrUnauthorized(TranslationServiceError):
    # Same answer for "missing" and "someone else's" so job ids of other users stay unknowable.
    status_code = 404
    error_code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str = ""):
        super().__init__("Job not found or unauthorized")
        self.job_id = job_id


class ConflictError(TranslationServiceError):
    status_code = 409
    error_code = "STATE_CONFLICT"

    def __init__(self, message: str, *, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class TransientInfrastructureError(TranslationServiceError):
    status_code = 503
    error_code = "INFRA_UNAVAILABLE"

    def __init__(self, component: str, message: str):
        super().__init__(f"{component} unavailable: {message}")
        self.component = component


class EngineError(TranslationServiceError):
    error_code = "ENGINE_FAILED"

    def __init__(self, message: str, *, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class JobProcessingError(TranslationServiceError):
    """Raised by the processor to the queue layer after the job row has been dealt with."""

    error_code = "JOB_PROCESSING_FAILED"

    def __init__(self, job_id: str, message: str, *, retryable: bool = True):
        super().__init__(message)
        self.job_id = job_id
        self.retryable = retryable
