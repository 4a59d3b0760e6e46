from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Structured failure codes shared by processors, the retry policy and the queue."""

    # Client errors
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMIT = "RATE_LIMIT"

    # Server errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    DATABASE_ERROR = "DATABASE_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"

    # Business logic errors
    PROCESSOR_NOT_FOUND = "PROCESSOR_NOT_FOUND"
    JOB_TYPE_DISABLED = "JOB_TYPE_DISABLED"
    ENROLLMENT_FAILED = "ENROLLMENT_FAILED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    EMAIL_SEND_FAILED = "EMAIL_SEND_FAILED"


RETRYABLE_ERROR_CODES = frozenset(
    {
        ErrorCode.RATE_LIMIT,
        ErrorCode.SERVICE_UNAVAILABLE,
        ErrorCode.TIMEOUT,
        ErrorCode.EXTERNAL_SERVICE_ERROR,
        ErrorCode.EMAIL_SEND_FAILED,
    }
)


def is_retryable_code(code: ErrorCode) -> bool:
    """Check whether failures with this code are worth reattempting."""
    return code in RETRYABLE_ERROR_CODES


class JobQueueError(Exception):
    """Base exception for the job queue."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return is_retryable_code(self.code)


class ValidationError(JobQueueError):
    """Raised when a payload or option fails validation."""

    code = ErrorCode.VALIDATION_ERROR


class NotFoundError(JobQueueError):
    """Raised when a job or remote resource does not exist."""

    code = ErrorCode.NOT_FOUND


class RateLimitError(JobQueueError):
    """Raised when an upstream service throttles us."""

    code = ErrorCode.RATE_LIMIT


class ServiceUnavailableError(JobQueueError):
    code = ErrorCode.SERVICE_UNAVAILABLE


class ExternalServiceError(JobQueueError):
    code = ErrorCode.EXTERNAL_SERVICE_ERROR


class OperationTimeoutError(JobQueueError):
    """Raised when a single attempt exceeds its timeout."""

    code = ErrorCode.TIMEOUT

    def __init__(self, timeout_ms: int, details: dict[str, Any] | None = None):
        self.timeout_ms = timeout_ms
        super().__init__(f"Operation timed out after {timeout_ms}ms", details=details)


class ProcessorNotFoundError(JobQueueError, KeyError):
    """Raised when no processor is registered for a job type."""

    code = ErrorCode.PROCESSOR_NOT_FOUND

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"No processor found for job type: {job_type}")

    def __str__(self) -> str:
        return self.message


class JobTypeDisabledError(JobQueueError):
    """Raised by callers that must not silently drop work for a disabled type."""

    code = ErrorCode.JOB_TYPE_DISABLED

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"Job type {job_type} is disabled")
