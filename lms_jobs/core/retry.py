"""
Generic retry mechanism for transient failures.

Wraps a single async operation with a per-attempt timeout and an
exponential-backoff-with-jitter retry loop. Nothing here is persisted: the
policy guards sub-operations inside one job attempt (one HTTP call, one
email send), while whole-job re-scheduling is owned by the queue service.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TypeVar

import httpx
from pydantic import ValidationError as PydanticValidationError

from lms_jobs.config.logging import get_logger
from lms_jobs.config.settings import Settings
from lms_jobs.core.exceptions import (
    ErrorCode,
    JobQueueError,
    OperationTimeoutError,
    is_retryable_code,
)

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOptions:
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0
    jitter_ms: int = 200
    timeout_ms: int = 30000
    on_retry: Callable[[int, BaseException], None] | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "RetryOptions":
        options = cls(
            max_retries=settings.retry_max_retries,
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
            backoff_multiplier=settings.retry_backoff_multiplier,
            jitter_ms=settings.retry_jitter_ms,
            timeout_ms=settings.retry_timeout_ms,
        )
        return replace(options, **overrides)


def compute_delay(attempt: int, options: RetryOptions) -> float:
    """
    Delay in milliseconds before retrying after the given 0-indexed attempt.

    delay = min(max_delay, base * multiplier ** attempt) + uniform(0, jitter)
    """
    # Cap the exponent; large attempts always hit max_delay anyway
    exponent = min(max(attempt, 0), 64)
    capped = min(
        float(options.max_delay_ms),
        options.base_delay_ms * options.backoff_multiplier**exponent,
    )
    jitter = random.uniform(0, options.jitter_ms) if options.jitter_ms > 0 else 0.0
    return capped + jitter


_HTTP_STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.RATE_LIMIT,
    503: ErrorCode.SERVICE_UNAVAILABLE,
    504: ErrorCode.TIMEOUT,
}

_MESSAGE_HINTS = (
    (("timeout", "timed out", "abort"), ErrorCode.TIMEOUT),
    (("rate limit", "too many requests"), ErrorCode.RATE_LIMIT),
    (("service unavailable",), ErrorCode.SERVICE_UNAVAILABLE),
    (("unauthorized", "authentication"), ErrorCode.UNAUTHORIZED),
    (("not found",), ErrorCode.NOT_FOUND),
    (("validation",), ErrorCode.VALIDATION_ERROR),
    (("database",), ErrorCode.DATABASE_ERROR),
)


def classify_error(error: BaseException) -> ErrorCode:
    """Map an exception to an ErrorCode, preferring structured information."""
    if isinstance(error, JobQueueError):
        return error.code
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ErrorCode.TIMEOUT
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in _HTTP_STATUS_CODES:
            return _HTTP_STATUS_CODES[status]
        if status >= 500:
            return ErrorCode.EXTERNAL_SERVICE_ERROR
        return ErrorCode.BAD_REQUEST
    if isinstance(error, httpx.TransportError):
        return ErrorCode.EXTERNAL_SERVICE_ERROR
    if isinstance(error, PydanticValidationError):
        return ErrorCode.VALIDATION_ERROR

    # Foreign exceptions without structure
    message = str(error).lower()
    for needles, code in _MESSAGE_HINTS:
        if any(needle in message for needle in needles):
            return code
    return ErrorCode.INTERNAL_ERROR


def is_retryable_error(error: BaseException) -> bool:
    return is_retryable_code(classify_error(error))


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
) -> T:
    """
    Run an async operation with a per-attempt timeout and backoff retries.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        options: Retry options; defaults apply when omitted

    Returns:
        The operation's result from the first successful attempt

    Raises:
        The last error once it is fatal or the retry budget is exhausted.
        Timeouts surface as OperationTimeoutError.
    """
    options = options or RetryOptions()
    timeout_s = options.timeout_ms / 1000

    attempt = 0
    while True:
        try:
            try:
                return await asyncio.wait_for(operation(), timeout=timeout_s)
            except asyncio.TimeoutError:
                raise OperationTimeoutError(options.timeout_ms) from None
        except Exception as error:
            code = classify_error(error)

            if not is_retryable_code(code) or attempt >= options.max_retries:
                raise

            delay_ms = compute_delay(attempt, options)
            if options.on_retry is not None:
                options.on_retry(attempt + 1, error)

            logger.info(
                "Retrying operation",
                attempt=attempt + 1,
                max_retries=options.max_retries,
                delay_ms=round(delay_ms),
                error=str(error),
                error_code=code.value,
            )

            await asyncio.sleep(delay_ms / 1000)
            attempt += 1
