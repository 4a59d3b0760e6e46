"""Tests for the retry policy and error classification"""

import asyncio

import httpx
import pytest
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from lms_jobs.core.exceptions import (
    ErrorCode,
    ExternalServiceError,
    NotFoundError,
    OperationTimeoutError,
    ProcessorNotFoundError,
    RateLimitError,
    ServiceUnavailableError,
    ValidationError,
)
from lms_jobs.core.retry import (
    RetryOptions,
    classify_error,
    compute_delay,
    is_retryable_error,
    run_with_retry,
)

FAST = RetryOptions(base_delay_ms=1, max_delay_ms=5, jitter_ms=0, timeout_ms=1000)


def _http_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://moodle.example.com/webservice")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestComputeDelay:
    def test_backoff_sequence_without_jitter(self):
        options = RetryOptions(base_delay_ms=1000, backoff_multiplier=2, max_delay_ms=30000, jitter_ms=0)

        delays = [compute_delay(k, options) for k in range(7)]
        assert delays == [1000, 2000, 4000, 8000, 16000, 30000, 30000]

    def test_backoff_is_monotonic_and_capped(self):
        options = RetryOptions(base_delay_ms=1000, backoff_multiplier=2, max_delay_ms=30000, jitter_ms=0)

        delays = [compute_delay(k, options) for k in range(20)]
        assert delays == sorted(delays)
        assert max(delays) == 30000

    def test_jitter_stays_within_bounds(self):
        options = RetryOptions(base_delay_ms=1000, backoff_multiplier=2, max_delay_ms=30000, jitter_ms=200)

        for k in range(10):
            capped = min(30000, 1000 * 2**k)
            delay = compute_delay(k, options)
            assert capped <= delay <= capped + 200

    def test_huge_attempt_does_not_overflow(self):
        options = RetryOptions(jitter_ms=0)
        assert compute_delay(10_000, options) == options.max_delay_ms


class TestClassifyError:
    def test_structured_errors_carry_their_code(self):
        assert classify_error(RateLimitError("slow down")) == ErrorCode.RATE_LIMIT
        assert classify_error(NotFoundError("gone")) == ErrorCode.NOT_FOUND
        assert classify_error(OperationTimeoutError(100)) == ErrorCode.TIMEOUT
        assert (
            classify_error(ProcessorNotFoundError("X")) == ErrorCode.PROCESSOR_NOT_FOUND
        )

    def test_structured_code_wins_over_message(self):
        # Message mentions a timeout, but the code says validation
        error = ValidationError("timeout field is invalid")
        assert classify_error(error) == ErrorCode.VALIDATION_ERROR

    def test_timeouts(self):
        assert classify_error(asyncio.TimeoutError()) == ErrorCode.TIMEOUT
        assert classify_error(httpx.ReadTimeout("read timed out")) == ErrorCode.TIMEOUT

    @pytest.mark.parametrize(
        "status,code",
        [
            (429, ErrorCode.RATE_LIMIT),
            (503, ErrorCode.SERVICE_UNAVAILABLE),
            (502, ErrorCode.EXTERNAL_SERVICE_ERROR),
            (404, ErrorCode.NOT_FOUND),
            (422, ErrorCode.VALIDATION_ERROR),
        ],
    )
    def test_http_status_errors(self, status, code):
        assert classify_error(_http_error(status)) == code

    def test_transport_errors_are_external(self):
        error = httpx.ConnectError("connection refused")
        assert classify_error(error) == ErrorCode.EXTERNAL_SERVICE_ERROR
        assert is_retryable_error(ExternalServiceError("moodle returned 502"))

    def test_pydantic_validation_error(self):
        class Payload(BaseModel):
            order_id: str

        with pytest.raises(PydanticValidationError) as exc_info:
            Payload.model_validate({})
        assert classify_error(exc_info.value) == ErrorCode.VALIDATION_ERROR

    @pytest.mark.parametrize(
        "message,code",
        [
            ("Request aborted by client", ErrorCode.TIMEOUT),
            ("rate limit exceeded", ErrorCode.RATE_LIMIT),
            ("Too Many Requests", ErrorCode.RATE_LIMIT),
            ("Service Unavailable", ErrorCode.SERVICE_UNAVAILABLE),
            ("user not found", ErrorCode.NOT_FOUND),
            ("database connection lost", ErrorCode.DATABASE_ERROR),
            ("something odd happened", ErrorCode.INTERNAL_ERROR),
        ],
    )
    def test_message_fallback_for_foreign_exceptions(self, message, code):
        assert classify_error(RuntimeError(message)) == code

    def test_retryable_classification(self):
        assert is_retryable_error(RuntimeError("rate limit exceeded"))
        assert is_retryable_error(ServiceUnavailableError("down"))
        assert not is_retryable_error(ValidationError("bad"))
        assert not is_retryable_error(RuntimeError("something odd happened"))


class TestRunWithRetry:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            return "done"

        assert await run_with_retry(operation, FAST) == "done"
        assert calls == 1

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        calls = 0
        retries: list[int] = []

        async def operation():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ServiceUnavailableError("gateway down")
            return calls

        options = RetryOptions(
            max_retries=3,
            base_delay_ms=1,
            max_delay_ms=5,
            jitter_ms=0,
            on_retry=lambda attempt, error: retries.append(attempt),
        )
        assert await run_with_retry(operation, options) == 3
        assert retries == [1, 2]

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self):
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            raise ValidationError("missing order_id")

        with pytest.raises(ValidationError):
            await run_with_retry(operation, FAST)
        assert calls == 1

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self):
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            raise RateLimitError(f"throttled {calls}")

        options = RetryOptions(max_retries=2, base_delay_ms=1, max_delay_ms=5, jitter_ms=0)
        with pytest.raises(RateLimitError, match="throttled 3"):
            await run_with_retry(operation, options)
        assert calls == 3

    @pytest.mark.asyncio
    async def test_attempt_timeout(self):
        async def operation():
            await asyncio.sleep(1)

        options = RetryOptions(max_retries=0, timeout_ms=10)
        with pytest.raises(OperationTimeoutError, match="Operation timed out after 10ms"):
            await run_with_retry(operation, options)

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self):
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(1)
            return "second try"

        options = RetryOptions(max_retries=1, base_delay_ms=1, jitter_ms=0, timeout_ms=20)
        assert await run_with_retry(operation, options) == "second try"
        assert calls == 2
