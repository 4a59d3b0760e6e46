"""
Processor contract and registry for background jobs.

A processor performs the side effect for one job type. It receives a
ProcessorContext and returns a ProcessorResult; it never touches job store
state. Each processor carries the pydantic model its payload must satisfy, so
payloads are validated when enqueued and decoded again at the processor
boundary.
"""

from typing import Any, Generic, Protocol, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from lms_jobs.config.logging import get_logger
from lms_jobs.core.exceptions import (
    JobQueueError,
    ProcessorNotFoundError,
    ValidationError,
    is_retryable_code,
)
from lms_jobs.core.registries import Registry
from lms_jobs.core.retry import classify_error
from lms_jobs.jobs.schemas import ProcessorContext, ProcessorResult
from lms_jobs.jobs.types import JobType

logger = get_logger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)


def describe_validation_error(error: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'payload'}: {err['msg']}"
        for err in error.errors()
    )


class JobProcessor(Protocol):
    """Protocol for job processors."""

    payload_model: type[BaseModel]

    async def handle(self, context: ProcessorContext) -> ProcessorResult:
        """
        Run one attempt of a job.

        Returns:
            ProcessorResult with success, optional result data, or an error
            together with whether the failure may be retried
        """
        ...


class BaseProcessor(Generic[PayloadT]):
    """
    Decodes the payload and turns fatal exceptions into structured failures.

    Subclasses set payload_model and implement process(). Exceptions whose
    code is transient (rate limits, timeouts, upstream outages) propagate so
    the worker's in-attempt retry policy can reattempt them; anything else
    becomes a failed ProcessorResult. Validation failures are never retried.
    """

    payload_model: type[PayloadT]

    def decode(self, payload: dict[str, Any]) -> PayloadT:
        try:
            return self.payload_model.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid payload: {describe_validation_error(e)}",
                details={"errors": e.errors(include_url=False)},
            ) from e

    async def handle(self, context: ProcessorContext) -> ProcessorResult:
        try:
            payload = self.decode(context.payload)
            result = await self.process(payload, context)
            return ProcessorResult(success=True, result=result)
        except JobQueueError as e:
            if e.retryable:
                raise
            return ProcessorResult.fail(
                e.message,
                error_code=e.code,
                retryable=e.retryable,
            )
        except Exception as e:
            code = classify_error(e)
            if is_retryable_code(code):
                raise
            logger.warning(
                "Processor raised",
                job_id=str(context.job_id),
                job_type=context.job_type.value,
                error=str(e),
            )
            return ProcessorResult.fail(str(e), error_code=code)

    async def process(
        self, payload: PayloadT, context: ProcessorContext
    ) -> dict[str, Any]:
        raise NotImplementedError


class JobProcessorRegistry(Registry[JobProcessor]):
    """Registry for background job processors keyed by job type."""

    def __init__(self):
        super().__init__("Job")

    def get_processor(self, job_type: JobType | str) -> JobProcessor:
        """Get the processor for a job type, or raise ProcessorNotFoundError."""
        try:
            return self.get(job_type)
        except KeyError:
            raise ProcessorNotFoundError(str(getattr(job_type, "value", job_type))) from None

    def validate_payload(
        self, job_type: JobType, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Check a payload against the processor's schema.

        Returns the payload exactly as given; keys the schema does not declare
        and explicit nulls are kept for the processor. Types without a
        registered processor are not checked.
        """
        if not self.has(job_type):
            return payload
        processor = self.get(job_type)
        try:
            processor.payload_model.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid payload for {job_type.value}: {describe_validation_error(e)}",
                details={"errors": e.errors(include_url=False)},
            ) from e
        return payload


# Global registry instance
job_processor_registry = JobProcessorRegistry()
