"""
Job queue service for enqueueing and managing background jobs.

All queue policy lives here: defaults, disabled types, the retry budget
decision and the whole-job backoff. Persistence goes through JobStore.
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from lms_jobs.config.logging import get_logger
from lms_jobs.config.settings import Settings
from lms_jobs.core.exceptions import ErrorCode, ValidationError
from lms_jobs.core.retry import RetryOptions, compute_delay
from lms_jobs.jobs.models import Job, ensure_utc, utcnow
from lms_jobs.jobs.processors import JobProcessorRegistry, describe_validation_error
from lms_jobs.jobs.schemas import EnqueueOptions, JobQueueStats
from lms_jobs.jobs.store import JobStore
from lms_jobs.jobs.types import CLAIMABLE_STATUSES, JobStatus, JobType, TerminalReason

logger = get_logger(__name__)


class JobQueueService:
    """Service for managing background jobs."""

    def __init__(
        self,
        store: JobStore,
        settings: Settings,
        registry: JobProcessorRegistry | None = None,
    ):
        self.store = store
        self.settings = settings
        self.registry = registry

    async def enqueue(
        self,
        job_type: JobType | str,
        payload: dict[str, Any] | None = None,
        options: EnqueueOptions | None = None,
        **overrides: Any,
    ) -> UUID | None:
        """
        Persist a new PENDING job.

        Args:
            job_type: Job type to enqueue
            payload: Processor parameters, validated against the registered
                processor's payload model when one exists
            options: Priority, retry budget and schedule overrides; keyword
                overrides (priority=..., max_retries=..., scheduled_for=...)
                are accepted as well

        Returns:
            The new job id, or None when the job type is disabled
        """
        try:
            job_type = JobType(job_type)
        except ValueError:
            raise ValidationError(f"Unknown job type: {job_type}") from None

        if job_type in self.settings.job_disabled_types:
            logger.warning("Job type is disabled, not enqueued", job_type=job_type.value)
            return None

        if overrides:
            base = options.model_dump(exclude_unset=True) if options else {}
            try:
                options = EnqueueOptions(**{**base, **overrides})
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid enqueue options: {describe_validation_error(e)}"
                ) from e
        options = options or EnqueueOptions()

        payload = payload or {}
        if self.registry is not None:
            payload = self.registry.validate_payload(job_type, payload)

        now = utcnow()
        job = Job(
            job_type=job_type.value,
            payload=payload,
            status=JobStatus.PENDING.value,
            priority=(
                options.priority
                if options.priority is not None
                else self.settings.job_default_priority
            ),
            retry_count=0,
            max_retries=(
                options.max_retries
                if options.max_retries is not None
                else self.settings.job_max_retries
            ),
            scheduled_for=ensure_utc(options.scheduled_for) or now,
            created_at=now,
            updated_at=now,
        )
        job = await self.store.add(job)

        logger.info(
            "Job enqueued",
            job_id=str(job.id),
            job_type=job.job_type,
            priority=job.priority,
            max_retries=job.max_retries,
        )
        return job.id

    async def claim_next(self) -> Job | None:
        """Atomically claim the next eligible job (PENDING/RETRYING -> PROCESSING)."""
        job = await self.store.claim_next()
        if job is not None:
            logger.debug(
                "Job claimed",
                job_id=str(job.id),
                job_type=job.job_type,
                priority=job.priority,
            )
        return job

    async def get_job_by_id(self, job_id: UUID) -> Job | None:
        return await self.store.get(job_id)

    async def get_jobs_by_status(self, status: JobStatus, limit: int = 100) -> list[Job]:
        """Jobs in one status, newest first."""
        return await self.store.list_by_status([status], limit=limit)

    async def get_pending_jobs(self, limit: int = 100) -> list[Job]:
        """PENDING and RETRYING jobs in claim order."""
        return await self.store.list_by_status(
            CLAIMABLE_STATUSES, limit=limit, oldest_first=True
        )

    async def mark_job_processing(self, job_id: UUID) -> Job | None:
        """Move a claimable job to PROCESSING outside the claim path."""
        return await self.store.transition(
            job_id,
            JobStatus.PROCESSING,
            from_statuses=CLAIMABLE_STATUSES,
            started_at=utcnow(),
        )

    async def record_job_success(
        self, job_id: UUID, result: dict[str, Any] | None = None
    ) -> Job | None:
        """PROCESSING -> COMPLETED with the processor's result."""
        job = await self.store.record_success(job_id, result)
        if job is None:
            logger.warning("Job not processing, success not recorded", job_id=str(job_id))
            return None

        logger.info(
            "Job completed",
            job_id=str(job.id),
            job_type=job.job_type,
            duration_ms=job.attempts[-1].duration_ms if job.attempts else None,
        )
        return job

    mark_job_completed = record_job_success

    async def mark_job_failed(
        self,
        job_id: UUID,
        error: str,
        retryable: bool = True,
        error_code: ErrorCode | str | None = None,
    ) -> Job | None:
        """
        Record a failed attempt and decide between re-scheduling and FAILED.

        A retryable failure with budget left increments retry_count and sends
        the job back to PENDING (after the optional whole-job backoff).
        Otherwise the job becomes FAILED with retry_count unchanged and a
        terminal_reason saying whether the budget ran out or the error was
        fatal.
        """
        retry_at = None
        if retryable and self.settings.job_retry_backoff_base_ms > 0:
            retry_at = await self._retry_time(job_id)

        code = error_code.value if isinstance(error_code, ErrorCode) else error_code
        job = await self.store.record_failure(
            job_id, error, code, retryable, retry_scheduled_for=retry_at
        )
        if job is None:
            logger.warning("Job not processing, failure not recorded", job_id=str(job_id))
            return None

        if job.status == JobStatus.RETRYING.value:
            logger.warning(
                "Job failed, scheduled for retry",
                job_id=str(job.id),
                job_type=job.job_type,
                error=error,
                error_code=code,
                retry_count=job.retry_count,
                max_retries=job.max_retries,
                scheduled_for=job.scheduled_for.isoformat(),
            )
            requeued = await self.store.transition(
                job.id, JobStatus.PENDING, from_statuses=[JobStatus.RETRYING]
            )
            return requeued or job

        logger.error(
            "Job failed",
            job_id=str(job.id),
            job_type=job.job_type,
            error=error,
            error_code=code,
            retry_count=job.retry_count,
            terminal_reason=job.terminal_reason,
        )
        return job

    async def retry_job(self, job_id: UUID) -> bool:
        """
        Manually send a FAILED job back to PENDING.

        Refused (False, job unchanged) when the job is missing, not FAILED, or
        has no retry budget left.
        """
        job = await self.store.transition(
            job_id,
            JobStatus.PENDING,
            from_statuses=[JobStatus.FAILED],
            extra_conditions=[Job.retry_count < Job.max_retries],
            scheduled_for=utcnow(),
            error=None,
            error_code=None,
            terminal_reason=None,
            completed_at=None,
        )
        if job is None:
            logger.warning("Job not retried", job_id=str(job_id))
            return False

        logger.info("Job marked for retry", job_id=str(job_id), job_type=job.job_type)
        return True

    async def abandon_job(self, job_id: UUID) -> bool:
        """Mark a non-terminal job ABANDONED so it is never claimed again."""
        job = await self.store.transition(
            job_id,
            JobStatus.ABANDONED,
            from_statuses=[JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.RETRYING],
            terminal_reason=TerminalReason.ABANDONED.value,
            completed_at=utcnow(),
        )
        if job is None:
            logger.warning("Job not abandoned", job_id=str(job_id))
            return False

        logger.info("Job abandoned", job_id=str(job_id), job_type=job.job_type)
        return True

    async def get_queue_stats(self) -> JobQueueStats:
        """Job counts by status."""
        counts = await self.store.count_by_status()
        return JobQueueStats(
            total=sum(counts.values()),
            pending=counts.get(JobStatus.PENDING.value, 0),
            processing=counts.get(JobStatus.PROCESSING.value, 0),
            completed=counts.get(JobStatus.COMPLETED.value, 0),
            failed=counts.get(JobStatus.FAILED.value, 0),
            abandoned=counts.get(JobStatus.ABANDONED.value, 0),
            retrying=counts.get(JobStatus.RETRYING.value, 0),
        )

    async def cleanup_completed_jobs(self, older_than_days: int | None = None) -> int:
        """Delete COMPLETED jobs finished more than older_than_days ago."""
        retention_days = (
            older_than_days
            if older_than_days is not None
            else self.settings.job_cleanup_after_days
        )
        cutoff = utcnow() - timedelta(days=retention_days)
        deleted_count = await self.store.delete_completed_before(cutoff)

        if deleted_count > 0:
            logger.info(
                "Cleaned up completed jobs",
                deleted_count=deleted_count,
                retention_days=retention_days,
            )
        return deleted_count

    def get_config(self) -> dict[str, Any]:
        return self.settings.queue_config()

    async def _retry_time(self, job_id: UUID) -> datetime | None:
        """When a re-scheduled job becomes claimable again under whole-job backoff."""
        job = await self.store.get(job_id)
        if job is None:
            return None
        options = RetryOptions(
            base_delay_ms=self.settings.job_retry_backoff_base_ms,
            max_delay_ms=self.settings.job_retry_backoff_max_ms,
            backoff_multiplier=self.settings.retry_backoff_multiplier,
            jitter_ms=0,
        )
        # The failed attempt consumes retry number retry_count + 1
        delay_ms = compute_delay(job.retry_count, options)
        return utcnow() + timedelta(milliseconds=delay_ms)
