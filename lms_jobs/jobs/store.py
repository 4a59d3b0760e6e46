"""
Database-backed job store.

Owns persistence of jobs and their attempt history. Every mutation is a
single conditional statement keyed by job id (and, for transitions, the
expected current status) so the worker and admin actions cannot overwrite
each other's updates. No queue policy lives here.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, case, delete, func, insert, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from lms_jobs.config.logging import get_logger
from lms_jobs.infra.database import Database
from lms_jobs.jobs.models import Job, JobAttempt, ensure_utc, utcnow
from lms_jobs.jobs.types import CLAIMABLE_STATUSES, JobStatus, TerminalReason

logger = get_logger(__name__)

_CLAIMABLE = [s.value for s in CLAIMABLE_STATUSES]


def _duration_ms(started_at: datetime | None, now: datetime) -> int:
    started_at = ensure_utc(started_at)
    if started_at is None:
        return 0
    return max(0, int((now - started_at).total_seconds() * 1000))


class JobStore:
    """Persistence for Job and JobAttempt records."""

    def __init__(self, database: Database):
        self.database = database

    async def add(self, job: Job) -> Job:
        """Persist a new job and return it with attempts loaded."""
        async with self.database.session() as session:
            session.add(job)
            await session.flush()
            job = await self._load(session, job.id)
            await session.commit()
        return job

    async def get(self, job_id: UUID) -> Job | None:
        async with self.database.session() as session:
            return await self._load(session, job_id)

    async def list_by_status(
        self, statuses: Iterable[JobStatus], limit: int = 100, oldest_first: bool = False
    ) -> list[Job]:
        """List jobs in the given statuses.

        Claim order (priority desc, created_at asc) when oldest_first is set,
        newest first otherwise.
        """
        query = select(Job).where(Job.status.in_([s.value for s in statuses]))
        if oldest_first:
            query = query.order_by(Job.priority.desc(), Job.created_at.asc())
        else:
            query = query.order_by(Job.created_at.desc())

        async with self.database.session() as session:
            result = await session.execute(query.limit(limit))
            return list(result.scalars().all())

    async def claim_next(self, now: datetime | None = None) -> Job | None:
        """
        Atomically claim the best eligible job.

        A single UPDATE ... WHERE id = (best candidate FOR UPDATE SKIP LOCKED)
        AND status IN (claimable) RETURNING statement. A concurrent claimer that
        picked the same candidate finds the status already changed and updates
        nothing.
        """
        now = ensure_utc(now) or utcnow()

        # Aliased so the sub-select is not correlated to the UPDATE target
        eligible = aliased(Job)
        candidate = (
            select(eligible.id)
            .where(
                and_(eligible.status.in_(_CLAIMABLE), eligible.scheduled_for <= now)
            )
            .order_by(eligible.priority.desc(), eligible.created_at.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )

        claim = (
            update(Job)
            .where(and_(Job.id == candidate, Job.status.in_(_CLAIMABLE)))
            .values(
                status=JobStatus.PROCESSING.value,
                started_at=now,
                updated_at=now,
            )
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )

        async with self.database.session() as session:
            result = await session.execute(claim)
            job_id = result.scalar_one_or_none()
            if job_id is None:
                await session.rollback()
                return None
            job = await self._load(session, job_id)
            await session.commit()
        return job

    async def transition(
        self,
        job_id: UUID,
        to_status: JobStatus,
        from_statuses: Iterable[JobStatus] | None = None,
        extra_conditions: Iterable[Any] = (),
        **values: Any,
    ) -> Job | None:
        """
        Move a job to a new status if it is currently in one of from_statuses.

        Returns the updated job, or None when the job is missing or the
        condition did not hold.
        """
        now = utcnow()
        conditions = [Job.id == job_id, *extra_conditions]
        if from_statuses is not None:
            conditions.append(Job.status.in_([s.value for s in from_statuses]))

        stmt = (
            update(Job)
            .where(and_(*conditions))
            .values(status=to_status.value, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )

        async with self.database.session() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                return None
            job = await self._load(session, job_id)
            await session.commit()
        return job

    async def record_success(
        self, job_id: UUID, result: dict[str, Any] | None
    ) -> Job | None:
        """PROCESSING -> COMPLETED, appending a successful attempt."""
        now = utcnow()
        async with self.database.session() as session:
            started_at = await self._processing_started_at(session, job_id)
            if started_at is False:
                return None

            stmt = (
                update(Job)
                .where(
                    and_(Job.id == job_id, Job.status == JobStatus.PROCESSING.value)
                )
                .values(
                    status=JobStatus.COMPLETED.value,
                    result=result,
                    error=None,
                    error_code=None,
                    terminal_reason=None,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            updated = await session.execute(stmt)
            if updated.rowcount == 0:
                await session.rollback()
                return None

            await self._append_attempt(
                session, job_id, now, True, None, _duration_ms(started_at, now)
            )
            job = await self._load(session, job_id)
            await session.commit()
        return job

    async def record_failure(
        self,
        job_id: UUID,
        error: str,
        error_code: str | None,
        retryable: bool,
        retry_scheduled_for: datetime | None = None,
    ) -> Job | None:
        """
        PROCESSING -> RETRYING or FAILED, appending a failed attempt.

        The retry budget check and the retry_count increment happen inside the
        same UPDATE, so the decision always sees the current row.
        """
        now = utcnow()
        will_retry = and_(literal(retryable), Job.retry_count + 1 <= Job.max_retries)
        exhausted_reason = (
            TerminalReason.RETRIES_EXHAUSTED.value
            if retryable
            else TerminalReason.NON_RETRYABLE.value
        )

        async with self.database.session() as session:
            started_at = await self._processing_started_at(session, job_id)
            if started_at is False:
                return None

            stmt = (
                update(Job)
                .where(
                    and_(Job.id == job_id, Job.status == JobStatus.PROCESSING.value)
                )
                .values(
                    status=case(
                        (will_retry, JobStatus.RETRYING.value),
                        else_=JobStatus.FAILED.value,
                    ),
                    retry_count=case(
                        (will_retry, Job.retry_count + 1), else_=Job.retry_count
                    ),
                    terminal_reason=case((will_retry, None), else_=exhausted_reason),
                    completed_at=case(
                        (will_retry, None),
                        else_=literal(now, Job.completed_at.type),
                    ),
                    scheduled_for=case(
                        (
                            will_retry,
                            literal(
                                ensure_utc(retry_scheduled_for) or now,
                                Job.scheduled_for.type,
                            ),
                        ),
                        else_=Job.scheduled_for,
                    ),
                    error=error,
                    error_code=error_code,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            updated = await session.execute(stmt)
            if updated.rowcount == 0:
                await session.rollback()
                return None

            await self._append_attempt(
                session, job_id, now, False, error, _duration_ms(started_at, now)
            )
            job = await self._load(session, job_id)
            await session.commit()
        return job

    async def count_by_status(self) -> dict[str, int]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Job.status, func.count(Job.id)).group_by(Job.status)
            )
            return {status: count for status, count in result.all()}

    async def delete_completed_before(self, cutoff: datetime) -> int:
        """Delete COMPLETED jobs (and their attempts) finished before the cutoff."""
        expired = select(Job.id).where(
            and_(
                Job.status == JobStatus.COMPLETED.value,
                Job.completed_at < cutoff,
            )
        )
        async with self.database.session() as session:
            job_ids = list((await session.execute(expired)).scalars().all())
            if not job_ids:
                return 0
            await session.execute(
                delete(JobAttempt).where(JobAttempt.job_id.in_(job_ids))
            )
            result = await session.execute(
                delete(Job)
                .where(
                    and_(
                        Job.id.in_(job_ids),
                        Job.status == JobStatus.COMPLETED.value,
                    )
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def _processing_started_at(
        self, session: AsyncSession, job_id: UUID
    ) -> datetime | None | bool:
        """started_at of a PROCESSING job, or False if it is not processing."""
        row = (
            await session.execute(
                select(Job.status, Job.started_at).where(Job.id == job_id)
            )
        ).one_or_none()
        if row is None or row.status != JobStatus.PROCESSING.value:
            return False
        return row.started_at

    async def _append_attempt(
        self,
        session: AsyncSession,
        job_id: UUID,
        timestamp: datetime,
        success: bool,
        error: str | None,
        duration_ms: int,
    ) -> None:
        await session.execute(
            insert(JobAttempt).values(
                job_id=job_id,
                timestamp=timestamp,
                success=success,
                error=error,
                duration_ms=duration_ms,
            )
        )

    async def _load(self, session: AsyncSession, job_id: UUID) -> Job | None:
        result = await session.execute(
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
