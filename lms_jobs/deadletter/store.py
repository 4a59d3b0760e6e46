"""
Dead letter store.

Durable holding area for work that failed outside the job queue (or after
it) and needs operator attention. "pending" entries are due for retry and
still within budget; "failed" entries have exhausted their budget.
"""

from datetime import timedelta
from typing import Any, Literal
from uuid import UUID

from sqlalchemy import and_, delete, func, select, update

from lms_jobs.config.logging import get_logger
from lms_jobs.config.settings import Settings
from lms_jobs.deadletter.models import DeadLetterJob, DeadLetterType
from lms_jobs.infra.database import Database
from lms_jobs.jobs.models import utcnow

logger = get_logger(__name__)

StatusFilter = Literal["all", "pending", "failed"]


def _pending_filter(now):
    return and_(
        DeadLetterJob.next_retry_at <= now,
        DeadLetterJob.retry_count < DeadLetterJob.max_retries,
    )


_exhausted_filter = DeadLetterJob.retry_count >= DeadLetterJob.max_retries


class DeadLetterStore:
    """Persistence and retry bookkeeping for DeadLetterJob entries."""

    def __init__(self, database: Database, settings: Settings):
        self.database = database
        self.settings = settings

    async def add(
        self,
        job_type: DeadLetterType,
        payload: dict[str, Any],
        error: BaseException | str,
        max_retries: int | None = None,
        retry_delay_minutes: int | None = None,
    ) -> UUID:
        """
        Park a failed unit of work.

        Args:
            job_type: Dead letter category
            payload: Data needed to redo the work
            error: The failure, stored as its message
            max_retries: Retry budget (settings default when omitted)
            retry_delay_minutes: Delay before the first retry is due

        Returns:
            The new entry's id
        """
        max_retries = (
            max_retries
            if max_retries is not None
            else self.settings.dead_letter_max_retries
        )
        retry_delay_minutes = (
            retry_delay_minutes
            if retry_delay_minutes is not None
            else self.settings.dead_letter_retry_delay_minutes
        )
        message = error if isinstance(error, str) else str(error) or type(error).__name__

        now = utcnow()
        entry = DeadLetterJob(
            job_type=DeadLetterType(job_type).value,
            payload=payload,
            error=message,
            retry_count=0,
            max_retries=max_retries,
            next_retry_at=now + timedelta(minutes=retry_delay_minutes),
            created_at=now,
            updated_at=now,
        )
        async with self.database.session() as session:
            session.add(entry)
            await session.commit()

        logger.error(
            "Job added to dead letter queue",
            dead_letter_id=str(entry.id),
            job_type=entry.job_type,
            error=message,
            retry_delay_minutes=retry_delay_minutes,
        )
        return entry.id

    async def list(
        self,
        job_type: DeadLetterType | None = None,
        status: StatusFilter = "all",
    ) -> list[DeadLetterJob]:
        """Entries matching the filters, newest first."""
        query = select(DeadLetterJob)
        if job_type is not None:
            query = query.where(DeadLetterJob.job_type == DeadLetterType(job_type).value)
        if status == "pending":
            query = query.where(_pending_filter(utcnow()))
        elif status == "failed":
            query = query.where(_exhausted_filter)
        elif status != "all":
            raise ValueError(f"Unknown dead letter status filter: {status}")

        async with self.database.session() as session:
            result = await session.execute(query.order_by(DeadLetterJob.created_at.desc()))
            return list(result.scalars().all())

    async def get_by_id(self, entry_id: UUID) -> DeadLetterJob | None:
        async with self.database.session() as session:
            return await session.get(DeadLetterJob, entry_id)

    async def retry(self, entry_id: UUID) -> bool:
        """
        Mark an entry due for retry now, consuming one retry.

        Refused when the entry is missing or its budget is exhausted.
        """
        now = utcnow()
        stmt = (
            update(DeadLetterJob)
            .where(
                and_(
                    DeadLetterJob.id == entry_id,
                    DeadLetterJob.retry_count < DeadLetterJob.max_retries,
                )
            )
            .values(
                retry_count=DeadLetterJob.retry_count + 1,
                next_retry_at=now,
                error="Manual retry initiated",
                updated_at=now,
            )
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
            await session.commit()

        if result.rowcount == 0:
            logger.warning(
                "Dead letter entry not retried (missing or exhausted)",
                dead_letter_id=str(entry_id),
            )
            return False

        logger.info("Dead letter entry marked for retry", dead_letter_id=str(entry_id))
        return True

    async def mark_failed(self, entry_id: UUID, error: str | None = None) -> bool:
        """Record a failed retry: retry_count += 1, schedule unchanged."""
        values: dict[str, Any] = {
            "retry_count": DeadLetterJob.retry_count + 1,
            "updated_at": utcnow(),
        }
        if error is not None:
            values["error"] = error

        async with self.database.session() as session:
            result = await session.execute(
                update(DeadLetterJob).where(DeadLetterJob.id == entry_id).values(**values)
            )
            await session.commit()

        if result.rowcount == 0:
            return False
        logger.info("Dead letter entry marked as failed", dead_letter_id=str(entry_id))
        return True

    async def remove(self, entry_id: UUID) -> bool:
        async with self.database.session() as session:
            result = await session.execute(
                delete(DeadLetterJob).where(DeadLetterJob.id == entry_id)
            )
            await session.commit()

        if result.rowcount == 0:
            return False
        logger.info("Dead letter entry removed", dead_letter_id=str(entry_id))
        return True

    async def stats(self) -> dict[str, int]:
        """{total, pending, failed} counts."""
        now = utcnow()
        async with self.database.session() as session:
            total = await session.scalar(select(func.count(DeadLetterJob.id)))
            pending = await session.scalar(
                select(func.count(DeadLetterJob.id)).where(_pending_filter(now))
            )
            failed = await session.scalar(
                select(func.count(DeadLetterJob.id)).where(_exhausted_filter)
            )
        return {"total": total or 0, "pending": pending or 0, "failed": failed or 0}

    async def cleanup(self, older_than_days: int | None = None) -> int:
        """Delete exhausted entries created more than older_than_days ago."""
        retention_days = (
            older_than_days
            if older_than_days is not None
            else self.settings.dead_letter_cleanup_after_days
        )
        cutoff = utcnow() - timedelta(days=retention_days)

        async with self.database.session() as session:
            result = await session.execute(
                delete(DeadLetterJob).where(
                    and_(DeadLetterJob.created_at < cutoff, _exhausted_filter)
                )
            )
            await session.commit()

        logger.info(
            "Cleaned up old dead letter entries",
            deleted_count=result.rowcount,
            retention_days=retention_days,
        )
        return result.rowcount
