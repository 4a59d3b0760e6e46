"""
Dead letter models.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, TIMESTAMP, Index, SmallInteger, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from lms_jobs.infra.database import Base
from lms_jobs.jobs.models import ensure_utc, utcnow


class DeadLetterType(str, Enum):
    """Kinds of work parked for operator attention."""

    EMAIL_SEND = "EMAIL_SEND"
    ENROLLMENT = "ENROLLMENT"
    PAYMENT_VERIFICATION = "PAYMENT_VERIFICATION"
    SYNC_COURSES = "SYNC_COURSES"
    SYNC_ENROLLMENTS = "SYNC_ENROLLMENTS"
    NOTIFICATION = "NOTIFICATION"
    WEBHOOK = "WEBHOOK"


class DeadLetterJob(Base):
    """
    Failed unit of work awaiting manual or swept retry.

    Separate from the job queue: entries are never promoted back into
    background_jobs.
    """

    __tablename__ = "dead_letter_jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    job_type: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    error: Mapped[str] = mapped_column(Text, nullable=False)

    # Retry tracking
    retry_count: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=3)
    next_retry_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_dead_letter_jobs_next_retry_at", "next_retry_at"),
        Index("ix_dead_letter_jobs_job_type", "job_type"),
        Index("ix_dead_letter_jobs_created_at", "created_at"),
    )

    @property
    def type(self) -> DeadLetterType:
        return DeadLetterType(self.job_type)

    def is_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def is_pending(self, now: datetime | None = None) -> bool:
        """Due for retry and still within budget."""
        now = now or utcnow()
        return not self.is_exhausted() and ensure_utc(self.next_retry_at) <= now
