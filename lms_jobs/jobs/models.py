"""
Job store models for background processing.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lms_jobs.infra.database import Base
from lms_jobs.jobs.types import TERMINAL_STATUSES, JobStatus, JobType


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """
    Express a timestamp in UTC.

    Naive values are taken to be UTC already (backends without tz support
    return them that way); aware values are converted. SQLite keeps only the
    wall-clock part, so everything written must go through here first.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Job(Base):
    """
    Background job record.

    The queue service is the only writer. Status transitions are applied as
    conditional updates keyed by id and expected status; attempts are kept in
    a separate append-only table.
    """

    __tablename__ = "background_jobs"

    # Core fields
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    job_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Processor-specific parameters",
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="PENDING|PROCESSING|COMPLETED|FAILED|RETRYING|ABANDONED",
    )
    priority: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        default=3,
        comment="Priority 1-10, higher is claimed first",
    )
    retry_count: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Re-schedules consumed"
    )
    max_retries: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=3, comment="Re-schedule budget"
    )
    scheduled_for: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Earliest time the job is claimable",
    )

    # Results and errors
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Processor result data"
    )
    error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )
    error_code: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Structured code of the last error"
    )
    terminal_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="retries_exhausted|non_retryable|abandoned",
    )

    # Timestamps
    started_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Start of the latest attempt"
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="When the job became terminal"
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
    )

    attempts: Mapped[list["JobAttempt"]] = relationship(
        "JobAttempt",
        order_by="JobAttempt.id",
        lazy="selectin",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'RETRYING', 'ABANDONED')",
            name="background_jobs_status_check",
        ),
        CheckConstraint("priority BETWEEN 1 AND 10", name="background_jobs_priority_check"),
        CheckConstraint("retry_count >= 0", name="background_jobs_retry_count_check"),
        # Claim query: claimable status + scheduled_for <= now, priority desc, created_at asc
        Index("ix_background_jobs_claim", "status", "scheduled_for", "priority", "created_at"),
        Index("ix_background_jobs_completed_at", "completed_at"),
    )

    @property
    def type(self) -> JobType:
        return JobType(self.job_type)

    def is_terminal(self) -> bool:
        """Check if job is in a terminal state (completed, failed, abandoned)."""
        return self.status in {s.value for s in TERMINAL_STATUSES}

    def can_retry(self) -> bool:
        """Check if a failed job still has retry budget for a manual retry."""
        return (
            self.status == JobStatus.FAILED.value
            and self.retry_count < self.max_retries
        )


class JobAttempt(Base):
    """One processor attempt for a job. Rows are only ever inserted."""

    __tablename__ = "background_job_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("background_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    timestamp: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
