"""create background job, attempt and dead letter tables

Revision ID: 3b7c1e9a0d42
Revises:
Create Date: 2026-10-19 09:12:31.418207

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7c1e9a0d42"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "background_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("job_type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            comment="Processor-specific parameters",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            comment="PENDING|PROCESSING|COMPLETED|FAILED|RETRYING|ABANDONED",
        ),
        sa.Column(
            "priority",
            sa.SmallInteger,
            nullable=False,
            comment="Priority 1-10, higher is claimed first",
        ),
        sa.Column(
            "retry_count", sa.SmallInteger, nullable=False, comment="Re-schedules consumed"
        ),
        sa.Column(
            "max_retries", sa.SmallInteger, nullable=False, comment="Re-schedule budget"
        ),
        sa.Column(
            "scheduled_for",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            comment="Earliest time the job is claimable",
        ),
        # Results and errors
        sa.Column("result", sa.JSON, nullable=True, comment="Processor result data"),
        sa.Column("error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column(
            "error_code", sa.Text, nullable=True, comment="Structured code of the last error"
        ),
        sa.Column(
            "terminal_reason",
            sa.Text,
            nullable=True,
            comment="retries_exhausted|non_retryable|abandoned",
        ),
        # Timestamps
        sa.Column(
            "started_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Start of the latest attempt",
        ),
        sa.Column(
            "completed_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When the job became terminal",
        ),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        # Constraints
        sa.CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'RETRYING', 'ABANDONED')",
            name="background_jobs_status_check",
        ),
        sa.CheckConstraint(
            "priority BETWEEN 1 AND 10", name="background_jobs_priority_check"
        ),
        sa.CheckConstraint("retry_count >= 0", name="background_jobs_retry_count_check"),
    )

    # Claim query: claimable status + scheduled_for <= now, priority desc, created_at asc
    op.create_index(
        "ix_background_jobs_claim",
        "background_jobs",
        ["status", "scheduled_for", "priority", "created_at"],
    )
    op.create_index(
        "ix_background_jobs_completed_at", "background_jobs", ["completed_at"]
    )

    # Append-only attempt log
    op.create_table(
        "background_job_attempts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "job_id",
            sa.Uuid(),
            sa.ForeignKey("background_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("timestamp", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("success", sa.Boolean, nullable=False),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=False),
    )
    op.create_index(
        "ix_background_job_attempts_job_id", "background_job_attempts", ["job_id"]
    )

    op.create_table(
        "dead_letter_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("job_type", sa.Text, nullable=False),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("error", sa.Text, nullable=False),
        sa.Column("retry_count", sa.SmallInteger, nullable=False),
        sa.Column("max_retries", sa.SmallInteger, nullable=False),
        sa.Column("next_retry_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_dead_letter_jobs_next_retry_at", "dead_letter_jobs", ["next_retry_at"]
    )
    op.create_index("ix_dead_letter_jobs_job_type", "dead_letter_jobs", ["job_type"])
    op.create_index("ix_dead_letter_jobs_created_at", "dead_letter_jobs", ["created_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("dead_letter_jobs")
    op.drop_table("background_job_attempts")
    op.drop_table("background_jobs")
