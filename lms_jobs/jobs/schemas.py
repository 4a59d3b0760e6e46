"""
Job system Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from lms_jobs.core.exceptions import ErrorCode
from lms_jobs.jobs.types import JobType


class EnqueueOptions(BaseModel):
    """Optional overrides for a new job."""

    priority: int | None = Field(
        default=None, ge=1, le=10, description="Priority (10=highest, 1=lowest)"
    )
    max_retries: int | None = Field(
        default=None, ge=0, le=100, description="Re-schedule budget"
    )
    scheduled_for: datetime | None = Field(
        default=None, description="Earliest time to run job"
    )


class JobQueueStats(BaseModel):
    """Job counts grouped by status."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    abandoned: int = 0
    retrying: int = 0


class ProcessorStatus(BaseModel):
    running: bool
    in_flight: int
    stats: JobQueueStats
    config: dict[str, Any]


class ProcessorContext(BaseModel):
    """Input handed to a processor for one attempt."""

    job_id: UUID
    job_type: JobType
    payload: dict[str, Any]
    attempt: int = Field(..., ge=1, description="1-based attempt number")


class ProcessorResult(BaseModel):
    """Structured outcome of a processor attempt."""

    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    retryable: bool = Field(
        default=True, description="Whether a failure may be re-scheduled"
    )

    @classmethod
    def ok(cls, **result: Any) -> "ProcessorResult":
        return cls(success=True, result=result)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: ErrorCode | None = None,
        retryable: bool = True,
    ) -> "ProcessorResult":
        return cls(
            success=False, error=error, error_code=error_code, retryable=retryable
        )


# Payload schemas, one per job type, validated on enqueue and decoded by processors


class PasswordResetEmailPayload(BaseModel):
    email: EmailStr
    reset_link: str | None = None


class EnrollmentConfirmationEmailPayload(BaseModel):
    email: EmailStr
    course_name: str = Field(..., min_length=1)
    course_id: str | None = None


class PaymentReceiptEmailPayload(BaseModel):
    email: EmailStr
    order_id: str = Field(..., min_length=1)
    amount: float | None = None


class SupportTicketEmailPayload(BaseModel):
    email: EmailStr
    ticket_number: str = Field(..., min_length=1)
    subject: str | None = None


class NotificationEmailPayload(BaseModel):
    email: EmailStr
    subject: str | None = None
    html: str | None = None


class SystemNotificationPayload(BaseModel):
    user_id: str = Field(..., min_length=1)
    title: str = "Notification"
    message: str = ""
    action_url: str | None = None


class CourseUpdateNotificationPayload(BaseModel):
    course_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


class EnrollmentNotificationPayload(BaseModel):
    user_id: str = Field(..., min_length=1)
    course_id: str | None = None


class PaymentNotificationPayload(BaseModel):
    user_id: str = Field(..., min_length=1)
    order_id: str | None = None


class PaymentVerifyPayload(BaseModel):
    order_id: str = Field(..., min_length=1)
    transaction_id: str = Field(..., min_length=1)


class PaymentWebhookPayload(BaseModel):
    webhook_data: dict[str, Any] = Field(..., min_length=1)


class RefundPayload(BaseModel):
    order_id: str = Field(..., min_length=1)
    refund_amount: float = Field(..., gt=0)


class MoodleSyncPayload(BaseModel):
    """Shared by the Moodle sync jobs; course_id narrows the sync when given."""

    course_id: str | None = None
