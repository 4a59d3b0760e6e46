"""
Job processors for the storefront's background work.

Each processor implements the JobProcessor protocol through BaseProcessor and
is registered in the job processor registry. Delivery integrations (mail
provider, payment gateway, Moodle) live outside this package; processors here
log the side effect they stand for and report a structured result.
"""

from typing import Any

from lms_jobs.config.logging import get_logger
from lms_jobs.config.settings import Settings
from lms_jobs.jobs.models import utcnow
from lms_jobs.jobs.processors import BaseProcessor
from lms_jobs.jobs.schemas import (
    CourseUpdateNotificationPayload,
    EnrollmentConfirmationEmailPayload,
    EnrollmentNotificationPayload,
    MoodleSyncPayload,
    NotificationEmailPayload,
    PasswordResetEmailPayload,
    PaymentNotificationPayload,
    PaymentReceiptEmailPayload,
    PaymentVerifyPayload,
    PaymentWebhookPayload,
    ProcessorContext,
    RefundPayload,
    SupportTicketEmailPayload,
    SystemNotificationPayload,
)

logger = get_logger(__name__)


class _SettingsProcessor(BaseProcessor):
    def __init__(self, settings: Settings):
        self.settings = settings


# Email processors


class PasswordResetEmailProcessor(_SettingsProcessor):
    """
    Send a password reset email.

    Payload expected:
    {
        "email": "user@example.com",
        "reset_link": "https://..."  # optional
    }
    """

    payload_model = PasswordResetEmailPayload

    async def process(
        self, payload: PasswordResetEmailPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        logger.info(
            "Sending password reset email",
            job_id=str(context.job_id),
            recipient=payload.email,
            has_link=payload.reset_link is not None,
        )
        return {"email_sent": True, "recipient": payload.email}


class EnrollmentConfirmationEmailProcessor(_SettingsProcessor):
    """Send the enrollment confirmation for a course."""

    payload_model = EnrollmentConfirmationEmailPayload

    async def process(
        self, payload: EnrollmentConfirmationEmailPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        logger.info(
            "Sending enrollment confirmation",
            job_id=str(context.job_id),
            recipient=payload.email,
            course_name=payload.course_name,
            course_id=payload.course_id,
        )
        return {
            "email_sent": True,
            "recipient": payload.email,
            "course_name": payload.course_name,
        }


class PaymentReceiptEmailProcessor(_SettingsProcessor):
    payload_model = PaymentReceiptEmailPayload

    async def process(
        self, payload: PaymentReceiptEmailPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        logger.info(
            "Sending payment receipt",
            job_id=str(context.job_id),
            recipient=payload.email,
            order_id=payload.order_id,
            amount=payload.amount,
        )
        return {
            "email_sent": True,
            "recipient": payload.email,
            "order_id": payload.order_id,
        }


class SupportTicketEmailProcessor(_SettingsProcessor):
    payload_model = SupportTicketEmailPayload

    async def process(
        self, payload: SupportTicketEmailPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        logger.info(
            "Sending support ticket update",
            job_id=str(context.job_id),
            recipient=payload.email,
            ticket_number=payload.ticket_number,
        )
        return {
            "email_sent": True,
            "recipient": payload.email,
            "ticket_number": payload.ticket_number,
        }


class NotificationEmailProcessor(_SettingsProcessor):
    """Generic notification email; subject falls back to the app name."""

    payload_model = NotificationEmailPayload

    async def process(
        self, payload: NotificationEmailPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        subject = payload.subject or f"{self.settings.app_name} notification"
        logger.info(
            "Sending notification email",
            job_id=str(context.job_id),
            recipient=payload.email,
            subject=subject,
        )
        return {"email_sent": True, "recipient": payload.email, "subject": subject}


# Notification processors


class SystemNotificationProcessor(_SettingsProcessor):
    """In-app system notification for one user."""

    payload_model = SystemNotificationPayload

    async def process(
        self, payload: SystemNotificationPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        logger.info(
            "Sending system notification",
            job_id=str(context.job_id),
            user_id=payload.user_id,
            title=payload.title,
            action_url=payload.action_url,
        )
        return {"notification_sent": True, "user_id": payload.user_id}


class CourseUpdateNotificationProcessor(_SettingsProcessor):
    """Notify the students enrolled in a course about an update."""

    payload_model = CourseUpdateNotificationPayload

    async def process(
        self, payload: CourseUpdateNotificationPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        logger.info(
            "Sending course update notification",
            job_id=str(context.job_id),
            course_id=payload.course_id,
        )
        return {"notified": True, "course_id": payload.course_id}


class EnrollmentNotificationProcessor(_SettingsProcessor):
    payload_model = EnrollmentNotificationPayload

    async def process(
        self, payload: EnrollmentNotificationPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        logger.info(
            "Sending enrollment notification",
            job_id=str(context.job_id),
            user_id=payload.user_id,
            course_id=payload.course_id,
        )
        return {"notification_sent": True, "user_id": payload.user_id}


class PaymentNotificationProcessor(_SettingsProcessor):
    payload_model = PaymentNotificationPayload

    async def process(
        self, payload: PaymentNotificationPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        logger.info(
            "Sending payment notification",
            job_id=str(context.job_id),
            user_id=payload.user_id,
            order_id=payload.order_id,
        )
        return {"notification_sent": True, "user_id": payload.user_id}


# Payment processors


class PaymentVerifyProcessor(_SettingsProcessor):
    """
    Verify a payment with the gateway and update the order.

    Payload expected:
    {
        "order_id": "order-123",
        "transaction_id": "txn-456"
    }
    """

    payload_model = PaymentVerifyPayload

    async def process(
        self, payload: PaymentVerifyPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        logger.info(
            "Verifying payment",
            job_id=str(context.job_id),
            order_id=payload.order_id,
            transaction_id=payload.transaction_id,
            attempt=context.attempt,
        )
        return {
            "verified": True,
            "order_id": payload.order_id,
            "transaction_id": payload.transaction_id,
        }


class PaymentWebhookProcessor(_SettingsProcessor):
    payload_model = PaymentWebhookPayload

    async def process(
        self, payload: PaymentWebhookPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        logger.info(
            "Processing payment webhook",
            job_id=str(context.job_id),
            event=payload.webhook_data.get("event"),
        )
        return {"webhook_processed": True}


class RefundProcessor(_SettingsProcessor):
    payload_model = RefundPayload

    async def process(
        self, payload: RefundPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        logger.info(
            "Processing refund",
            job_id=str(context.job_id),
            order_id=payload.order_id,
            refund_amount=payload.refund_amount,
        )
        return {
            "refunded": True,
            "order_id": payload.order_id,
            "refund_amount": payload.refund_amount,
        }


# Moodle sync processors


class MoodleSyncProcessor(_SettingsProcessor):
    """
    Pull one kind of record from Moodle.

    Subclasses name the synced entity; the result carries "<entity>_synced"
    plus either the course scope or a sync timestamp for catalog-wide syncs.
    """

    payload_model = MoodleSyncPayload
    entity: str = ""
    course_scoped: bool = False

    async def process(
        self, payload: MoodleSyncPayload, context: ProcessorContext
    ) -> dict[str, Any]:
        scope = payload.course_id if self.course_scoped else None
        logger.info(
            "Syncing from Moodle",
            job_id=str(context.job_id),
            entity=self.entity,
            course_id=scope or "all",
        )
        result: dict[str, Any] = {f"{self.entity}_synced": True}
        if self.course_scoped:
            result["course_id"] = scope
        else:
            result["timestamp"] = utcnow().isoformat()
        return result


class MoodleSyncCoursesProcessor(MoodleSyncProcessor):
    entity = "courses"


class MoodleSyncEnrollmentsProcessor(MoodleSyncProcessor):
    entity = "enrollments"
    course_scoped = True


class MoodleSyncGradesProcessor(MoodleSyncProcessor):
    entity = "grades"
    course_scoped = True


class MoodleSyncUsersProcessor(MoodleSyncProcessor):
    entity = "users"
