"""
Job processor registration.

Registers a processor for every job type with the job processor registry.
"""

from lms_jobs.config.logging import get_logger
from lms_jobs.config.settings import Settings, get_settings
from lms_jobs.jobs.handlers import (
    CourseUpdateNotificationProcessor,
    EnrollmentConfirmationEmailProcessor,
    EnrollmentNotificationProcessor,
    MoodleSyncCoursesProcessor,
    MoodleSyncEnrollmentsProcessor,
    MoodleSyncGradesProcessor,
    MoodleSyncUsersProcessor,
    NotificationEmailProcessor,
    PasswordResetEmailProcessor,
    PaymentNotificationProcessor,
    PaymentReceiptEmailProcessor,
    PaymentVerifyProcessor,
    PaymentWebhookProcessor,
    RefundProcessor,
    SupportTicketEmailProcessor,
    SystemNotificationProcessor,
)
from lms_jobs.jobs.processors import JobProcessorRegistry, job_processor_registry
from lms_jobs.jobs.types import JobType

logger = get_logger(__name__)

PROCESSOR_CLASSES = {
    # Email
    JobType.EMAIL_PASSWORD_RESET: PasswordResetEmailProcessor,
    JobType.EMAIL_ENROLLMENT_CONFIRMATION: EnrollmentConfirmationEmailProcessor,
    JobType.EMAIL_PAYMENT_RECEIPT: PaymentReceiptEmailProcessor,
    JobType.EMAIL_SUPPORT_TICKET: SupportTicketEmailProcessor,
    JobType.EMAIL_NOTIFICATION: NotificationEmailProcessor,
    # Notifications
    JobType.NOTIFICATION_SYSTEM: SystemNotificationProcessor,
    JobType.NOTIFICATION_COURSE_UPDATE: CourseUpdateNotificationProcessor,
    JobType.NOTIFICATION_ENROLLMENT: EnrollmentNotificationProcessor,
    JobType.NOTIFICATION_PAYMENT: PaymentNotificationProcessor,
    # Payments
    JobType.PAYMENT_VERIFY: PaymentVerifyProcessor,
    JobType.PAYMENT_WEBHOOK: PaymentWebhookProcessor,
    JobType.REFUND_PROCESS: RefundProcessor,
    # Moodle sync
    JobType.MOODLE_SYNC_COURSES: MoodleSyncCoursesProcessor,
    JobType.MOODLE_SYNC_ENROLLMENTS: MoodleSyncEnrollmentsProcessor,
    JobType.MOODLE_SYNC_GRADES: MoodleSyncGradesProcessor,
    JobType.MOODLE_SYNC_USERS: MoodleSyncUsersProcessor,
}


def register_job_processors(
    registry: JobProcessorRegistry | None = None,
    settings: Settings | None = None,
    freeze: bool | None = None,
) -> JobProcessorRegistry:
    """
    Register all job processors with a registry.

    Types already registered are left alone, so calling this twice is safe.
    The registry is frozen outside development unless freeze says otherwise.
    """
    registry = job_processor_registry if registry is None else registry
    settings = settings or get_settings()

    logger.info("Registering job processors")

    for job_type, processor_class in PROCESSOR_CLASSES.items():
        if not registry.has(job_type) and not registry.is_frozen():
            registry.register(job_type, processor_class(settings))

    if freeze is None:
        freeze = settings.environment != "development"
    if freeze and not registry.is_frozen():
        registry.freeze()

    logger.info("Job processors registered", registered_processors=registry.list())
    return registry
