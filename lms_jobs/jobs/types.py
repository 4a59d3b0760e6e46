"""
Enumerations shared by the job store, queue service and processors.
"""

from enum import Enum


class JobType(str, Enum):
    """Closed catalog of background job types."""

    # Email jobs
    EMAIL_PASSWORD_RESET = "EMAIL_PASSWORD_RESET"
    EMAIL_ENROLLMENT_CONFIRMATION = "EMAIL_ENROLLMENT_CONFIRMATION"
    EMAIL_PAYMENT_RECEIPT = "EMAIL_PAYMENT_RECEIPT"
    EMAIL_SUPPORT_TICKET = "EMAIL_SUPPORT_TICKET"
    EMAIL_NOTIFICATION = "EMAIL_NOTIFICATION"

    # Notification jobs
    NOTIFICATION_SYSTEM = "NOTIFICATION_SYSTEM"
    NOTIFICATION_COURSE_UPDATE = "NOTIFICATION_COURSE_UPDATE"
    NOTIFICATION_ENROLLMENT = "NOTIFICATION_ENROLLMENT"
    NOTIFICATION_PAYMENT = "NOTIFICATION_PAYMENT"

    # Payment jobs
    PAYMENT_VERIFY = "PAYMENT_VERIFY"
    PAYMENT_WEBHOOK = "PAYMENT_WEBHOOK"
    REFUND_PROCESS = "REFUND_PROCESS"

    # Moodle sync jobs
    MOODLE_SYNC_COURSES = "MOODLE_SYNC_COURSES"
    MOODLE_SYNC_ENROLLMENTS = "MOODLE_SYNC_ENROLLMENTS"
    MOODLE_SYNC_GRADES = "MOODLE_SYNC_GRADES"
    MOODLE_SYNC_USERS = "MOODLE_SYNC_USERS"


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    RETRYING = "RETRYING"
    ABANDONED = "ABANDONED"


class TerminalReason(str, Enum):
    """Why a job stopped without completing."""

    RETRIES_EXHAUSTED = "retries_exhausted"
    NON_RETRYABLE = "non_retryable"
    ABANDONED = "abandoned"


CLAIMABLE_STATUSES = (JobStatus.PENDING, JobStatus.RETRYING)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.ABANDONED)
