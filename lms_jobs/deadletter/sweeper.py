"""
Dead letter sweeper.

Periodically re-runs pending dead letter entries through a handler per
DeadLetterType. A successful handler removes the entry; a failure consumes
one retry. Run it from a scheduler (see `lms-jobs dlq sweep`).
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from lms_jobs.config.logging import get_logger
from lms_jobs.config.settings import Settings
from lms_jobs.core.registries import Registry
from lms_jobs.core.retry import RetryOptions, run_with_retry
from lms_jobs.deadletter.models import DeadLetterType
from lms_jobs.deadletter.store import DeadLetterStore

logger = get_logger(__name__)

DeadLetterHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class DeadLetterHandlerRegistry(Registry[DeadLetterHandler]):
    """Registry for dead letter handlers keyed by dead letter type."""

    def __init__(self):
        super().__init__("Dead letter handler")


class SweepStats(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    cleaned_up: int = 0


class DeadLetterWarnings(BaseModel):
    has_failed_jobs: bool
    has_many_pending: bool
    oldest_pending: datetime | None = None


class DeadLetterHealth(BaseModel):
    healthy: bool
    stats: dict[str, int] = Field(default_factory=dict)
    warnings: DeadLetterWarnings


class DeadLetterSweeper:
    """Re-runs pending dead letter entries through registered handlers."""

    def __init__(
        self,
        store: DeadLetterStore,
        handlers: DeadLetterHandlerRegistry,
        settings: Settings,
    ):
        self.store = store
        self.handlers = handlers
        self.settings = settings

    async def process_entry(self, entry_id: UUID) -> bool:
        """
        Run one entry's handler.

        Returns:
            True when the handler succeeded and the entry was removed, False
            when the entry is missing or the attempt failed
        """
        entry = await self.store.get_by_id(entry_id)
        if entry is None:
            logger.warning("Dead letter entry not found", dead_letter_id=str(entry_id))
            return False

        entry_logger = logger.bind(
            dead_letter_id=str(entry.id),
            job_type=entry.job_type,
            attempt=entry.retry_count + 1,
            max_retries=entry.max_retries,
        )
        entry_logger.info("Processing dead letter entry")

        try:
            if not self.handlers.has(entry.job_type):
                raise LookupError(f"Unknown dead letter type: {entry.job_type}")
            handler = self.handlers.get(entry.job_type)
            await handler(entry.payload)
        except Exception as e:
            entry_logger.error("Dead letter entry failed", error=str(e))
            await self.store.mark_failed(entry.id, error=str(e) or type(e).__name__)
            return False

        await self.store.remove(entry.id)
        entry_logger.info("Dead letter entry succeeded and removed")
        return True

    async def process_pending(self) -> SweepStats:
        """Process every pending entry in turn, then clean up old exhausted ones."""
        stats = SweepStats()
        pending = await self.store.list(status="pending")
        logger.info("Starting dead letter sweep", pending=len(pending))

        delay_s = self.settings.dead_letter_sweep_delay_ms / 1000
        for index, entry in enumerate(pending):
            if index and delay_s:
                await asyncio.sleep(delay_s)
            stats.processed += 1
            if await self.process_entry(entry.id):
                stats.succeeded += 1
            else:
                stats.failed += 1

        stats.cleaned_up = await self.store.cleanup(
            self.settings.dead_letter_cleanup_after_days
        )

        logger.info(
            "Dead letter sweep complete",
            **stats.model_dump(),
            remaining=await self.store.stats(),
        )
        return stats

    async def health(self) -> DeadLetterHealth:
        stats = await self.store.stats()
        pending = await self.store.list(status="pending")
        return DeadLetterHealth(
            healthy=stats["failed"] < 10 and len(pending) < 100,
            stats=stats,
            warnings=DeadLetterWarnings(
                has_failed_jobs=stats["failed"] > 0,
                has_many_pending=len(pending) > 50,
                # Listed newest first
                oldest_pending=pending[-1].created_at if pending else None,
            ),
        )


# Default handlers for the dead letter types the storefront parks


class EmailSendEntry(BaseModel):
    email: EmailStr
    subject: str | None = None
    html: str | None = None


class NotificationEntry(BaseModel):
    user_id: str = Field(..., min_length=1)
    title: str = "Notification"
    message: str = ""


class EnrollmentEntry(BaseModel):
    moodle_user_id: str = Field(..., min_length=1)
    course_id: str = Field(..., min_length=1)


def default_handlers(settings: Settings) -> dict[DeadLetterType, DeadLetterHandler]:
    """Handlers for EMAIL_SEND, NOTIFICATION and ENROLLMENT entries."""

    async def send_email(payload: dict[str, Any]) -> None:
        entry = EmailSendEntry.model_validate(payload)

        async def deliver() -> None:
            logger.info("Re-sending email", recipient=entry.email, subject=entry.subject)

        await run_with_retry(
            deliver, RetryOptions.from_settings(settings, base_delay_ms=2000)
        )

    async def notify(payload: dict[str, Any]) -> None:
        entry = NotificationEntry.model_validate(payload)
        logger.info("Re-sending notification", user_id=entry.user_id, title=entry.title)

    async def enroll(payload: dict[str, Any]) -> None:
        entry = EnrollmentEntry.model_validate(payload)

        async def enrol_user() -> None:
            logger.info(
                "Re-trying enrollment",
                moodle_user_id=entry.moodle_user_id,
                course_id=entry.course_id,
            )

        await run_with_retry(enrol_user, RetryOptions.from_settings(settings))

    return {
        DeadLetterType.EMAIL_SEND: send_email,
        DeadLetterType.NOTIFICATION: notify,
        DeadLetterType.ENROLLMENT: enroll,
    }


def build_handler_registry(
    handlers: dict[DeadLetterType, DeadLetterHandler] | None = None,
) -> DeadLetterHandlerRegistry:
    registry = DeadLetterHandlerRegistry()
    for job_type, handler in (handlers or {}).items():
        registry.register(DeadLetterType(job_type), handler)
    return registry
