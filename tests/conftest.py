from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
from pydantic import BaseModel

from lms_jobs.config.settings import Settings
from lms_jobs.deadletter.store import DeadLetterStore
from lms_jobs.infra.database import Database
from lms_jobs.jobs.models import Job, utcnow
from lms_jobs.jobs.processors import JobProcessorRegistry
from lms_jobs.jobs.registry_init import register_job_processors
from lms_jobs.jobs.schemas import ProcessorContext, ProcessorResult
from lms_jobs.jobs.service import JobQueueService
from lms_jobs.jobs.store import JobStore
from lms_jobs.jobs.types import JobStatus, JobType
from lms_jobs.jobs.worker import JobWorker


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file with fast timings."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        environment="development",
        job_poll_interval_ms=20,
        job_disabled_types=[],
        job_processor_timeout_ms=5000,
        job_processor_max_retries=0,
        job_retry_backoff_base_ms=0,
        retry_base_delay_ms=1,
        retry_max_delay_ms=5,
        retry_jitter_ms=0,
        dead_letter_sweep_delay_ms=0,
    )


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    """Create all tables on a fresh database per test."""
    database = Database(settings)
    await database.create_all()
    yield database
    await database.close()


@pytest.fixture
def store(database) -> JobStore:
    return JobStore(database)


@pytest.fixture
def registry(settings) -> JobProcessorRegistry:
    return register_job_processors(JobProcessorRegistry(), settings=settings, freeze=False)


@pytest.fixture
def queue(store, settings, registry) -> JobQueueService:
    return JobQueueService(store, settings, registry)


@pytest.fixture
async def worker(queue, registry, settings) -> AsyncGenerator[JobWorker, None]:
    worker = JobWorker(queue, registry, settings)
    yield worker
    await worker.stop()
    await worker.drain()


@pytest.fixture
def dead_letters(database, settings) -> DeadLetterStore:
    return DeadLetterStore(database, settings)


class AnyPayload(BaseModel):
    model_config = {"extra": "allow"}


class ScriptedProcessor:
    """
    Processor that replays a script of outcomes, one per call.

    Each step is either a ProcessorResult or an exception instance to raise.
    The last step repeats once the script runs out.
    """

    payload_model = AnyPayload

    def __init__(self, *steps):
        self.steps = list(steps)
        self.calls: list[ProcessorContext] = []

    async def handle(self, context: ProcessorContext) -> ProcessorResult:
        self.calls.append(context)
        step = self.steps[min(len(self.calls), len(self.steps)) - 1]
        if isinstance(step, BaseException):
            raise step
        return step


@pytest.fixture
def scripted():
    """The ScriptedProcessor class, for tests that script processor outcomes."""
    return ScriptedProcessor


@pytest.fixture
def make_job():
    """Build a Job row with explicit ordering fields for direct store inserts."""

    def _make(
        job_type: JobType = JobType.EMAIL_NOTIFICATION,
        status: JobStatus = JobStatus.PENDING,
        priority: int = 3,
        age_seconds: float = 0,
        scheduled_in_seconds: float = 0,
        retry_count: int = 0,
        max_retries: int = 3,
        payload: dict | None = None,
    ) -> Job:
        now = utcnow()
        created_at = now - timedelta(seconds=age_seconds)
        return Job(
            job_type=job_type.value,
            payload=payload or {"email": "student@example.com"},
            status=status.value,
            priority=priority,
            retry_count=retry_count,
            max_retries=max_retries,
            scheduled_for=(
                now + timedelta(seconds=scheduled_in_seconds)
                if scheduled_in_seconds
                else created_at
            ),
            created_at=created_at,
            updated_at=created_at,
        )

    return _make
