"""
Polling job worker with bounded, global concurrency.
"""

import asyncio
import os
import socket
from typing import Any
from uuid import UUID

from lms_jobs.config.logging import bind_worker_context, get_logger
from lms_jobs.config.settings import Settings
from lms_jobs.core.exceptions import JobQueueError
from lms_jobs.core.retry import RetryOptions, classify_error, run_with_retry
from lms_jobs.jobs.models import Job
from lms_jobs.jobs.processors import JobProcessorRegistry
from lms_jobs.jobs.schemas import ProcessorContext, ProcessorResult, ProcessorStatus
from lms_jobs.jobs.service import JobQueueService
from lms_jobs.jobs.types import TERMINAL_STATUSES, JobStatus

logger = get_logger(__name__)


class WorkerHandle:
    """Owns one running poll loop; returned by JobWorker.start()."""

    def __init__(self, worker: "JobWorker", task: asyncio.Task, stop_event: asyncio.Event):
        self.worker = worker
        self.task = task
        self.stop_event = stop_event

    @property
    def running(self) -> bool:
        return not self.task.done()

    async def stop(self) -> None:
        """Stop polling. In-flight jobs keep running; see drain()."""
        self.stop_event.set()
        await self.task

    async def drain(self) -> None:
        await self.worker.drain()


class JobWorker:
    """
    Job worker that polls the queue and runs processors.

    Features:
    - Atomic claim through the queue service, one job per claim
    - In-flight set shared across ticks, so processing_concurrency is a
      global cap
    - Per-attempt timeout and in-attempt retries through the retry policy
    - Failures never stop the poll loop
    """

    def __init__(
        self,
        queue: JobQueueService,
        registry: JobProcessorRegistry,
        settings: Settings,
    ):
        self.queue = queue
        self.registry = registry
        self.settings = settings
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.active_jobs: dict[UUID, asyncio.Task] = {}
        self._handle: WorkerHandle | None = None

    @property
    def running(self) -> bool:
        return self._handle is not None and self._handle.running

    def start(self) -> WorkerHandle:
        """Start the poll loop on the running event loop."""
        if self.running:
            raise RuntimeError("Worker is already running")

        stop_event = asyncio.Event()
        task = asyncio.create_task(self._worker_loop(stop_event))
        self._handle = WorkerHandle(self, task, stop_event)

        logger.info(
            "Starting job worker",
            worker_id=self.worker_id,
            concurrency=self.settings.job_processing_concurrency,
            poll_interval_ms=self.settings.job_poll_interval_ms,
        )
        return self._handle

    async def stop(self) -> None:
        """Stop polling. Jobs already claimed run to completion."""
        if self._handle is None:
            return
        logger.info(
            "Stopping job worker",
            worker_id=self.worker_id,
            active_jobs=len(self.active_jobs),
        )
        await self._handle.stop()

    async def drain(self) -> None:
        """Wait for every in-flight job to finish."""
        while self.active_jobs:
            await asyncio.gather(*self.active_jobs.values(), return_exceptions=True)

    async def _worker_loop(self, stop_event: asyncio.Event) -> None:
        """Main worker loop that claims jobs every poll interval."""
        bind_worker_context(self.worker_id)
        poll_interval_s = self.settings.job_poll_interval_ms / 1000

        while not stop_event.is_set():
            try:
                await self._tick()
            except Exception:
                logger.exception("Error in worker loop")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll_interval_s)
            except asyncio.TimeoutError:
                continue

        logger.info("Job worker stopped", worker_id=self.worker_id)

    async def _tick(self) -> list[UUID]:
        """Claim jobs into the free concurrency slots and start them."""
        available_slots = max(
            0, self.settings.job_processing_concurrency - len(self.active_jobs)
        )
        claimed: list[UUID] = []

        for _ in range(available_slots):
            job = await self.queue.claim_next()
            if job is None:
                break
            claimed.append(job.id)
            task = asyncio.create_task(self.process_job(job))
            self.active_jobs[job.id] = task
            task.add_done_callback(
                lambda _task, job_id=job.id: self.active_jobs.pop(job_id, None)
            )

        if claimed:
            logger.info(
                "Claimed jobs",
                job_count=len(claimed),
                job_ids=[str(job_id) for job_id in claimed],
                in_flight=len(self.active_jobs),
            )
        return claimed

    async def trigger_processing(self) -> list[UUID]:
        """Run one poll tick now and return the ids of the jobs it claimed."""
        return await self._tick()

    async def process_job(self, job: Job) -> None:
        """Run one claimed job through its processor and record the outcome."""
        job_logger = logger.bind(job_id=str(job.id), job_type=job.job_type)
        job_logger.info("Processing job started", attempt=job.retry_count + 1)

        try:
            try:
                result = await self._run_processor(job, job_logger)
            except Exception as e:
                # Unstructured errors are retryable; structured ones carry their own verdict
                retryable = e.retryable if isinstance(e, JobQueueError) else True
                job_logger.error(
                    "Job processing failed", error=str(e), retryable=retryable
                )
                await self.queue.mark_job_failed(
                    job.id,
                    str(e) or type(e).__name__,
                    retryable=retryable,
                    error_code=classify_error(e),
                )
                return

            if result.success:
                await self.queue.record_job_success(job.id, result.result)
                job_logger.info("Processing job completed successfully")
            else:
                job_logger.warning(
                    "Processor reported failure",
                    error=result.error,
                    error_code=result.error_code,
                    retryable=result.retryable,
                )
                await self.queue.mark_job_failed(
                    job.id,
                    result.error or "Job processing failed",
                    retryable=result.retryable,
                    error_code=result.error_code,
                )
        except Exception:
            job_logger.exception("Failed to record job outcome")

    async def _run_processor(self, job: Job, job_logger: Any) -> ProcessorResult:
        processor = self.registry.get_processor(job.job_type)
        context = ProcessorContext(
            job_id=job.id,
            job_type=job.type,
            payload=job.payload,
            attempt=job.retry_count + 1,
        )

        def on_retry(attempt: int, error: BaseException) -> None:
            job_logger.info("Retrying processor", attempt=attempt, error=str(error))

        options = RetryOptions.from_settings(
            self.settings,
            max_retries=self.settings.job_processor_max_retries,
            timeout_ms=self.settings.job_processor_timeout_ms,
            on_retry=on_retry,
        )
        return await run_with_retry(lambda: processor.handle(context), options)

    async def get_processor_status(self) -> ProcessorStatus:
        return ProcessorStatus(
            running=self.running,
            in_flight=len(self.active_jobs),
            stats=await self.queue.get_queue_stats(),
            config=self.queue.get_config(),
        )

    async def wait_for_job_completion(
        self,
        job_id: UUID,
        timeout_ms: int = 300000,
        poll_interval_ms: int = 1000,
    ) -> JobStatus | None:
        """
        Poll until the job is terminal.

        Returns:
            The terminal status, or None on timeout or when the job is missing
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000

        while True:
            job = await self.queue.get_job_by_id(job_id)
            if job is None:
                return None
            status = JobStatus(job.status)
            if status in TERMINAL_STATUSES:
                return status
            if loop.time() >= deadline:
                return None
            await asyncio.sleep(poll_interval_ms / 1000)
