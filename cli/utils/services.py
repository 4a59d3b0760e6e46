"""Wiring of the job system for CLI commands"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import typer

from lms_jobs.config.settings import Settings, get_settings
from lms_jobs.deadletter.store import DeadLetterStore
from lms_jobs.deadletter.sweeper import (
    DeadLetterSweeper,
    build_handler_registry,
    default_handlers,
)
from lms_jobs.infra.database import Database
from lms_jobs.jobs.processors import JobProcessorRegistry
from lms_jobs.jobs.registry_init import register_job_processors
from lms_jobs.jobs.service import JobQueueService
from lms_jobs.jobs.store import JobStore
from lms_jobs.jobs.worker import JobWorker


@dataclass
class Services:
    database: Database
    registry: JobProcessorRegistry
    queue: JobQueueService
    worker: JobWorker
    dead_letters: DeadLetterStore
    sweeper: DeadLetterSweeper


def get_cli_settings(ctx: typer.Context) -> Settings:
    """Settings resolved by the root callback (falls back to the process settings)."""
    obj = ctx.find_root().obj
    if isinstance(obj, Settings):
        return obj
    return get_settings()


@asynccontextmanager
async def open_services(settings: Settings) -> AsyncIterator[Services]:
    """Build the job system on a fresh engine; the engine is disposed on exit."""
    database = Database(settings)
    try:
        registry = register_job_processors(
            JobProcessorRegistry(), settings=settings, freeze=False
        )
        queue = JobQueueService(JobStore(database), settings, registry)
        dead_letters = DeadLetterStore(database, settings)
        yield Services(
            database=database,
            registry=registry,
            queue=queue,
            worker=JobWorker(queue, registry, settings),
            dead_letters=dead_letters,
            sweeper=DeadLetterSweeper(
                dead_letters,
                build_handler_registry(default_handlers(settings)),
                settings,
            ),
        )
    finally:
        await database.close()
