"""Jobs Commands - Enqueue, inspect and manage background jobs"""

import asyncio
import json
from datetime import timedelta
from uuid import UUID

import typer
from rich.console import Console

from lms_jobs.core.exceptions import JobQueueError, JobTypeDisabledError
from lms_jobs.jobs.models import utcnow
from lms_jobs.jobs.schemas import EnqueueOptions
from lms_jobs.jobs.types import JobStatus, JobType

from ..utils.formatting import (
    create_config_table,
    create_jobs_table,
    create_stats_panel,
    display_job,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from ..utils.services import get_cli_settings, open_services

console = Console()
app = typer.Typer(name="jobs", help="Job queue commands")


@app.command("enqueue")
def enqueue(
    ctx: typer.Context,
    job_type: JobType = typer.Argument(..., help="Job type to enqueue"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    priority: int | None = typer.Option(
        None, "--priority", min=1, max=10, help="Priority (10=highest)"
    ),
    max_retries: int | None = typer.Option(
        None, "--max-retries", min=0, help="Re-schedule budget"
    ),
    delay: int = typer.Option(
        0, "--delay", min=0, help="Seconds before the job becomes claimable"
    ),
):
    """➕ Enqueue a new job"""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload is not valid JSON: {e}")
        raise typer.Exit(1)
    if not isinstance(data, dict):
        print_error("Payload must be a JSON object")
        raise typer.Exit(1)

    options = EnqueueOptions(
        priority=priority,
        max_retries=max_retries,
        scheduled_for=utcnow() + timedelta(seconds=delay) if delay else None,
    )

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            job_id = await services.queue.enqueue(job_type, data, options)
            if job_id is None:
                raise JobTypeDisabledError(job_type.value)
            return job_id

    try:
        job_id = asyncio.run(_run())
    except JobQueueError as e:
        print_error(e.message)
        raise typer.Exit(1)

    print_success(f"Enqueued {job_type.value} job {job_id}")


@app.command("list")
def list_jobs(
    ctx: typer.Context,
    status: JobStatus | None = typer.Option(
        None, "--status", "-s", help="Filter by status (default: pending and retrying)"
    ),
    limit: int = typer.Option(20, "--limit", "-l", min=1, help="Number of jobs to show"),
):
    """📋 List jobs"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            if status is None:
                return await services.queue.get_pending_jobs(limit=limit)
            return await services.queue.get_jobs_by_status(status, limit=limit)

    try:
        jobs = asyncio.run(_run())
    except Exception as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1)

    if not jobs:
        print_info("No jobs found")
        return

    title = f"{status.value} Jobs" if status else "Pending Jobs"
    console.print(create_jobs_table(jobs, title=title))
    print_info(f"Showing {len(jobs)} jobs")


@app.command("show")
def show_job(
    ctx: typer.Context,
    job_id: UUID = typer.Argument(..., help="Job ID"),
):
    """🔍 Show a job and its attempts"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.queue.get_job_by_id(job_id)

    job = asyncio.run(_run())
    if job is None:
        print_error(f"Job not found: {job_id}")
        raise typer.Exit(1)

    display_job(job)


@app.command("stats")
def stats(ctx: typer.Context):
    """📊 Show queue statistics and configuration"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.queue.get_queue_stats(), services.queue.get_config()

    try:
        queue_stats, config = asyncio.run(_run())
    except Exception as e:
        print_error(f"Failed to get stats: {e}")
        raise typer.Exit(1)

    console.print(create_stats_panel(queue_stats))
    console.print(create_config_table(config))


@app.command("retry")
def retry_job(
    ctx: typer.Context,
    job_id: UUID = typer.Argument(..., help="Job ID"),
):
    """🔁 Send a failed job back to the queue"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.queue.retry_job(job_id)

    if not asyncio.run(_run()):
        print_error(f"Job {job_id} cannot be retried (missing, not failed, or out of retries)")
        raise typer.Exit(1)

    print_success(f"Job {job_id} marked for retry")


@app.command("abandon")
def abandon_job(
    ctx: typer.Context,
    job_id: UUID = typer.Argument(..., help="Job ID"),
):
    """🛑 Abandon a job so it is never processed"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.queue.abandon_job(job_id)

    if not asyncio.run(_run()):
        print_error(f"Job {job_id} cannot be abandoned (missing or already finished)")
        raise typer.Exit(1)

    print_success(f"Job {job_id} abandoned")


@app.command("cleanup")
def cleanup(
    ctx: typer.Context,
    older_than_days: int | None = typer.Option(
        None, "--older-than-days", min=0, help="Retention in days (default from settings)"
    ),
):
    """🧹 Delete old completed jobs"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.queue.cleanup_completed_jobs(older_than_days)

    deleted = asyncio.run(_run())
    if deleted:
        print_success(f"Deleted {deleted} completed jobs")
    else:
        print_warning("No completed jobs to delete")
