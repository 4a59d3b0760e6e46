"""Dead Letter Commands - Inspect and recover parked work"""

import asyncio
import json
from enum import Enum
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel

from lms_jobs.deadletter.models import DeadLetterType

from ..utils.formatting import (
    create_dead_letter_table,
    display_dead_letter,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from ..utils.services import get_cli_settings, open_services

console = Console()
app = typer.Typer(name="dlq", help="Dead letter queue commands")


class StatusFilter(str, Enum):
    all = "all"
    pending = "pending"
    failed = "failed"


@app.command("add")
def add_entry(
    ctx: typer.Context,
    job_type: DeadLetterType = typer.Argument(..., help="Dead letter type"),
    error: str = typer.Option(..., "--error", "-e", help="Failure message"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    max_retries: int | None = typer.Option(None, "--max-retries", min=0),
    retry_delay_minutes: int | None = typer.Option(None, "--retry-delay-minutes", min=0),
):
    """➕ Park a failed unit of work"""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload is not valid JSON: {e}")
        raise typer.Exit(1)

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.dead_letters.add(
                job_type,
                data,
                error,
                max_retries=max_retries,
                retry_delay_minutes=retry_delay_minutes,
            )

    entry_id = asyncio.run(_run())
    print_success(f"Added dead letter entry {entry_id}")


@app.command("list")
def list_entries(
    ctx: typer.Context,
    job_type: DeadLetterType | None = typer.Option(None, "--type", "-t", help="Filter by type"),
    status: StatusFilter = typer.Option(StatusFilter.all, "--status", "-s", help="all, pending or failed"),
):
    """📋 List dead letter entries (newest first)"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.dead_letters.list(job_type=job_type, status=status.value)

    try:
        entries = asyncio.run(_run())
    except Exception as e:
        print_error(f"Failed to list dead letter entries: {e}")
        raise typer.Exit(1)

    if not entries:
        print_info("Dead letter queue is empty")
        return

    console.print(create_dead_letter_table(entries))


@app.command("show")
def show_entry(
    ctx: typer.Context,
    entry_id: UUID = typer.Argument(..., help="Dead letter entry ID"),
):
    """🔍 Show a dead letter entry"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.dead_letters.get_by_id(entry_id)

    entry = asyncio.run(_run())
    if entry is None:
        print_error(f"Dead letter entry not found: {entry_id}")
        raise typer.Exit(1)

    display_dead_letter(entry)


@app.command("stats")
def stats(ctx: typer.Context):
    """📊 Show dead letter counts and health"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.sweeper.health()

    health = asyncio.run(_run())
    warnings = health.warnings
    state = "[green]Healthy[/green]" if health.healthy else "[red]Unhealthy[/red]"
    oldest = (
        warnings.oldest_pending.strftime("%Y-%m-%d %H:%M:%S")
        if warnings.oldest_pending
        else "—"
    )
    console.print(Panel(
        f"{state}\n\n"
        f"• Total: [blue]{health.stats['total']}[/blue]\n"
        f"• Pending: [yellow]{health.stats['pending']}[/yellow]\n"
        f"• Failed: [red]{health.stats['failed']}[/red]\n"
        f"• Oldest pending: {oldest}",
        title="Dead Letter Queue",
        border_style="green" if health.healthy else "red"
    ))


@app.command("retry")
def retry_entry(
    ctx: typer.Context,
    entry_id: UUID = typer.Argument(..., help="Dead letter entry ID"),
):
    """🔁 Make an entry due for retry now"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.dead_letters.retry(entry_id)

    if not asyncio.run(_run()):
        print_error(f"Entry {entry_id} cannot be retried (missing or out of retries)")
        raise typer.Exit(1)

    print_success(f"Entry {entry_id} marked for retry")


@app.command("remove")
def remove_entry(
    ctx: typer.Context,
    entry_id: UUID = typer.Argument(..., help="Dead letter entry ID"),
):
    """🗑️ Remove an entry"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.dead_letters.remove(entry_id)

    if not asyncio.run(_run()):
        print_error(f"Dead letter entry not found: {entry_id}")
        raise typer.Exit(1)

    print_success(f"Entry {entry_id} removed")


@app.command("cleanup")
def cleanup(
    ctx: typer.Context,
    older_than_days: int | None = typer.Option(
        None, "--older-than-days", min=0, help="Retention in days (default from settings)"
    ),
):
    """🧹 Delete old exhausted entries"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.dead_letters.cleanup(older_than_days)

    deleted = asyncio.run(_run())
    if deleted:
        print_success(f"Deleted {deleted} exhausted entries")
    else:
        print_warning("No exhausted entries to delete")


@app.command("sweep")
def sweep(ctx: typer.Context):
    """🧽 Re-run every pending entry through its handler"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.sweeper.process_pending()

    sweep_stats = asyncio.run(_run())
    print_success(
        f"Processed {sweep_stats.processed} entries: "
        f"{sweep_stats.succeeded} succeeded, {sweep_stats.failed} failed, "
        f"{sweep_stats.cleaned_up} cleaned up"
    )
