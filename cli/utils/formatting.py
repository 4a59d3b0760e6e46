"""Rich Formatting Utilities for CLI Output"""

import json
from datetime import datetime
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from lms_jobs.deadletter.models import DeadLetterJob
from lms_jobs.jobs.models import Job
from lms_jobs.jobs.schemas import JobQueueStats

console = Console()

STATUS_STYLES = {
    "PENDING": "yellow",
    "PROCESSING": "blue",
    "COMPLETED": "green",
    "FAILED": "red",
    "RETRYING": "magenta",
    "ABANDONED": "dim",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def _when(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "—"


def _status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def create_jobs_table(jobs: list[Job], title: str = "Jobs") -> Table:
    """Create a formatted table for a list of jobs"""
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Priority", justify="center", style="yellow")
    table.add_column("Retries", justify="center")
    table.add_column("Scheduled", justify="center")
    table.add_column("Error", justify="left", style="red")

    for job in jobs:
        error = job.error or "—"
        table.add_row(
            str(job.id),
            job.job_type,
            _status(job.status),
            str(job.priority),
            f"{job.retry_count}/{job.max_retries}",
            _when(job.scheduled_for),
            escape(error[:40] + "..." if len(error) > 40 else error),
        )

    return table


def display_job(job: Job):
    """Display one job with its attempt history"""
    content = (
        f"• Type: [magenta]{job.job_type}[/magenta]\n"
        f"• Status: {_status(job.status)}"
        + (f" ([dim]{job.terminal_reason}[/dim])" if job.terminal_reason else "")
        + "\n"
        f"• Priority: [yellow]{job.priority}[/yellow]\n"
        f"• Retries: {job.retry_count}/{job.max_retries}\n"
        f"• Scheduled for: {_when(job.scheduled_for)}\n"
        f"• Started: {_when(job.started_at)}\n"
        f"• Completed: {_when(job.completed_at)}\n"
        f"• Created: {_when(job.created_at)}"
    )
    if job.error:
        content += f"\n• Error: [red]{escape(job.error)}[/red]"
        if job.error_code:
            content += f" [dim]({job.error_code})[/dim]"

    console.print(Panel(content, title=f"Job {job.id}", border_style="cyan"))
    console.print(Panel(_json(job.payload), title="Payload", border_style="blue"))
    if job.result is not None:
        console.print(Panel(_json(job.result), title="Result", border_style="green"))

    if job.attempts:
        attempts = Table(title="Attempts", box=box.ROUNDED)
        attempts.add_column("#", justify="right")
        attempts.add_column("Timestamp", justify="center")
        attempts.add_column("Outcome", justify="center")
        attempts.add_column("Duration", justify="right", style="yellow")
        attempts.add_column("Error", justify="left", style="red")
        for number, attempt in enumerate(job.attempts, start=1):
            attempts.add_row(
                str(number),
                _when(attempt.timestamp),
                "[green]success[/green]" if attempt.success else "[red]failed[/red]",
                f"{attempt.duration_ms}ms",
                escape(attempt.error or "—"),
            )
        console.print(attempts)


def create_stats_panel(stats: JobQueueStats) -> Panel:
    """Create formatted panel for queue statistics"""
    content = f"""
📊 [bold blue]Queue Statistics[/bold blue]

• Total: [blue]{stats.total}[/blue]
• Pending: [yellow]{stats.pending}[/yellow]
• Processing: [blue]{stats.processing}[/blue]
• Retrying: [magenta]{stats.retrying}[/magenta]
• Completed: [green]{stats.completed}[/green]
• Failed: [red]{stats.failed}[/red]
• Abandoned: [dim]{stats.abandoned}[/dim]
"""

    return Panel(content, title="Job Queue", border_style="green")


def create_config_table(config: dict[str, Any]) -> Table:
    table = Table(title="Queue Configuration", box=box.ROUNDED)
    table.add_column("Option", justify="left", style="cyan")
    table.add_column("Value", justify="left", style="white")
    for key, value in config.items():
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value) or "—"
        table.add_row(key, str(value))
    return table


def create_dead_letter_table(entries: list[DeadLetterJob]) -> Table:
    """Create a formatted table for dead letter entries"""
    table = Table(title="Dead Letter Queue", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Retries", justify="center")
    table.add_column("Next Retry", justify="center", style="yellow")
    table.add_column("Created", justify="center")
    table.add_column("Error", justify="left", style="red")

    for entry in entries:
        error = entry.error
        table.add_row(
            str(entry.id),
            entry.job_type,
            f"{entry.retry_count}/{entry.max_retries}",
            _when(entry.next_retry_at),
            _when(entry.created_at),
            escape(error[:40] + "..." if len(error) > 40 else error),
        )

    return table


def display_dead_letter(entry: DeadLetterJob):
    content = (
        f"• Type: [magenta]{entry.job_type}[/magenta]\n"
        f"• Retries: {entry.retry_count}/{entry.max_retries}\n"
        f"• Next retry: {_when(entry.next_retry_at)}\n"
        f"• Created: {_when(entry.created_at)}\n"
        f"• Error: [red]{escape(entry.error)}[/red]"
    )
    console.print(Panel(content, title=f"Dead Letter {entry.id}", border_style="red"))
    console.print(Panel(_json(entry.payload), title="Payload", border_style="blue"))


def _json(data: Any) -> str:
    return escape(json.dumps(data, indent=2, default=str, sort_keys=True))
