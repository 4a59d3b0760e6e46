"""LMS Jobs CLI - Main Entry Point"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from lms_jobs.config.logging import setup_logging
from lms_jobs.config.settings import Settings
from lms_jobs.infra.database import Database

from .commands import dlq, jobs, worker
from .utils.formatting import print_error, print_success
from .utils.services import get_cli_settings

console = Console()

# Create main Typer app
app = typer.Typer(
    name="lms-jobs",
    help="📬 LMS Jobs - background job queue operations",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(worker.app, name="worker")
app.add_typer(dlq.app, name="dlq")


@app.command("init-db")
def init_db(ctx: typer.Context):
    """🗄️ Create the job queue tables"""
    settings = get_cli_settings(ctx)

    async def _run():
        database = Database(settings)
        try:
            await database.create_all()
        finally:
            await database.close()

    try:
        asyncio.run(_run())
    except Exception as e:
        print_error(f"Failed to create tables: {e}")
        raise typer.Exit(1)

    print_success("Job queue tables created")


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(Panel(
        f"📬 [bold cyan]LMS Jobs CLI[/bold cyan]\n\n"
        f"• Version: [green]{__version__}[/green]\n"
        f"• Type: [yellow]Command Line Interface[/yellow]",
        title="Version Info",
        border_style="cyan"
    ))


@app.callback()
def main(
    ctx: typer.Context,
    database_url: Optional[str] = typer.Option(
        None, "--database-url", envvar="DATABASE_URL", help="Database connection URL"
    ),
    log_level: str = typer.Option(
        "WARNING", "--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)"
    ),
):
    """
    📬 LMS Jobs CLI - Background job queue operations

    Enqueue and inspect jobs, run the worker, and manage the dead letter queue.
    """
    overrides = {"log_level": log_level.upper()}
    if database_url:
        overrides["database_url"] = database_url

    try:
        settings = Settings(**overrides)
    except Exception as e:
        print_error(f"Invalid configuration: {e}")
        raise typer.Exit(1)

    setup_logging(settings, cache_loggers=False)
    ctx.obj = settings


if __name__ == "__main__":
    app()
