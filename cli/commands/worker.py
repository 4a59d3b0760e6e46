"""Worker Commands - Run and inspect the job worker"""

import asyncio

import typer
from rich.console import Console
from rich.panel import Panel

from ..utils.formatting import (
    create_config_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
)
from ..utils.services import get_cli_settings, open_services

console = Console()
app = typer.Typer(name="worker", help="Job worker commands")


@app.command("run")
def run_worker(
    ctx: typer.Context,
    once: bool = typer.Option(
        False, "--once", help="Process what is claimable now, wait for it, then exit"
    ),
):
    """▶️ Run the job worker"""
    settings = get_cli_settings(ctx)

    async def _run_once() -> int:
        async with open_services(settings) as services:
            claimed = await services.worker.trigger_processing()
            total = len(claimed)
            while claimed:
                await services.worker.drain()
                claimed = await services.worker.trigger_processing()
                total += len(claimed)
            return total

    async def _run_forever() -> None:
        async with open_services(settings) as services:
            handle = services.worker.start()
            try:
                await handle.task
            finally:
                await services.worker.stop()
                await handle.drain()

    if once:
        try:
            processed = asyncio.run(_run_once())
        except Exception as e:
            print_error(f"Worker failed: {e}")
            raise typer.Exit(1)
        print_success(f"Processed {processed} jobs")
        return

    print_info(
        f"Worker polling every {settings.job_poll_interval_ms}ms "
        f"with concurrency {settings.job_processing_concurrency} (Ctrl+C to stop)"
    )
    try:
        asyncio.run(_run_forever())
    except KeyboardInterrupt:
        print_info("Worker stopped")


@app.command("status")
def status(ctx: typer.Context):
    """📊 Show worker configuration and queue counts"""

    async def _run():
        async with open_services(get_cli_settings(ctx)) as services:
            return await services.worker.get_processor_status()

    try:
        processor_status = asyncio.run(_run())
    except Exception as e:
        print_error(f"Failed to get worker status: {e}")
        console.print(Panel(
            "🚫 [red]Database unreachable[/red]\n\n"
            "Check the connection URL with:\n"
            "[cyan]lms-jobs --database-url <url> worker status[/cyan]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1)

    console.print(create_stats_panel(processor_status.stats))
    console.print(create_config_table(processor_status.config))
