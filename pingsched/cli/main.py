"""
pingsched CLI entry point.

Commands:
    pingsched serve   — Run the HTTP API and the queue engine
    pingsched jobs    — List jobs in the store
    pingsched dlq     — List dead-lettered jobs
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pingsched.core.config import PingschedConfig, get_home

app = typer.Typer(
    name="pingsched",
    help="pingsched — scheduled HTTP calls with retries and a dead-letter lane.",
    add_completion=False,
)

console = Console()

STATUS_STYLES = {"active": "green", "inactive": "yellow", "failed": "red"}


def get_config_path() -> Path:
    """Get the user config file path."""
    return get_home() / "config.toml"


def _load_config() -> PingschedConfig:
    from pingsched.core.errors import ConfigError

    try:
        return PingschedConfig.load()
    except ConfigError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Override bind host"),
    port: int = typer.Option(None, "--port", "-p", help="Override port"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Start the scheduler API server."""
    import uvicorn

    from pingsched.api.server import create_app
    from pingsched.middleware.logging import EventLogger, setup_logging
    from pingsched.scheduler.service import SchedulerService

    config = _load_config()
    if host:
        config.server.host = host
    if port:
        config.server.port = port

    console_level = logging.DEBUG if verbose else getattr(
        logging, config.logging.level.upper(), logging.INFO
    )
    log_dir = config.get_log_dir()
    setup_logging(log_dir=log_dir, console_level=console_level)
    logger = logging.getLogger("pingsched")
    logger.info(f"Database: {config.database.url}")

    event_logger = EventLogger(log_dir=log_dir, log_events=config.logging.log_events)
    service = SchedulerService(config, event_logger=event_logger)

    console.print(
        Panel(
            f"[bold]pingsched[/bold] listening on "
            f"http://{config.server.host}:{config.server.port}",
            border_style="cyan",
        )
    )
    uvicorn.run(
        create_app(service),
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )


@app.command()
def jobs(
    status: str = typer.Option(None, "--status", "-s", help="Filter: active, inactive, failed"),
) -> None:
    """List jobs."""
    from pingsched.core.errors import ValidationError
    from pingsched.scheduler.schemas import parse_status

    job_status = None
    if status:
        try:
            job_status = parse_status(status)
        except ValidationError as e:
            console.print(f"[red]{e.message}: {status}[/red]")
            raise typer.Exit(1)

    rows = asyncio.run(_fetch_jobs(_load_config(), job_status, "created_at"))
    if not rows:
        console.print("[dim]No jobs found.[/dim]")
        raise typer.Exit(0)
    console.print(_jobs_table("Jobs", rows))


@app.command()
def dlq() -> None:
    """List jobs in the dead-letter lane (inactive)."""
    from pingsched.scheduler.job import JobStatus

    rows = asyncio.run(_fetch_jobs(_load_config(), JobStatus.INACTIVE, "updated_at"))
    if not rows:
        console.print("[dim]Dead-letter lane is empty.[/dim]")
        raise typer.Exit(0)
    console.print(_jobs_table("Dead-letter lane", rows))


async def _fetch_jobs(config: PingschedConfig, status, order_by: str) -> list:
    from pingsched.store.sqlite import SQLiteJobStore

    store = SQLiteJobStore(config.database.url)
    await store.initialize()
    try:
        return await store.get_all(status=status, order_by=order_by)
    finally:
        await store.close()


def _jobs_table(title: str, rows: list) -> Table:
    from pingsched.scheduler.job import format_ts
    from pingsched.scheduler.triggers import describe_schedule

    table = Table(title=title, title_style="bold", border_style="dim")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("Schedule")
    table.add_column("Status")
    table.add_column("Next run")
    table.add_column("Last run")
    table.add_column("Error", style="red")

    for job in rows:
        style = STATUS_STYLES.get(job.status.value, "white")
        table.add_row(
            job.id,
            job.name,
            describe_schedule(job),
            f"[{style}]{job.status.value}[/{style}]",
            format_ts(job.next_run) or "-",
            format_ts(job.last_run) or "-",
            job.error_message or "",
        )
    return table


@app.command()
def version() -> None:
    """Show pingsched version."""
    from pingsched import __version__
    console.print(f"pingsched v{__version__}")


@app.command()
def logs(
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    events: bool = typer.Option(False, "--events", "-e", help="Show events log instead"),
) -> None:
    """Show recent logs."""
    from datetime import datetime

    log_dir = _load_config().get_log_dir()
    if not log_dir.exists():
        console.print("[dim]No logs found.[/dim]")
        raise typer.Exit(0)

    date_str = datetime.now().strftime("%Y%m%d")
    if events:
        log_file = log_dir / f"events_{date_str}.jsonl"
    else:
        log_file = log_dir / f"pingsched_{date_str}.log"

    if not log_file.exists():
        console.print(f"[dim]No log file for today: {log_file}[/dim]")
        raise typer.Exit(0)

    with open(log_file, "r", encoding="utf-8") as f:
        all_lines = f.readlines()

    for line in all_lines[-lines:]:
        console.print(line.rstrip(), markup=False)


@app.command()
def config() -> None:
    """Show current configuration."""
    config_path = get_config_path()
    settings = _load_config()

    console.print(Panel("[bold]pingsched Configuration[/bold]", border_style="cyan"))
    console.print()

    console.print(f"[bold]Config file:[/bold] {config_path}")
    if config_path.exists():
        console.print(Panel(config_path.read_text(), title="config.toml", border_style="dim"))
    else:
        console.print("[dim]Not found. Using defaults and environment.[/dim]")

    console.print()
    console.print(Panel(settings.model_dump_json(indent=2), title="effective", border_style="dim"))


if __name__ == "__main__":
    app()
