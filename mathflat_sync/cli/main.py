"""
Typer CLI for the mathflat-sync service.

Commands:
    mfs collect daily-work   - Collect daily activity for a date
    mfs collect homework     - Collect class homework for a date
    mfs collect problems     - Collect wrong-answer detail (one hop, or --follow)
    mfs collect resume       - Run chain jobs that never started or stalled
    mfs db init              - Initialize database tables
    mfs version              - Show version information

Usage:
    mfs --help
    mfs collect daily-work --date 2025-03-14
    mfs collect homework --class 1234 --class 5678
    mfs collect problems --follow
"""

from __future__ import annotations

from datetime import date

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from mathflat_sync import __version__
from mathflat_sync.core.dates import parse_date
from mathflat_sync.core.exceptions import MathflatSyncError
from mathflat_sync.core.logging import configure_logging

app = typer.Typer(help="mathflat-sync CLI: MathFlat -> PostgreSQL ingestion pipeline")
console = Console()


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """Collect MathFlat learning activity into the academy database."""
    configure_logging(level="DEBUG" if verbose else None)


def _date(value: str | None) -> date:
    try:
        return parse_date(value)
    except ValueError:
        rprint(f"[red]✗[/red] Invalid date: {value} (expected YYYY-MM-DD)")
        raise typer.Exit(code=2)


def _print_errors(errors: list[str]) -> None:
    if not errors:
        rprint("\n[bold green]✓ Collection complete![/bold green]")
        return
    rprint(f"\n[yellow]⚠[/yellow] {len(errors)} errors occurred during collection")
    for error in errors[:20]:
        rprint(f"  [red]•[/red] {error}")
    if len(errors) > 20:
        rprint(f"  ... and {len(errors) - 20} more (see logs)")


# ========================================
# Collect Commands
# ========================================

collect_app = typer.Typer(help="Collection phases (daily work, homework, wrong-answer detail)")
app.add_typer(collect_app, name="collect")


@collect_app.command("daily-work")
def collect_daily_work(
    target: str | None = typer.Option(None, "--date", "-d", help="Civil date YYYY-MM-DD (default: today)"),
    students: list[str] | None = typer.Option(None, "--student", "-s", help="MathFlat student id (repeatable)"),
    with_details: bool = typer.Option(False, "--with-details", help="Run one wrong-detail pass afterwards"),
) -> None:
    """
    Collect every active student's daily activity.

    Examples:
        mfs collect daily-work
        mfs collect daily-work --date 2025-03-14 --student 1001 --student 1002
    """
    from mathflat_sync.collectors import DailyWorkCollector
    from mathflat_sync.upstream import MathflatClient

    day = _date(target)
    rprint(f"\n[bold cyan]MathFlat Daily Work[/bold cyan]  {day.isoformat()}\n")

    try:
        with MathflatClient() as client:
            result = DailyWorkCollector(client).collect(day, students or None, collect_details=with_details)
    except MathflatSyncError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Daily Work Results", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Students", str(result.total_students))
    table.add_row("Rows upserted", str(result.total_work_count))
    if result.details is not None:
        table.add_row("Detail batches", str(result.details.batches_processed))
        table.add_row("Wrong problems", str(result.details.wrong_problems_collected))
        table.add_row("Remaining", str(result.details.remaining))
    table.add_row("Errors", str(len(result.errors)) if result.errors else "-", style="red" if result.errors else None)
    console.print(table)
    _print_errors(result.errors)


@collect_app.command("homework")
def collect_homework(
    target: str | None = typer.Option(None, "--date", "-d", help="Civil date YYYY-MM-DD (default: today)"),
    homework_date: str | None = typer.Option(None, "--homework-date", help="Date stored on the rows"),
    classes: list[str] | None = typer.Option(None, "--class", "-c", help="MathFlat class id (repeatable)"),
    collection_type: str = typer.Option("first", "--type", help="Collection round"),
) -> None:
    """
    Collect homework for the given classes, or those scheduled on the date.

    Examples:
        mfs collect homework
        mfs collect homework --class 1234 --homework-date 2025-03-13
    """
    from mathflat_sync.collectors import HomeworkCollector
    from mathflat_sync.upstream import MathflatClient

    day = _date(target)
    stored = _date(homework_date) if homework_date else day
    rprint(f"\n[bold cyan]MathFlat Homework[/bold cyan]  {day.isoformat()} -> {stored.isoformat()}\n")

    try:
        with MathflatClient() as client:
            result = HomeworkCollector(client).collect(collection_type, day, classes or None, stored)
    except (MathflatSyncError, ValueError) as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Homework Results", show_header=True)
    table.add_column("Class", style="cyan")
    table.add_column("Students", justify="right")
    table.add_column("Homework", justify="right", style="green")
    table.add_column("New", justify="right", style="green")
    table.add_column("Updated", justify="right", style="yellow")
    table.add_column("Error", style="red")
    for processed in result.processed_classes:
        table.add_row(
            processed.class_name,
            str(processed.student_count),
            str(processed.homework_count),
            str(processed.inserted),
            str(processed.updated),
            processed.error or "-",
        )
    table.add_section()
    table.add_row("TOTAL", "", str(result.total_homework_count), "", "", "", style="bold")
    console.print(table)
    _print_errors(result.errors)


def _print_hops(outcomes) -> None:
    table = Table(title="Wrong-Detail Hops", show_header=True)
    table.add_column("Depth", justify="right", style="cyan")
    table.add_column("Batches", justify="right")
    table.add_column("Problems", justify="right", style="green")
    table.add_column("Remaining", justify="right", style="yellow")
    table.add_column("Message")
    for outcome in outcomes:
        result = outcome.result
        table.add_row(
            str(outcome.depth),
            str(result.batches_processed) if result else "-",
            str(result.wrong_problems_collected) if result else "-",
            str(result.remaining) if result else "-",
            outcome.message,
        )
    console.print(table)


@collect_app.command("problems")
def collect_problems(
    target: str | None = typer.Option(None, "--date", "-d", help="Civil date YYYY-MM-DD (default: today)"),
    depth: int = typer.Option(0, "--depth", min=0, help="Chain depth of this hop"),
    follow: bool = typer.Option(False, "--follow", help="Run continuation hops in-process instead of over HTTP"),
) -> None:
    """
    Collect wrong-answer detail for a date.

    Without --follow, one budgeted hop runs here and continuation is
    triggered against the running service. With --follow, hops run in
    this process until the work is done or the depth ceiling is reached.
    """
    from mathflat_sync.collectors import ChainOrchestrator, ProblemDetailCollector, follow_chain, run_hop
    from mathflat_sync.upstream import MathflatClient

    day = _date(target)
    rprint(f"\n[bold cyan]MathFlat Wrong-Answer Detail[/bold cyan]  {day.isoformat()} (depth {depth})\n")

    orchestrator = ChainOrchestrator()
    errors: list[str] = []
    try:
        with MathflatClient() as client:
            collector = ProblemDetailCollector(client)
            if follow:
                outcomes = follow_chain(collector, orchestrator, day, depth)
            else:
                outcomes = [run_hop(collector, orchestrator, day, depth)]
    except MathflatSyncError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    for outcome in outcomes:
        if outcome.result:
            errors.extend(outcome.result.errors)
    _print_hops(outcomes)
    if outcomes[-1].next_job:
        rprint(f"  Continuation job {outcomes[-1].next_job['id']}: {outcomes[-1].next_job['status']}")
    _print_errors(errors)


@collect_app.command("resume")
def collect_resume() -> None:
    """
    Run chain jobs that never started, or stalled after starting.

    Each job continues in-process until its date is done or the depth
    ceiling is reached.
    """
    from mathflat_sync.collectors import ChainOrchestrator, ProblemDetailCollector, follow_chain
    from mathflat_sync.upstream import MathflatClient

    orchestrator = ChainOrchestrator()
    jobs = orchestrator.find_resumable()
    if not jobs:
        rprint("[green]✓[/green] No chain jobs to resume")
        return

    rprint(f"\n[bold cyan]Resuming {len(jobs)} chain jobs[/bold cyan]\n")
    failed = 0
    for job in jobs:
        day = date.fromisoformat(job["target_date"])
        try:
            with MathflatClient() as client:
                outcomes = follow_chain(
                    ProblemDetailCollector(client), orchestrator, day, job["chain_depth"], job["id"]
                )
        except MathflatSyncError as e:
            failed += 1
            logger.error("Chain job {} failed: {}", job["id"], e)
            rprint(f"[red]✗[/red] Job {job['id']} ({day.isoformat()}, depth {job['chain_depth']}): {e}")
            continue
        rprint(f"[green]✓[/green] Job {job['id']} ({day.isoformat()}): {outcomes[-1].message}")

    if failed:
        raise typer.Exit(code=1)


# ========================================
# Database Commands
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from mathflat_sync.db.database import init_db

    logger.info("Initializing database tables...")
    init_db()
    rprint("[green]✓[/green] Database initialized!")


@app.command("version")
def show_version() -> None:
    """Show version information."""
    settings = get_settings()
    rprint(f"[bold]mathflat-sync[/bold] v{__version__}")
    rprint(f"  Upstream: {settings.mathflat_base_url}")
    rprint(f"  Timezone: {settings.timezone}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
