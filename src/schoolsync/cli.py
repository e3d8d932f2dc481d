"""CLI interface for SchoolSync."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from schoolsync import __version__
from schoolsync.config import Settings, get_settings
from schoolsync.database.repository import TaskStore
from schoolsync.errors import ExportParseError, StoreError
from schoolsync.logging_setup import setup_logging
from schoolsync.models.task_record import TaskRecord

app = typer.Typer(
    name="schoolsync",
    help="Import homework exports, keep them duplicate-free, and plan study sessions.",
    no_args_is_help=True,
)
console = Console()


def get_store(settings: Settings) -> TaskStore:
    """Get store instance, ensuring the database directory exists."""
    settings.database_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        return TaskStore(settings.database_url)
    except StoreError as e:
        console.print(f"[red]Cannot open database: {e}[/red]")
        raise typer.Exit(1)


def load_settings() -> Settings:
    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)
    setup_logging(
        log_dir=settings.log_dir,
        console_level=settings.log_level.upper(),
        console=console,
    )
    return settings


def records_table(records: list[TaskRecord], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Date", style="cyan", no_wrap=True)
    table.add_column("Subject", style="magenta")
    table.add_column("Type")
    table.add_column("Task")
    table.add_column("Done", justify="center")
    table.add_column("ID", style="dim")

    for record in records:
        task_preview = (
            record.task_text[:60] + "..." if len(record.task_text) > 60 else record.task_text
        )
        kind = record.kind
        if record.is_orphan:
            kind += " [yellow](orphan)[/yellow]"
        table.add_row(
            record.date,
            record.subject or "-",
            kind,
            task_preview,
            "✓" if record.completed else "",
            record.id[:12],
        )
    return table


@app.command()
def sync():
    """
    Run one reconciliation pass.

    Parses every export in the data directory, imports rows that are not
    stored yet, and adds study sessions for upcoming tests.
    """
    settings = load_settings()
    from schoolsync.services.synchronizer import SyncStatus, Synchronizer

    store = get_store(settings)
    synchronizer = Synchronizer.from_settings(store, settings)

    console.print("[bold blue]Starting SchoolSync...[/bold blue]")
    console.print(f"  Data directory: {settings.data_dir}")
    console.print(f"  Database: {settings.database_path}\n")

    with console.status("[yellow]Processing exports...[/yellow]"):
        outcome = synchronizer.run_pass()

    for path in outcome.skipped_files:
        console.print(f"  [red]✗[/red] {path.name}: could not be parsed")

    if outcome.status == SyncStatus.ERROR:
        console.print(f"[red]{outcome.error}[/red]")
        raise typer.Exit(1)

    console.print("[bold]Summary:[/bold]")
    console.print(f"  Imported: [green]{outcome.imported}[/green]")
    console.print(f"  Study sessions: [green]{outcome.study_sessions}[/green]")
    console.print(f"  Total entries: [cyan]{outcome.new_count}[/cyan]")


@app.command()
def watch():
    """Sync now, then re-sync whenever an export file changes."""
    settings = load_settings()
    from schoolsync.services.synchronizer import Synchronizer
    from schoolsync.services.watcher import ExportWatcher, ReconcileLoop

    store = get_store(settings)
    synchronizer = Synchronizer.from_settings(store, settings)
    synchronizer.run_pass().log()

    loop = ReconcileLoop(synchronizer, maxsize=settings.signal_queue_size)
    watcher = ExportWatcher(
        settings.data_dir,
        on_change=loop.signal,
        prefix=settings.export_prefix,
        debounce_seconds=settings.debounce_seconds,
    )
    console.print(f"[bold blue]Watching {settings.data_dir} (Ctrl+C to stop)[/bold blue]")
    try:
        asyncio.run(loop.run(on_ready=watcher.start))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping...[/yellow]")
    finally:
        watcher.stop()


@app.command()
def parse(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Export file to parse"),
):
    """Parse a single export file and show the normalized rows."""
    from schoolsync.services.normalizer import parse_export_file

    try:
        records = parse_export_file(file)
    except ExportParseError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"Found [green]{len(records)}[/green] entries in {file}")
    console.print(records_table(records, title=file.name))


@app.command("list")
def list_entries(
    date: Optional[str] = typer.Option(None, "--date", "-d", help="Only show one day (YYYY-MM-DD)"),
):
    """List stored entries."""
    settings = load_settings()
    store = get_store(settings)

    records = store.get_for_date(date) if date else store.get_all()
    if not records:
        console.print("[yellow]No entries.[/yellow]")
        return
    console.print(records_table(records, title=f"Entries ({len(records)})"))


@app.command()
def children(record_id: str = typer.Argument(..., help="Parent entry id")):
    """Show the study sessions derived from an entry."""
    settings = load_settings()
    store = get_store(settings)

    records = store.children_of(record_id)
    if not records:
        console.print("[yellow]No study sessions for this entry.[/yellow]")
        return
    console.print(records_table(records, title=f"Children of {record_id[:12]}"))


@app.command()
def delete(
    record_id: str = typer.Argument(..., help="Entry id"),
    cascade: bool = typer.Option(
        False, "--cascade", "-c", help="Also delete the entry's study sessions"
    ),
):
    """Delete an entry. Study sessions are kept (orphaned) unless --cascade is given."""
    settings = load_settings()
    from schoolsync.services.entry_service import EntryService

    service = EntryService(get_store(settings))

    if cascade:
        result = service.delete_cascade(record_id)
        if not result.deleted:
            console.print(f"[red]Entry not found: {record_id}[/red]")
            raise typer.Exit(1)
        console.print(f"[green]Deleted {result.deleted_count} entr(y/ies)[/green]")
        return

    outcome = service.delete_entry(record_id)
    if not outcome.deleted:
        console.print(f"[red]Entry not found: {record_id}[/red]")
        raise typer.Exit(1)
    console.print("[green]Entry deleted[/green]")
    if outcome.had_children:
        console.print(f"  [yellow]{outcome.children_orphaned} study session(s) orphaned[/yellow]")


@app.command()
def stats():
    """Show store statistics."""
    settings = load_settings()
    store = get_store(settings)

    table = Table(title="SchoolSync Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    for key, value in store.get_stats().items():
        table.add_row(key.replace("_", " ").capitalize(), str(value))
    console.print(table)


@app.command()
def config():
    """Show current configuration."""
    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="SchoolSync Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Data Directory", str(settings.data_dir))
    table.add_row("Export Prefix", settings.export_prefix)
    table.add_row("Database Path", str(settings.database_path))
    table.add_row("Snapshot Path", str(settings.snapshot_path or "(disabled)"))
    table.add_row("Debounce", f"{settings.debounce_seconds}s")
    table.add_row("Study Days", str(settings.study_days_max))
    table.add_row("Test Keywords", ", ".join(settings.test_keywords))
    table.add_row("Log Directory", str(settings.log_dir))

    console.print(table)


@app.command()
def version():
    """Show version information."""
    console.print(f"SchoolSync v{__version__}")


@app.callback()
def main():
    """
    SchoolSync - homework export importer.

    Imports spreadsheet exports into a local database without ever
    duplicating a row, even after entries were moved or edited, and
    schedules study sessions ahead of tests.
    """
    pass


if __name__ == "__main__":
    app()
