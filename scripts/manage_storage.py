"""
Command line tools for checking database storage, backing up and cleaning
the catalog tables
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from core.config import settings
from core.database import create_engine, create_session_factory
from core.logging import setup_logging
from ingestion.storage_guard import StorageGuard
from schemas.storage import StorageStatus, StorageThresholds

app = typer.Typer(help="Database storage management for the catalog import", add_completion=False)
console = Console()


async def with_guard(action):
    """Run `action(guard)` against a freshly built engine"""
    engine = create_engine(settings)
    try:
        guard = StorageGuard(
            create_session_factory(engine),
            StorageThresholds.from_settings(settings),
            max_description_length=settings.WARNING_DESCRIPTION_LENGTH,
        )
        return await action(guard)
    finally:
        await engine.dispose()


def _mb(size: Optional[int]) -> str:
    if size is None:
        return "-"
    return f"{size / (1024 * 1024):.2f} MB"


@app.command()
def check():
    """Show database size against the configured limit"""
    setup_logging()
    info = asyncio.run(with_guard(lambda guard: guard.get_storage_info()))

    color = {
        StorageStatus.OK: "green",
        StorageStatus.WARNING: "yellow",
        StorageStatus.CRITICAL: "red",
    }.get(info.status, "white")
    console.print(
        f"Database size: {_mb(info.database_size_bytes)} of {_mb(info.limit_bytes)} "
        f"({info.percent_of_limit if info.percent_of_limit is not None else '?'}%) "
        f"[bold {color}]{info.status.value}[/bold {color}]"
    )
    if info.error:
        console.print(f"[bold red]Error:[/bold red] {info.error}")

    if info.largest_tables:
        table = Table(title="Largest tables", show_header=True, header_style="bold")
        table.add_column("Table")
        table.add_column("Size", justify="right")
        table.add_column("Rows (est.)", justify="right")
        for entry in info.largest_tables:
            table.add_row(entry.table_name, _mb(entry.total_bytes), str(entry.row_estimate or 0))
        console.print(table)

    if info.status == StorageStatus.CRITICAL:
        raise typer.Exit(1)


@app.command()
def backup():
    """Write all catalog tables to a JSON backup file"""
    setup_logging()
    result = asyncio.run(with_guard(lambda guard: guard.backup()))

    console.print(f"[green]Backup written to {result.path}[/green]")
    for table_name, count in result.tables.items():
        console.print(f"  {table_name}: {count} rows")


@app.command()
def cleanup(
    no_backup: bool = typer.Option(False, "--no-backup", help="Skip the backup before deleting"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete images, documents, properties and all but the most recent products"""
    setup_logging()
    if not yes:
        typer.confirm(
            f"This keeps only the {settings.STORAGE_KEEP_PRODUCT_COUNT} most recent products. Continue?",
            abort=True,
        )

    result = asyncio.run(with_guard(lambda guard: guard.cleanup(backup=not no_backup)))

    if result.backup:
        console.print(f"Backup: {result.backup.path}")
    table = Table(title="Deleted rows", show_header=True, header_style="bold")
    table.add_column("Table")
    table.add_column("Rows", justify="right")
    for table_name, count in result.deleted.items():
        table.add_row(table_name, str(count))
    console.print(table)
    console.print(
        f"Truncated descriptions: {result.descriptions_truncated}; "
        f"size {_mb(result.size_before_bytes)} → {_mb(result.size_after_bytes)}"
    )


def main():
    app()


if __name__ == "__main__":
    main()
