"""
Command line entry point for importing a supplier XML catalog feed
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from core.config import Settings, settings
from core.database import create_engine, create_session_factory
from core.logging import setup_logging
from ingestion.runner import CatalogImportRunner
from models.base import SyncType
from schemas.catalog import ENTITY_TYPES
from schemas.stats import ImportOptions, ImportReport

app = typer.Typer(help="Import a supplier XML catalog feed into the catalog tables", add_completion=False)
console = Console()


def build_options(
    limit: Optional[int],
    skip_images: bool,
    truncate: Optional[int],
    batch_size: Optional[int],
    sync_type: SyncType,
    app_settings: Settings = settings,
) -> ImportOptions:
    """
    Build ImportOptions passing only what the user actually chose, so the
    storage guard's reduced import can still fill in the rest.
    """
    values = {
        "batch_size": batch_size or app_settings.ETL_BATCH_SIZE,
        "sync_type": sync_type,
    }
    if limit is not None:
        values["limit"] = limit
    if skip_images:
        values["skip_images"] = True
    if truncate is not None:
        values["truncate_descriptions"] = True
        values["max_description_length"] = truncate
    return ImportOptions(**values)


async def run_import(source: str, options: ImportOptions, app_settings: Settings = settings) -> ImportReport:
    engine = create_engine(app_settings)
    try:
        runner = CatalogImportRunner(create_session_factory(engine), app_settings)
        return await runner.run(source, options)
    finally:
        await engine.dispose()


def render_report(report: ImportReport):
    table = Table(title="Catalog import", show_header=True, header_style="bold")
    table.add_column("Entity")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Errors", justify="right")

    stats = report.stats
    for entity in ENTITY_TYPES:
        table.add_row(
            entity,
            str(stats.created.get(entity, 0)),
            str(stats.updated.get(entity, 0)),
            str(stats.skipped.get(entity, 0)),
            str(stats.errors.get(entity, 0)),
        )
    console.print(table)

    color = {"success": "green", "partial_success": "yellow"}.get(report.status.value, "red")
    console.print(
        f"[bold {color}]{report.status.value}[/bold {color}] "
        f"{report.products_parsed} products parsed ({report.dialect or 'unknown'} feed), "
        f"{report.coercions} numeric coercions, {len(report.transform_errors)} transform errors, "
        f"{report.duration_seconds}s"
    )
    if report.storage_status:
        console.print(f"Storage status: {report.storage_status}")
    if report.health_id is not None:
        console.print(f"Health record: sync_health #{report.health_id}")
    if report.error:
        console.print(f"[bold red]Error:[/bold red] {report.error['message']}")


@app.command()
def import_feed(
    source: str = typer.Argument(..., help="Path or http(s) URL of the XML feed"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Import at most N products"),
    skip_images: bool = typer.Option(False, "--skip-images", help="Do not import product images"),
    truncate: Optional[int] = typer.Option(
        None, "--truncate", min=4, help="Truncate long descriptions to N characters"
    ),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Rows per upsert batch"),
    sync_type: SyncType = typer.Option(SyncType.MANUAL, "--sync-type", help="Recorded run type"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    """Import SOURCE and print per-entity counts"""
    setup_logging(log_level)
    options = build_options(limit, skip_images, truncate, batch_size, sync_type)

    report = asyncio.run(run_import(source, options))
    render_report(report)

    if not report.succeeded:
        raise typer.Exit(1)


def main():
    app()


if __name__ == "__main__":
    main()
