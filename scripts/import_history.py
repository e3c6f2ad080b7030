"""
Show recorded import runs from sync_health
"""

import asyncio
from datetime import datetime, timedelta, timezone

import typer
from rich.console import Console
from rich.table import Table

from core.config import settings
from core.database import create_engine, create_session_factory
from ingestion.health import ImportHealthRecorder

app = typer.Typer(help="Inspect catalog import history", add_completion=False)
console = Console()


async def with_recorder(action):
    engine = create_engine(settings)
    try:
        return await action(ImportHealthRecorder(create_session_factory(engine)))
    finally:
        await engine.dispose()


@app.command()
def recent(limit: int = typer.Option(10, "--limit", min=1, help="Number of runs to show")):
    """List the most recent import runs"""
    records = asyncio.run(with_recorder(lambda recorder: recorder.recent(limit)))

    table = Table(title="Recent imports", show_header=True, header_style="bold")
    for column in ("ID", "Type", "Status", "Started", "Duration (s)", "Errors", "Memory (MB)"):
        table.add_column(column)
    for record in records:
        table.add_row(
            str(record.id),
            record.sync_type,
            record.status,
            record.start_time.strftime("%Y-%m-%d %H:%M:%S") if record.start_time else "-",
            str(record.duration_seconds if record.duration_seconds is not None else "-"),
            str(record.error_count),
            str(record.memory_usage_mb if record.memory_usage_mb is not None else "-"),
        )
    console.print(table)


@app.command()
def stats(days: int = typer.Option(7, "--days", min=1, help="Window size in days")):
    """Summarize import runs over the last DAYS days"""
    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days)
    summary = asyncio.run(with_recorder(lambda recorder: recorder.stats(start, end)))

    console.print(f"Runs in the last {days} days: {summary['total_runs']}")
    for status, count in summary["by_status"].items():
        console.print(f"  {status}: {count}")
    console.print(f"Average duration: {summary['avg_duration_seconds']}s")
    console.print(f"Total errors: {summary['total_errors']}")
    console.print(f"Success rate: {summary['success_rate']}%")


def main():
    app()


if __name__ == "__main__":
    main()
