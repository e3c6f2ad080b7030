"""
Run scheduled catalog imports of FEED_URL until interrupted
"""

import asyncio
import logging

import typer

from core.config import settings
from core.database import create_engine, create_session_factory
from core.logging import setup_logging
from ingestion.runner import CatalogImportRunner
from ingestion.scheduler import ImportScheduler

app = typer.Typer(help="Periodically import the configured catalog feed", add_completion=False)
logger = logging.getLogger(__name__)


async def serve(run_now: bool):
    engine = create_engine(settings)
    scheduler = ImportScheduler(CatalogImportRunner(create_session_factory(engine), settings), settings)
    try:
        scheduler.start()
        if run_now:
            await scheduler.run_import_job()
        # Keep the event loop alive for the scheduler
        await asyncio.Event().wait()
    finally:
        scheduler.stop()
        await engine.dispose()


@app.command()
def run(run_now: bool = typer.Option(False, "--run-now", help="Import once immediately on start")):
    """Start the import scheduler"""
    setup_logging()
    if not settings.FEED_URL:
        typer.echo("FEED_URL is not configured", err=True)
        raise typer.Exit(1)

    try:
        asyncio.run(serve(run_now))
    except KeyboardInterrupt:
        logger.info("Scheduler interrupted")


def main():
    app()


if __name__ == "__main__":
    main()
