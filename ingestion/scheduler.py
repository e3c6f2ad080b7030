import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import Settings, settings as default_settings
from ingestion.runner import CatalogImportRunner
from models.base import SyncType
from schemas.stats import ImportOptions

logger = logging.getLogger(__name__)


class ImportScheduler:
    """Periodic import of the configured feed URL"""

    def __init__(self, runner: CatalogImportRunner, app_settings: Optional[Settings] = None):
        self.settings = app_settings or default_settings
        self.runner = runner
        self.scheduler = AsyncIOScheduler()

    async def run_import_job(self):
        """Job to import the configured feed"""
        feed_url = self.settings.FEED_URL
        if not feed_url:
            logger.warning("Scheduler: FEED_URL is not configured, skipping import")
            return None

        logger.info("Scheduler: Starting catalog import")
        report = await self.runner.run(
            feed_url,
            ImportOptions(batch_size=self.settings.ETL_BATCH_SIZE, sync_type=SyncType.SCHEDULED),
        )
        if report.succeeded:
            logger.info(f"Scheduler: Import finished with status {report.status.value}")
        else:
            logger.error(f"Scheduler: Import failed - {report.error}")
        return report

    def start(self):
        """Start the scheduler"""
        # max_instances=1: a slow import delays the next run instead of overlapping it
        self.scheduler.add_job(
            self.run_import_job,
            trigger=IntervalTrigger(minutes=self.settings.IMPORT_SCHEDULE_MINUTES),
            id="catalog_import",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Import scheduler started (every {self.settings.IMPORT_SCHEDULE_MINUTES} minutes)")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Import scheduler stopped")
