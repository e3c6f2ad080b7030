from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from ingestion.scheduler import ImportScheduler
from models.base import SyncStatus, SyncType
from schemas.stats import ImportReport


def make_runner(status=SyncStatus.SUCCESS):
    runner = MagicMock()
    runner.run = AsyncMock(return_value=ImportReport(status=status, sync_type=SyncType.SCHEDULED))
    return runner


@pytest.mark.asyncio
async def test_scheduler_job_imports_feed_url(test_settings):
    test_settings.FEED_URL = "https://feeds.example.com/catalog.xml"
    runner = make_runner()
    scheduler = ImportScheduler(runner, test_settings)

    report = await scheduler.run_import_job()

    assert report.status == SyncStatus.SUCCESS
    source, options = runner.run.await_args.args
    assert source == "https://feeds.example.com/catalog.xml"
    assert options.sync_type == SyncType.SCHEDULED
    assert options.batch_size == test_settings.ETL_BATCH_SIZE


@pytest.mark.asyncio
async def test_scheduler_job_skips_without_feed_url(test_settings):
    runner = make_runner()
    scheduler = ImportScheduler(runner, test_settings)

    assert await scheduler.run_import_job() is None
    runner.run.assert_not_awaited()


@pytest.mark.asyncio
async def test_scheduler_job_returns_failed_report(test_settings):
    test_settings.FEED_URL = "https://feeds.example.com/catalog.xml"
    scheduler = ImportScheduler(make_runner(SyncStatus.FAILED), test_settings)

    report = await scheduler.run_import_job()

    assert report.succeeded is False


@pytest.mark.asyncio
async def test_scheduler_never_overlaps_runs(test_settings):
    test_settings.IMPORT_SCHEDULE_MINUTES = 30
    scheduler = ImportScheduler(make_runner(), test_settings)

    scheduler.start()
    try:
        job = scheduler.scheduler.get_job("catalog_import")
        assert job.max_instances == 1
        assert job.coalesce is True
        assert job.trigger.interval == timedelta(minutes=30)
    finally:
        scheduler.stop()
