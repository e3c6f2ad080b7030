"""
End-to-end imports against a real Postgres (TEST_DATABASE_URL)
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ingestion.loaders.catalog_repository import CatalogRepository
from ingestion.runner import CatalogImportRunner
from ingestion.storage_guard import StorageGuard
from models.base import SyncStatus
from models.catalog import (
    Category,
    Image,
    Price,
    Producer,
    Product,
    Stock,
    Unit,
    Variant,
)
from models.sync_health import SyncHealth
from schemas.storage import StorageThresholds

DATA_MODELS = (Category, Producer, Unit, Product, Variant, Stock, Price, Image)


def make_runner(session_factory, settings, repository_factory=CatalogRepository):
    guard = StorageGuard(session_factory, StorageThresholds(limit_bytes=10 ** 12))
    return CatalogImportRunner(
        session_factory,
        settings,
        storage_guard=guard,
        repository_factory=repository_factory,
    )


async def row_counts(session_factory):
    counts = {}
    async with session_factory() as session:
        for model in DATA_MODELS:
            result = await session.execute(select(func.count()).select_from(model))
            counts[model.__tablename__] = result.scalar_one()
    return counts


class FailingVariantRepository(CatalogRepository):
    """Raise a constraint violation when variants are written"""

    async def upsert_batch(self, model, rows, conflict_columns, update_columns):
        if model is Variant:
            raise IntegrityError("INSERT INTO variants ...", {}, Exception("simulated constraint violation"))
        return await super().upsert_batch(model, rows, conflict_columns, update_columns)


@pytest.mark.asyncio
async def test_example_feed_import(pg_session_factory, test_settings, example_feed):
    report = await make_runner(pg_session_factory, test_settings).run(example_feed)

    assert report.status == SyncStatus.SUCCESS
    assert report.stats.created["products"] == 2
    assert report.stats.created["variants"] == 2
    assert report.stats.skipped["products"] == 1

    async with pg_session_factory() as session:
        health = await session.get(SyncHealth, report.health_id)
        assert health.status == "success"
        assert health.error_count == 0

        # Every variant points at an existing product
        orphans = await session.execute(
            select(func.count()).select_from(Variant).outerjoin(Product, Variant.product_id == Product.id)
            .where(Product.id.is_(None))
        )
        assert orphans.scalar_one() == 0


@pytest.mark.asyncio
async def test_reimport_is_idempotent(pg_session_factory, test_settings, example_feed):
    runner = make_runner(pg_session_factory, test_settings)

    await runner.run(example_feed)
    first = await row_counts(pg_session_factory)
    report = await runner.run(example_feed)
    second = await row_counts(pg_session_factory)

    assert first == second
    assert report.stats.total("created") == 0
    assert report.stats.updated["products"] == 2


@pytest.mark.asyncio
async def test_failed_load_leaves_no_rows(pg_session_factory, test_settings, example_feed):
    runner = make_runner(pg_session_factory, test_settings, repository_factory=FailingVariantRepository)

    report = await runner.run(example_feed)

    assert report.status == SyncStatus.FAILED
    assert report.error["code"] == "CONSTRAINT_VIOLATION"
    assert all(count == 0 for count in (await row_counts(pg_session_factory)).values())

    async with pg_session_factory() as session:
        health = await session.get(SyncHealth, report.health_id)
        assert health.status == "failed"
        assert health.error_count == 1


@pytest.mark.asyncio
async def test_storage_probe_and_cleanup(pg_session_factory, test_settings, example_feed, tmp_path):
    await make_runner(pg_session_factory, test_settings).run(example_feed)
    guard = StorageGuard(
        pg_session_factory,
        StorageThresholds(limit_bytes=10 ** 12, keep_product_count=1, backup_dir=str(tmp_path)),
    )

    info = await guard.get_storage_info()
    result = await guard.cleanup()

    assert info.database_size_bytes > 0
    assert result.backup is not None
    assert result.deleted["images"] == 2
    assert result.deleted["products"] == 1
    counts = await row_counts(pg_session_factory)
    assert counts["products"] == 1
    assert counts["variants"] == 1
