"""
Unit tests for the batch loader
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from conftest import FakeCatalogRepository
from core.exceptions import ConstraintViolationError, FatalImportError
from ingestion.loaders.batch_loader import BatchLoader
from ingestion.parsers.xml_parser import parse
from ingestion.retry import RetryExecutor
from ingestion.transformers.catalog_transformer import CatalogTransformer
from schemas.catalog import (
    PriceRecord,
    ProductRecord,
    StockRecord,
    TransformedCatalog,
    VariantRecord,
)


def make_loader(repository, batch_size=200, max_attempts=3):
    retry = RetryExecutor(max_attempts=max_attempts, initial_delay=0.0, jitter_max=0.0, sleep=AsyncMock())
    return BatchLoader(repository, retry, batch_size=batch_size)


def transform(feed: bytes) -> TransformedCatalog:
    return CatalogTransformer().transform(parse(feed).products)


class TestBatchLoader:
    """Test loading a transformed catalog"""

    @pytest.mark.asyncio
    async def test_example_feed_counts(self, example_feed, fake_repository):
        stats = await make_loader(fake_repository).load(transform(example_feed))

        assert stats.created["products"] == 2
        assert stats.created["variants"] == 2
        assert stats.created["categories"] == 2
        assert stats.created["producers"] == 1
        assert stats.created["stock"] == 2
        assert stats.created["prices"] == 2
        assert stats.created["images"] == 2
        assert stats.skipped["products"] == 1
        assert stats.total("errors") == 0

    @pytest.mark.asyncio
    async def test_parents_load_before_children(self, example_feed, fake_repository):
        await make_loader(fake_repository).load(transform(example_feed))

        order = list(dict.fromkeys(fake_repository.calls))
        assert order == ["categories", "producers", "units", "products", "variants", "stock", "prices", "images"]

    @pytest.mark.asyncio
    async def test_foreign_keys_resolved_from_parent_ids(self, example_feed, fake_repository):
        await make_loader(fake_repository).load(transform(example_feed))

        products = {row["code"]: row for row in fake_repository.rows("products")}
        producer_id = fake_repository.rows("producers")[0]["id"]
        assert products["P1"]["producer_id"] == producer_id
        assert products["P1"]["category_id"] == "10"
        assert products["P2"]["category_id"] == "cat_garden"

        product_ids = {row["id"] for row in products.values()}
        variant_ids = {row["id"] for row in fake_repository.rows("variants")}
        assert all(row["product_id"] in product_ids for row in fake_repository.rows("variants"))
        assert all(row["variant_id"] in variant_ids for row in fake_repository.rows("stock"))
        assert all(row["variant_id"] in variant_ids for row in fake_repository.rows("prices"))

    @pytest.mark.asyncio
    async def test_second_load_updates(self, example_feed, fake_repository):
        """Re-importing the same feed updates rows and creates none"""
        await make_loader(fake_repository).load(transform(example_feed))
        counts = {name: len(rows) for name, rows in fake_repository.tables.items()}

        stats = await make_loader(fake_repository).load(transform(example_feed))

        assert {name: len(rows) for name, rows in fake_repository.tables.items()} == counts
        assert stats.total("created") == 0
        assert stats.updated["products"] == 2
        assert stats.updated["variants"] == 2

    @pytest.mark.asyncio
    async def test_batches_use_savepoints(self, example_feed, fake_repository):
        await make_loader(fake_repository, batch_size=1).load(transform(example_feed))

        assert fake_repository.calls.count("products") == 2
        assert fake_repository.savepoints == len(fake_repository.calls)

    @pytest.mark.asyncio
    async def test_orphans_are_skipped(self, fake_repository):
        catalog = TransformedCatalog()
        catalog.products["P1"] = ProductRecord(code="P1", name="Known")
        catalog.variants[("P1", "V1")] = VariantRecord(product_code="P1", code="V1")
        catalog.variants[("GHOST", "V9")] = VariantRecord(product_code="GHOST", code="V9")
        catalog.stock[("GHOST", "V9", "main")] = StockRecord(
            product_code="GHOST", variant_code="V9", quantity=1, available=True
        )
        catalog.prices[("P1", "V1", "retail", "EUR")] = PriceRecord(product_code="P1", variant_code="V1")

        stats = await make_loader(fake_repository).load(catalog)

        assert stats.created["variants"] == 1
        assert stats.skipped["variants"] == 1
        assert stats.skipped["stock"] == 1
        assert stats.created["prices"] == 1
        assert fake_repository.rows("stock") == []

    @pytest.mark.asyncio
    async def test_constraint_violation_propagates(self, example_feed):
        repository = FakeCatalogRepository(failures={
            "variants": [IntegrityError("INSERT ...", {}, Exception("duplicate key"))],
        })
        loader = make_loader(repository)

        with pytest.raises(ConstraintViolationError):
            await loader.load(transform(example_feed))

        assert loader.stats.errors["variants"] == 2
        assert loader.stats.created["products"] == 2
        # Nothing after the failing entity type is attempted
        assert "stock" not in repository.calls

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, example_feed):
        repository = FakeCatalogRepository(failures={
            "prices": [OperationalError("INSERT ...", {}, Exception("connection reset"))],
        })

        stats = await make_loader(repository).load(transform(example_feed))

        assert stats.created["prices"] == 2
        assert repository.calls.count("prices") == 2

    @pytest.mark.asyncio
    async def test_retry_exhaustion_is_fatal(self, example_feed):
        error = OperationalError("INSERT ...", {}, Exception("connection reset"))
        repository = FakeCatalogRepository(failures={"stock": [error, error]})

        with pytest.raises(FatalImportError):
            await make_loader(repository, max_attempts=2).load(transform(example_feed))

    def test_invalid_batch_size(self, fake_repository):
        with pytest.raises(ValueError):
            make_loader(fake_repository, batch_size=0)
