"""
Load a transformed catalog in dependency order with batched upserts
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from models.catalog import (
    Category,
    Document,
    Image,
    Price,
    Producer,
    Product,
    ProductProperty,
    Stock,
    Unit,
    Variant,
)
from schemas.catalog import TransformedCatalog
from schemas.stats import ImportStats
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityPlan:
    entity: str
    model: Any
    conflict_columns: Tuple[str, ...]
    update_columns: Tuple[str, ...]


PLANS = {
    plan.entity: plan
    for plan in (
        EntityPlan("categories", Category, ("id",), ("name", "path", "parent_id")),
        EntityPlan("producers", Producer, ("name",), ()),
        EntityPlan("units", Unit, ("id",), ("name", "moq")),
        EntityPlan(
            "products", Product, ("code",),
            (
                "ean", "producer_id", "category_id", "unit_id", "name",
                "description_long", "description_short", "description_html",
                "vat", "url", "delivery_date",
            ),
        ),
        EntityPlan("variants", Variant, ("product_id", "code"), ("weight", "gross_weight")),
        EntityPlan(
            "stock", Stock, ("variant_id", "warehouse_id"),
            ("quantity", "available", "min_order_quantity"),
        ),
        EntityPlan(
            "prices", Price, ("variant_id", "type", "currency"),
            ("gross_price", "net_price", "srp_gross", "srp_net", "valid_from", "valid_to"),
        ),
        EntityPlan("images", Image, ("product_id", "url"), ("is_main", "display_order")),
        EntityPlan("documents", Document, ("product_id", "url"), ("name", "type", "language")),
        EntityPlan(
            "properties", ProductProperty, ("product_id", "name", "language"),
            ("value", "group", "display_order", "is_filterable", "is_public"),
        ),
    )
}


class BatchLoader:
    """
    Persist a TransformedCatalog through a CatalogRepository.

    Ensures:
    - Parents are written before children: categories, producers, units,
      products, variants, then stock/prices, then images/documents/properties
    - Foreign keys come from natural-key → id maps built from each parent's
      upsert results; rows whose parent is missing are counted as skipped
    - Every batch runs in a savepoint under the retry executor; a batch that
      still fails propagates and the caller rolls back the whole transaction

    The loader never commits.
    """

    def __init__(self, repository, retry_executor, batch_size: int = 200):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.repository = repository
        self.retry = retry_executor
        self.batch_size = batch_size
        self.stats = ImportStats()

    async def load(self, catalog: TransformedCatalog) -> ImportStats:
        """
        Load every entity type of the catalog.

        Returns:
            ImportStats with created/updated/skipped/errors per entity. The
            transformer's skipped counts are carried over.
        """
        self.stats = ImportStats()
        for entity, count in catalog.skipped.items():
            self.stats.add("skipped", entity, count)
        started = time.monotonic()

        try:
            await self._load_all(catalog)
        finally:
            self.stats.total_time_seconds = round(time.monotonic() - started, 3)

        logger.info(
            f"Load complete in {self.stats.total_time_seconds}s: "
            f"created={self.stats.total('created')}, updated={self.stats.total('updated')}, "
            f"skipped={self.stats.total('skipped')}"
        )
        return self.stats

    async def _load_all(self, catalog: TransformedCatalog):
        # Dimensions
        results = await self._upsert("categories", [
            record.model_dump() for record in catalog.categories.values()
        ])
        category_ids = {key[0] for key in results}

        results = await self._upsert("producers", [
            {"name": record.name} for record in catalog.producers.values()
        ])
        producer_ids = {key[0]: row_id for key, row_id in results.items()}

        results = await self._upsert("units", [
            record.model_dump() for record in catalog.units.values()
        ])
        unit_ids = {key[0] for key in results}

        # Products
        rows = []
        for record in catalog.products.values():
            rows.append({
                "code": record.code,
                "ean": record.ean,
                "producer_id": producer_ids.get(record.producer_name),
                "category_id": record.category_id if record.category_id in category_ids else None,
                "unit_id": record.unit_id if record.unit_id in unit_ids else None,
                "name": record.name,
                "description_long": record.description_long,
                "description_short": record.description_short,
                "description_html": record.description_html,
                "vat": record.vat,
                "url": record.url,
                "delivery_date": record.delivery_date,
            })
        results = await self._upsert("products", rows)
        product_ids = {key[0]: row_id for key, row_id in results.items()}
        product_codes = {row_id: code for code, row_id in product_ids.items()}

        # Variants
        rows = []
        for record in catalog.variants.values():
            product_id = product_ids.get(record.product_code)
            if product_id is None:
                self._skip("variants", f"variant {record.code} of unknown product {record.product_code}")
                continue
            rows.append({
                "product_id": product_id,
                "code": record.code,
                "weight": record.weight,
                "gross_weight": record.gross_weight,
            })
        results = await self._upsert("variants", rows)
        variant_ids = {
            (product_codes[key[0]], key[1]): row_id for key, row_id in results.items()
        }

        # Stock and prices
        rows = []
        for record in catalog.stock.values():
            variant_id = self._resolve(variant_ids, record.variant_key, "stock")
            if variant_id is None:
                continue
            rows.append({
                "variant_id": variant_id,
                "warehouse_id": record.warehouse_id,
                "quantity": record.quantity,
                "available": record.available,
                "min_order_quantity": record.min_order_quantity,
            })
        await self._upsert("stock", rows)

        rows = []
        for record in catalog.prices.values():
            variant_id = self._resolve(variant_ids, record.variant_key, "prices")
            if variant_id is None:
                continue
            rows.append({
                "variant_id": variant_id,
                "type": record.type,
                "currency": record.currency,
                "gross_price": record.gross_price,
                "net_price": record.net_price,
                "srp_gross": record.srp_gross,
                "srp_net": record.srp_net,
                "valid_from": record.valid_from,
                "valid_to": record.valid_to,
            })
        await self._upsert("prices", rows)

        # Product attachments
        for entity in ("images", "documents", "properties"):
            rows = []
            for record in getattr(catalog, entity).values():
                product_id = self._resolve(product_ids, record.product_code, entity)
                if product_id is None:
                    continue
                row = record.model_dump(exclude={"product_code"})
                row["product_id"] = product_id
                rows.append(row)
            await self._upsert(entity, rows)

    async def _upsert(self, entity: str, rows: List[Dict[str, Any]]) -> Dict[Tuple, Any]:
        """
        Upsert rows of one entity type in batches.

        Returns:
            Map of conflict-key tuple → row id for every row written
        """
        plan = PLANS[entity]
        ids = {}
        if not rows:
            return ids

        total_batches = (len(rows) + self.batch_size - 1) // self.batch_size
        logger.info(f"Loading {len(rows)} {entity} in {total_batches} batches")

        for batch_index, start in enumerate(range(0, len(rows), self.batch_size)):
            batch = rows[start:start + self.batch_size]

            async def operation(batch=batch):
                async with self.repository.savepoint():
                    return await self.repository.upsert_batch(
                        plan.model, batch, plan.conflict_columns, plan.update_columns
                    )

            try:
                results = await self.retry.execute_with_retry(
                    operation,
                    f"upsert {entity} batch {batch_index + 1}/{total_batches}",
                    context={"entity": entity, "batch_index": batch_index, "batch_rows": len(batch)},
                )
            except Exception:
                self.stats.add("errors", entity, len(batch))
                raise

            for result in results:
                ids[result.key] = result.id
                self.stats.add("created" if result.inserted else "updated", entity)

            logger.debug(f"{entity} batch {batch_index + 1}/{total_batches}: {len(batch)} rows")

        return ids

    def _resolve(self, ids: Dict, key, entity: str) -> Optional[Any]:
        row_id = ids.get(key)
        if row_id is None:
            self._skip(entity, f"{entity} row references unknown parent {key}")
        return row_id

    def _skip(self, entity: str, reason: str):
        logger.debug(f"Skipping orphan: {reason}")
        self.stats.add("skipped", entity)
