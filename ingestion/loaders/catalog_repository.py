"""
Catalog table access: upserts keyed on natural identifiers, the import
lock, and the size/cleanup queries used by the storage guard
"""

from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from sqlalchemy import delete, func, literal_column, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from models.catalog import (
    Document,
    Image,
    Price,
    Product,
    ProductProperty,
    Stock,
    Variant,
)
import logging

logger = logging.getLogger(__name__)


IMPORT_LOCK_KEY = "catalog import"


class UpsertResult(NamedTuple):
    id: Any
    key: Tuple[Any, ...]
    inserted: bool


class CatalogRepository:
    """
    Repository over the catalog tables for one session.

    Ensures:
    - Re-running an upsert never duplicates rows (ON CONFLICT on the natural key)
    - Callers learn the generated id and the created/updated split per row
    - Nothing here commits; transaction boundaries belong to the caller
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # ------------------------------------------------------------------
    # Import transaction
    # ------------------------------------------------------------------

    async def acquire_import_lock(self):
        """Block until no other import holds the lock; released at commit/rollback"""
        await self.db.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": IMPORT_LOCK_KEY},
        )

    def savepoint(self):
        return self.db.begin_nested()

    async def upsert_batch(
        self,
        model,
        rows: List[Dict[str, Any]],
        conflict_columns: Sequence[str],
        update_columns: Sequence[str],
    ) -> List[UpsertResult]:
        """
        INSERT ... ON CONFLICT (natural key) DO UPDATE ... RETURNING.

        `(xmax = 0)` is true only for rows this statement inserted, which
        gives the created/updated split without a second query.

        Returns:
            One UpsertResult per row, keyed by the conflict column values
        """
        if not rows:
            return []

        table = model.__table__
        stmt = insert(table).values(rows)
        set_ = {column: stmt.excluded[column] for column in update_columns}
        set_["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=list(conflict_columns), set_=set_)
        stmt = stmt.returning(
            table.c.id,
            *[table.c[column] for column in conflict_columns],
            literal_column("(xmax = 0)").label("inserted"),
        )

        result = await self.db.execute(stmt)
        key_width = len(conflict_columns)
        return [
            UpsertResult(id=row[0], key=tuple(row[1:1 + key_width]), inserted=bool(row[-1]))
            for row in result.all()
        ]

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def database_size(self) -> int:
        result = await self.db.execute(text("SELECT pg_database_size(current_database())"))
        return int(result.scalar_one())

    async def largest_tables(self, limit: int = 10) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            text(
                "SELECT relname AS table_name, "
                "pg_total_relation_size(relid) AS total_bytes, "
                "n_live_tup AS row_estimate "
                "FROM pg_stat_user_tables "
                "ORDER BY pg_total_relation_size(relid) DESC "
                "LIMIT :limit"
            ),
            {"limit": limit},
        )
        return [dict(row) for row in result.mappings().all()]

    async def fetch_rows(self, model) -> List[Dict[str, Any]]:
        result = await self.db.execute(select(model.__table__))
        return [dict(row) for row in result.mappings().all()]

    async def delete_all(self, model) -> int:
        result = await self.db.execute(delete(model))
        return result.rowcount or 0

    async def prune_products(self, keep: int) -> Dict[str, int]:
        """
        Delete all but the `keep` most recently updated products and
        everything that hangs off them.
        """
        keep_ids = (
            select(Product.id)
            .order_by(Product.updated_at.desc(), Product.id.desc())
            .limit(keep)
            .scalar_subquery()
        )
        doomed_products = select(Product.id).where(Product.id.not_in(keep_ids))
        doomed_variants = select(Variant.id).where(Variant.product_id.in_(doomed_products))

        deleted = {}
        for model in (Stock, Price):
            result = await self.db.execute(delete(model).where(model.variant_id.in_(doomed_variants)))
            deleted[model.__tablename__] = result.rowcount or 0
        for model in (Image, Document, ProductProperty, Variant):
            result = await self.db.execute(delete(model).where(model.product_id.in_(doomed_products)))
            deleted[model.__tablename__] = result.rowcount or 0

        result = await self.db.execute(delete(Product).where(Product.id.not_in(keep_ids)))
        deleted[Product.__tablename__] = result.rowcount or 0
        return deleted

    async def truncate_descriptions(self, max_length: int) -> int:
        truncated = 0
        for column in (Product.description_long, Product.description_html):
            result = await self.db.execute(
                update(Product)
                .where(func.length(column) > max_length)
                .values({column.key: func.left(column, max_length)})
            )
            truncated += result.rowcount or 0
        return truncated

    async def vacuum(self, table: Optional[str] = None):
        """VACUUM ANALYZE; the session must not have started a transaction yet"""
        connection = await self.db.connection(execution_options={"isolation_level": "AUTOCOMMIT"})
        statement = f"VACUUM ANALYZE {table}" if table else "VACUUM ANALYZE"
        await connection.execute(text(statement))
