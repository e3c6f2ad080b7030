"""
Pydantic schemas for data validation and serialization.

This package defines the in-memory shapes that flow through the import
pipeline:

Schemas:
    catalog: Transformed entity records and the keyed TransformedCatalog
    stats: Import options, per-entity ImportStats and the run ImportReport
    storage: Storage thresholds, size reports and cleanup results

Usage:
    from schemas.catalog import ProductRecord, TransformedCatalog
    from schemas.stats import ImportOptions, ImportStats
    from schemas.storage import StorageStatus, StorageCheckResult

Example:
    options = ImportOptions(limit=100, skip_images=True)

    # Explicitly set options survive the storage guard's reduced import
    assert "limit" in options.model_fields_set

Validation:
    Records reject empty natural keys, negative quantities and a
    minimum order quantity below one.
"""

__all__ = [
    "CategoryRecord",
    "ProducerRecord",
    "UnitRecord",
    "ProductRecord",
    "VariantRecord",
    "StockRecord",
    "PriceRecord",
    "ImageRecord",
    "DocumentRecord",
    "PropertyRecord",
    "TransformedCatalog",
    "ImportOptions",
    "ImportStats",
    "ImportReport",
    "StorageStatus",
    "StorageThresholds",
    "StorageInfo",
    "StorageCheckResult",
    "CleanupResult",
    "BackupResult",
]
