"""
SQLAlchemy ORM models for database tables.

This package holds the one canonical set of table declarations shared by
the import pipeline, the storage tooling and the tests:

Models:
    base: Base declarative class, timestamp mixin and shared enums (SyncType, SyncStatus)
    catalog: Catalog tables (categories, producers, units, products, variants,
             stock, prices, images, documents, product_properties)
    sync_health: Import run audit records

Database Schema:
    All models inherit from the Base declarative class. Every catalog table
    has a unique constraint on its natural key, which is the conflict target
    of the loader's upserts.

Usage:
    from models.catalog import Product, Variant
    from models.sync_health import SyncHealth
    from models.base import SyncStatus

Relationships:
    - Producer/Category/Unit → Product (many-to-one, nullable)
    - Product → Variant → Stock/Price
    - Product → Image/Document/ProductProperty
"""

__all__ = [
    "Base",
    "SyncType",
    "SyncStatus",
    "Category",
    "Producer",
    "Unit",
    "Product",
    "Variant",
    "Stock",
    "Price",
    "Image",
    "Document",
    "ProductProperty",
    "SyncHealth",
]
