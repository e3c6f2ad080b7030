from sqlalchemy import (
    Column, String, Integer, BigInteger, Text, Boolean, Numeric, Float,
    DateTime, ForeignKey, Index, UniqueConstraint
)
from models.base import Base, TimestampMixin


class Category(TimestampMixin, Base):
    """
    Supplier category.

    The primary key is the supplier's own category id, or a derived
    `cat_<slug>` id when the feed only gives a name. `path` keeps the
    supplier's full breadcrumb; `parent_id` is derived from it.
    """
    __tablename__ = "categories"

    id = Column(String(255), primary_key=True)
    name = Column(String(500), nullable=False)
    path = Column(Text, nullable=True)
    parent_id = Column(String(255), nullable=True, index=True)


class Producer(TimestampMixin, Base):
    """Manufacturer, identified by its name exactly as the feed spells it."""
    __tablename__ = "producers"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    name = Column(String(500), nullable=False, unique=True)


class Unit(TimestampMixin, Base):
    """Sales unit with its minimum order quantity"""
    __tablename__ = "units"

    id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False)
    moq = Column(Integer, nullable=False, default=1)


class Product(TimestampMixin, Base):
    """
    Catalog product keyed by the supplier product code.

    Foreign keys are nullable: a product may come without producer,
    category or unit information.
    """
    __tablename__ = "products"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    code = Column(String(255), nullable=False, unique=True)
    ean = Column(String(14), nullable=True, index=True)

    producer_id = Column(BigInteger, ForeignKey("producers.id", ondelete="SET NULL"), nullable=True, index=True)
    category_id = Column(String(255), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    unit_id = Column(String(255), ForeignKey("units.id", ondelete="SET NULL"), nullable=True)

    name = Column(String(1000), nullable=False)
    description_long = Column(Text, nullable=True)
    description_short = Column(Text, nullable=True)
    description_html = Column(Text, nullable=True)
    vat = Column(Numeric(5, 2), nullable=True)
    url = Column(String(2048), nullable=True)
    delivery_date = Column(String(100), nullable=True)


class Variant(TimestampMixin, Base):
    __tablename__ = "variants"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    code = Column(String(255), nullable=False)
    weight = Column(Float, nullable=True)
    gross_weight = Column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint("product_id", "code", name="uq_variants_product_code"),
    )


class Stock(TimestampMixin, Base):
    __tablename__ = "stock"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    variant_id = Column(BigInteger, ForeignKey("variants.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    available = Column(Boolean, nullable=False, default=False)
    min_order_quantity = Column(Integer, nullable=False, default=1)
    warehouse_id = Column(String(100), nullable=False, default="main")

    __table_args__ = (
        UniqueConstraint("variant_id", "warehouse_id", name="uq_stock_variant_warehouse"),
    )


class Price(TimestampMixin, Base):
    __tablename__ = "prices"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    variant_id = Column(BigInteger, ForeignKey("variants.id", ondelete="CASCADE"), nullable=False)
    gross_price = Column(Numeric(12, 2), nullable=False, default=0)
    net_price = Column(Numeric(12, 2), nullable=False, default=0)
    srp_gross = Column(Numeric(12, 2), nullable=True)
    srp_net = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="EUR")
    type = Column(String(50), nullable=False, default="retail")
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_to = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("variant_id", "type", "currency", name="uq_prices_variant_type_currency"),
    )


class Image(TimestampMixin, Base):
    __tablename__ = "images"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    url = Column(String(2048), nullable=False)
    is_main = Column(Boolean, nullable=False, default=False)
    display_order = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("product_id", "url", name="uq_images_product_url"),
    )


class Document(TimestampMixin, Base):
    __tablename__ = "documents"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    url = Column(String(2048), nullable=False)
    name = Column(String(500), nullable=False)
    type = Column(String(100), nullable=True)
    language = Column(String(10), nullable=False, default="en")

    __table_args__ = (
        UniqueConstraint("product_id", "url", name="uq_documents_product_url"),
    )


class ProductProperty(TimestampMixin, Base):
    __tablename__ = "product_properties"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    value = Column(Text, nullable=True)
    language = Column(String(10), nullable=False, default="en")
    group = Column(String(255), nullable=False, default="General")
    display_order = Column(Integer, nullable=False, default=0)
    is_filterable = Column(Boolean, nullable=False, default=False)
    is_public = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("product_id", "name", "language", name="uq_product_properties_product_name_language"),
        Index("idx_product_properties_filterable", "name", "is_filterable"),
    )
