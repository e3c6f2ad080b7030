"""
Pydantic schemas for transformed catalog entities.

Records are keyed by natural identifiers only; database ids are resolved
by the loader once parents are persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple

from pydantic import BaseModel, Field, field_validator


VariantKey = Tuple[str, str]


class CategoryRecord(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    path: Optional[str] = None
    parent_id: Optional[str] = None


class ProducerRecord(BaseModel):
    name: str = Field(..., min_length=1)


class UnitRecord(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    moq: int = Field(1, ge=1)


class ProductRecord(BaseModel):
    """
    Product as read from the feed.

    References to producer/category/unit are natural keys, not database ids.
    """

    code: str = Field(..., min_length=1)
    ean: Optional[str] = None
    producer_name: Optional[str] = None
    category_id: Optional[str] = None
    unit_id: Optional[str] = None

    name: str
    description_long: Optional[str] = None
    description_short: Optional[str] = None
    description_html: Optional[str] = None
    vat: Optional[float] = Field(None, ge=0)
    url: Optional[str] = None
    delivery_date: Optional[str] = None

    @field_validator("name")
    @classmethod
    def clean_name(cls, v):
        """Strip surrounding whitespace from the display name"""
        v = v.strip()
        if not v:
            raise ValueError("Product name cannot be empty after stripping")
        return v


class VariantRecord(BaseModel):
    product_code: str
    code: str = Field(..., min_length=1)
    weight: Optional[float] = None
    gross_weight: Optional[float] = None

    @property
    def key(self) -> VariantKey:
        return (self.product_code, self.code)


class StockRecord(BaseModel):
    product_code: str
    variant_code: str
    warehouse_id: str = "main"
    quantity: int = Field(0, ge=0)
    available: bool = False
    min_order_quantity: int = Field(1, ge=1)

    @property
    def variant_key(self) -> VariantKey:
        return (self.product_code, self.variant_code)


class PriceRecord(BaseModel):
    product_code: str
    variant_code: str
    gross_price: float = 0.0
    net_price: float = 0.0
    srp_gross: Optional[float] = None
    srp_net: Optional[float] = None
    currency: str = "EUR"
    type: str = "retail"
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v):
        return v.strip().upper() or "EUR"

    @property
    def variant_key(self) -> VariantKey:
        return (self.product_code, self.variant_code)


class ImageRecord(BaseModel):
    product_code: str
    url: str = Field(..., min_length=1)
    is_main: bool = False
    display_order: int = 0


class DocumentRecord(BaseModel):
    product_code: str
    url: str = Field(..., min_length=1)
    name: str
    type: Optional[str] = None
    language: str = "en"


class PropertyRecord(BaseModel):
    product_code: str
    name: str = Field(..., min_length=1)
    value: Optional[str] = None
    language: str = "en"
    group: str = "General"
    display_order: int = 0
    is_filterable: bool = False
    is_public: bool = True


ENTITY_TYPES = (
    "categories",
    "producers",
    "units",
    "products",
    "variants",
    "stock",
    "prices",
    "images",
    "documents",
    "properties",
)


def empty_counts() -> Dict[str, int]:
    return {entity: 0 for entity in ENTITY_TYPES}


@dataclass
class TransformedCatalog:
    """
    In-memory result of transforming a feed.

    Every collection is a dict keyed by the entity's natural key, so a key
    can only ever hold one record.
    """

    categories: Dict[str, CategoryRecord] = field(default_factory=dict)
    producers: Dict[str, ProducerRecord] = field(default_factory=dict)
    units: Dict[str, UnitRecord] = field(default_factory=dict)
    products: Dict[str, ProductRecord] = field(default_factory=dict)
    variants: Dict[VariantKey, VariantRecord] = field(default_factory=dict)
    # (product code, variant code, warehouse)
    stock: Dict[Tuple[str, str, str], StockRecord] = field(default_factory=dict)
    # (product code, variant code, price type, currency)
    prices: Dict[Tuple[str, str, str, str], PriceRecord] = field(default_factory=dict)
    images: Dict[Tuple[str, str], ImageRecord] = field(default_factory=dict)
    documents: Dict[Tuple[str, str], DocumentRecord] = field(default_factory=dict)
    # (product code, name, language)
    properties: Dict[Tuple[str, str, str], PropertyRecord] = field(default_factory=dict)

    skipped: Dict[str, int] = field(default_factory=empty_counts)
    coercions: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        """Number of records per entity type"""
        return {entity: len(getattr(self, entity)) for entity in ENTITY_TYPES}
