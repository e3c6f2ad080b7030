"""
Transform parsed product nodes into keyed catalog entity collections
"""

import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from core.exceptions import TransformationError
from ingestion.parsers.xml_parser import TEXT_KEY, as_list
from schemas.catalog import (
    CategoryRecord,
    DocumentRecord,
    ImageRecord,
    PriceRecord,
    ProducerRecord,
    ProductRecord,
    PropertyRecord,
    StockRecord,
    TransformedCatalog,
    UnitRecord,
    VariantRecord,
)
import logging

logger = logging.getLogger(__name__)


DEFAULT_WAREHOUSE = "main"
DEFAULT_CURRENCY = "EUR"
RETAIL_PRICE_TYPE = "retail"
IMAGE_SIZE_GROUPS = ("large", "medium", "small")
EAN_LENGTH = 13
# Bounds of the INTEGER columns (quantities, moq, display order)
INT_MIN = -(2 ** 31)
INT_MAX = 2 ** 31 - 1

DOCUMENT_TYPES = {
    "pdf": "PDF",
    "doc": "Word Document",
    "docx": "Word Document",
    "xls": "Excel Document",
    "xlsx": "Excel Document",
    "txt": "Text Document",
    "zip": "Archive",
    "rar": "Archive",
}


def slugify(text: str) -> str:
    """Lower-case, hyphen-separated form of a name, used to derive ids"""
    slug = re.sub(r"\s+", "-", str(text).strip().lower())
    slug = re.sub(r"[^\w\-]+", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def text_of(value: Any) -> Optional[str]:
    """
    Return the stripped text of a node value.

    Elements carrying attributes keep their text under "_", so both
    `<name>X</name>` and `<name lang="en">X</name>` yield "X".
    """
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get(TEXT_KEY)
        if value is None:
            return None
    if isinstance(value, list):
        return text_of(value[0]) if value else None
    value = str(value).strip()
    return value or None


def first_text(node: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = text_of(node.get(key))
        if value is not None:
            return value
    return None


def valid_ean(value: Optional[str]) -> Optional[str]:
    """Return the digits of a valid EAN-13, or None"""
    if not value:
        return None
    digits = re.sub(r"\D", "", value)
    if len(digits) != EAN_LENGTH:
        return None

    total = sum(int(d) * (3 if i % 2 else 1) for i, d in enumerate(digits[:12]))
    if (10 - total % 10) % 10 != int(digits[12]):
        return None

    return digits


def infer_document_type(url: str) -> Optional[str]:
    tail = url.split("?", 1)[0].rsplit("/", 1)[-1]
    if "." not in tail:
        return None
    extension = tail.rsplit(".", 1)[-1].lower()
    return DOCUMENT_TYPES.get(extension, extension.upper())


def truncate(value: Optional[str], max_length: int) -> Optional[str]:
    if value is None or len(value) <= max_length:
        return value
    if max_length <= 3:
        return value[:max_length]
    return value[:max_length - 3] + "..."


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class CatalogTransformer:
    """
    Turn product nodes into deduplicated catalog entities.

    Handles:
    - Category, producer and unit extraction with derived ids
    - Products, variants (explicit or one implicit default), stock, prices
    - Images, documents and product properties
    - Numeric coercion with a tally of unparseable values

    Each node is built into its own bundle first; the bundle is merged into
    the catalog only when the whole node transformed without error.
    """

    def __init__(
        self,
        skip_images: bool = False,
        truncate_descriptions: bool = False,
        max_description_length: int = 200,
    ):
        self.skip_images = skip_images
        self.truncate_descriptions = truncate_descriptions
        self.max_description_length = max_description_length

    def transform(self, product_nodes: List[Any]) -> TransformedCatalog:
        catalog = TransformedCatalog()

        for index, node in enumerate(product_nodes):
            code = text_of(node.get("code")) if isinstance(node, dict) else None
            if not code:
                logger.debug(f"Skipping product node {index}: no product code")
                catalog.skipped["products"] += 1
                continue

            bundle = TransformedCatalog()
            try:
                self._transform_node(node, code, bundle)
            except (ValidationError, ValueError, ArithmeticError, TypeError, AttributeError, KeyError) as e:
                error = TransformationError(
                    f"Failed to transform product {code}: {e}",
                    context={"node_index": index, "product_code": code},
                    original_exception=e,
                )
                logger.warning(str(error))
                catalog.skipped["products"] += 1
                catalog.errors.append(error.to_dict())
                continue

            self._merge(catalog, bundle)

        self._drop_orphans(catalog)

        counts = catalog.counts()
        logger.info(
            "Transformation complete: "
            + ", ".join(f"{entity}={count}" for entity, count in counts.items())
            + f" (skipped products={catalog.skipped['products']}, coercions={catalog.coercions})"
        )
        return catalog

    # ------------------------------------------------------------------
    # Per-node extraction
    # ------------------------------------------------------------------

    def _transform_node(self, node: Dict[str, Any], code: str, bundle: TransformedCatalog):
        category_id = self._extract_category(node, bundle)
        producer_name = self._extract_producer(node, bundle)
        unit_id = self._extract_unit(node, bundle)

        name, short, long, html = self._extract_descriptions(node)
        if self.truncate_descriptions:
            limit = self.max_description_length
            long = truncate(long, limit)
            html = truncate(html, limit)
            short = truncate(short, limit // 2)

        card = node.get("card")
        url = text_of(card.get("url")) if isinstance(card, dict) else None

        bundle.products[code] = ProductRecord(
            code=code,
            ean=valid_ean(first_text(node, "ean")),
            producer_name=producer_name,
            category_id=category_id,
            unit_id=unit_id,
            name=name or code,
            description_short=short,
            description_long=long,
            description_html=html,
            vat=self._number(bundle, node.get("vat"), float),
            url=url or first_text(node, "url"),
            delivery_date=first_text(node, "delivery", "delivery_date"),
        )

        self._extract_variants(node, code, bundle)
        if not self.skip_images:
            self._extract_images(node, code, bundle)
        self._extract_documents(node, code, bundle)
        self._extract_properties(node, code, bundle)

    def _extract_category(self, node, bundle) -> Optional[str]:
        raw = node.get("category")
        if raw is None:
            return None

        if isinstance(raw, dict):
            category_id = text_of(raw.get("id"))
            name = first_text(raw, "name", "n", TEXT_KEY)
            path = text_of(raw.get("path"))
        else:
            category_id = None
            name = text_of(raw)
            path = name

        if not category_id and not name:
            return None
        if not category_id:
            category_id = f"cat_{slugify(name)}"

        parent_id = None
        if path:
            segments = [part.strip() for part in path.split("/") if part.strip()]
            if len(segments) > 1:
                parent_id = f"cat_{slugify(segments[-2])}"

        bundle.categories[category_id] = CategoryRecord(
            id=category_id,
            name=name or category_id,
            path=path,
            parent_id=parent_id,
        )
        return category_id

    def _extract_producer(self, node, bundle) -> Optional[str]:
        raw = node.get("producer")
        if isinstance(raw, dict):
            name = first_text(raw, "name", TEXT_KEY)
        else:
            name = text_of(raw)
        if not name:
            return None

        bundle.producers[name] = ProducerRecord(name=name)
        return name

    def _extract_unit(self, node, bundle) -> Optional[str]:
        raw = node.get("unit")
        if raw is None:
            return None

        moq = None
        if isinstance(raw, dict):
            unit_id = text_of(raw.get("id"))
            name = first_text(raw, "name", TEXT_KEY)
            moq = self._number(bundle, raw.get("moq"), int)
        else:
            unit_id = None
            name = text_of(raw)

        if not unit_id and not name:
            return None
        if not unit_id:
            unit_id = f"unit-{slugify(name)}"

        bundle.units[unit_id] = UnitRecord(
            id=unit_id,
            name=name or unit_id,
            moq=moq if moq and moq >= 1 else 1,
        )
        return unit_id

    def _extract_descriptions(self, node):
        description = node.get("description")

        if isinstance(description, dict):
            name = first_text(description, "name", "n") or first_text(node, "name", "title")
            short = first_text(description, "short_desc", "short")
            long = first_text(description, "long_desc", "long")
            html = first_text(description, "description")
        elif description is not None:
            long = text_of(description)
            name = first_text(node, "name", "title") or long
            short = None
            html = None
        else:
            name = first_text(node, "name", "title")
            short = first_text(node, "short_description", "summary")
            long = first_text(node, "long_description", "full_description")
            html = first_text(node, "html_description")

        return name, short, long, html

    def _extract_variants(self, node, product_code, bundle):
        explicit = []
        variants_section = node.get("variants")
        if isinstance(variants_section, dict):
            explicit.extend(as_list(variants_section.get("variant")))
        sizes_section = node.get("sizes")
        if isinstance(sizes_section, dict):
            explicit.extend(as_list(sizes_section.get("size")))
        explicit = [item for item in explicit if isinstance(item, dict)]

        if not explicit:
            # Product-level stock and prices belong to the implicit default variant
            variant = VariantRecord(product_code=product_code, code=product_code)
            bundle.variants[variant.key] = variant
            self._extract_variant_details(node, variant, bundle)
            return

        for index, item in enumerate(explicit):
            variant = VariantRecord(
                product_code=product_code,
                code=text_of(item.get("code")) or f"{product_code}-{index}",
                weight=self._number(bundle, item.get("weight"), float),
                gross_weight=self._number(bundle, item.get("gross_weight", item.get("grossweight")), float),
            )
            bundle.variants[variant.key] = variant
            self._extract_variant_details(item, variant, bundle)

    def _extract_variant_details(self, source, variant, bundle):
        for entry in as_list(source.get("stock")):
            self._add_stock(entry, variant, bundle)

        prices_section = source.get("prices")
        if isinstance(prices_section, dict):
            for entry in as_list(prices_section.get("price")):
                self._add_price(entry, variant, bundle)
        for entry in as_list(source.get("price")):
            self._add_price(entry, variant, bundle)

        for entry in as_list(source.get("srp")):
            self._add_srp(entry, variant, bundle)

    def _add_stock(self, entry, variant, bundle):
        if isinstance(entry, dict):
            raw_quantity = entry.get("quantity", entry.get(TEXT_KEY))
            warehouse = first_text(entry, "warehouse", "warehouse_id") or DEFAULT_WAREHOUSE
            moq = self._number(bundle, entry.get("min_order_quantity", entry.get("moq")), int)
        else:
            raw_quantity = entry
            warehouse = DEFAULT_WAREHOUSE
            moq = None

        quantity = max(self._number(bundle, raw_quantity, int) or 0, 0)
        key = (variant.product_code, variant.code, warehouse)
        bundle.stock[key] = StockRecord(
            product_code=variant.product_code,
            variant_code=variant.code,
            warehouse_id=warehouse,
            quantity=quantity,
            available=quantity > 0,
            min_order_quantity=moq if moq and moq >= 1 else 1,
        )

    def _add_price(self, entry, variant, bundle):
        if isinstance(entry, dict):
            gross = self._number(bundle, entry.get("gross", entry.get(TEXT_KEY)), float)
            net = self._number(bundle, entry.get("net"), float)
            currency = first_text(entry, "currency") or DEFAULT_CURRENCY
            price_type = first_text(entry, "type") or RETAIL_PRICE_TYPE
            valid_from = _parse_datetime(first_text(entry, "valid_from"))
            valid_to = _parse_datetime(first_text(entry, "valid_to"))
        else:
            gross = self._number(bundle, entry, float)
            net = None
            currency = DEFAULT_CURRENCY
            price_type = RETAIL_PRICE_TYPE
            valid_from = valid_to = None

        record = PriceRecord(
            product_code=variant.product_code,
            variant_code=variant.code,
            gross_price=gross or 0.0,
            net_price=net or 0.0,
            currency=currency,
            type=price_type,
            valid_from=valid_from,
            valid_to=valid_to,
        )
        key = (variant.product_code, variant.code, record.type, record.currency)
        existing = bundle.prices.get(key)
        if existing is not None:
            # Keep suggested retail values folded in from an earlier <srp>
            record.srp_gross = existing.srp_gross
            record.srp_net = existing.srp_net
        bundle.prices[key] = record

    def _add_srp(self, entry, variant, bundle):
        """Fold suggested retail values into the variant's retail price"""
        if isinstance(entry, dict):
            gross = self._number(bundle, entry.get("gross", entry.get(TEXT_KEY)), float)
            net = self._number(bundle, entry.get("net"), float)
            currency = (first_text(entry, "currency") or DEFAULT_CURRENCY).upper()
        else:
            gross = self._number(bundle, entry, float)
            net = None
            currency = DEFAULT_CURRENCY

        key = (variant.product_code, variant.code, RETAIL_PRICE_TYPE, currency)
        price = bundle.prices.get(key)
        if price is None:
            price = PriceRecord(
                product_code=variant.product_code,
                variant_code=variant.code,
                currency=currency,
                type=RETAIL_PRICE_TYPE,
            )
            bundle.prices[key] = price
        price.srp_gross = gross
        price.srp_net = net

    def _extract_images(self, node, product_code, bundle):
        section = node.get("images")
        if not isinstance(section, dict):
            return

        if "image" in section:
            items = as_list(section.get("image"))
        else:
            items = []
            for group in IMAGE_SIZE_GROUPS:
                group_node = section.get(group)
                candidates = as_list(group_node.get("image")) if isinstance(group_node, dict) else as_list(group_node)
                if candidates:
                    items = candidates
                    break

        display_order = 0
        for item in items:
            url = first_text(item, "url", "src", "path", TEXT_KEY) if isinstance(item, dict) else text_of(item)
            if not url or (product_code, url) in bundle.images:
                continue
            bundle.images[(product_code, url)] = ImageRecord(
                product_code=product_code,
                url=url,
                is_main=display_order == 0,
                display_order=display_order,
            )
            display_order += 1

    def _extract_documents(self, node, product_code, bundle):
        section = node.get("documents")
        if not isinstance(section, dict):
            return

        for index, item in enumerate(as_list(section.get("document"))):
            if isinstance(item, dict):
                url = first_text(item, "url", "href", "link", TEXT_KEY)
            else:
                url = text_of(item)
                item = {}
            if not url:
                continue

            bundle.documents[(product_code, url)] = DocumentRecord(
                product_code=product_code,
                url=url,
                name=first_text(item, "name", "title") or f"Document {index + 1}",
                type=first_text(item, "type", "mime_type") or infer_document_type(url),
                language=first_text(item, "language") or "en",
            )

    def _extract_properties(self, node, product_code, bundle):
        items = []
        for section_name, item_names in (
            ("properties", ("property",)),
            ("attributes", ("attribute",)),
            ("specifications", ("property", "spec", "item")),
        ):
            section = node.get(section_name)
            if not isinstance(section, dict):
                continue
            for item_name in item_names:
                items.extend(as_list(section.get(item_name)))

        for index, item in enumerate(items):
            if not isinstance(item, dict):
                continue
            name = first_text(item, "name", "n", "key")
            if not name:
                continue

            record = PropertyRecord(
                product_code=product_code,
                name=name,
                value=first_text(item, "value", "v", TEXT_KEY),
                language=first_text(item, "language") or "en",
                group=first_text(item, "group") or "General",
                display_order=_parse_order(first_text(item, "order"), index),
                is_filterable=(first_text(item, "filterable") or "").lower() == "true",
                is_public=(first_text(item, "public") or "").lower() != "false",
            )
            bundle.properties[(product_code, record.name, record.language)] = record

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _number(bundle: TransformedCatalog, value: Any, cast: Callable):
        """
        Parse a numeric field; unparseable values become 0 and are tallied.

        Missing values return None and are not counted.
        """
        raw = text_of(value)
        if raw is None:
            return None
        try:
            number = float(raw.replace(",", "."))
        except ValueError:
            bundle.coercions += 1
            return cast(0)
        if number != number or number in (float("inf"), float("-inf")):
            bundle.coercions += 1
            return cast(0)
        if cast is int and not INT_MIN <= number <= INT_MAX:
            bundle.coercions += 1
            return min(max(int(number), INT_MIN), INT_MAX)
        return cast(number)

    @staticmethod
    def _merge(catalog: TransformedCatalog, bundle: TransformedCatalog):
        # Shared dimensions keep their first definition
        for entity in ("categories", "producers", "units"):
            target = getattr(catalog, entity)
            for key, record in getattr(bundle, entity).items():
                target.setdefault(key, record)

        # A repeated product code replaces everything the earlier node produced
        codes = set(bundle.products)
        for entity in ("variants", "stock", "prices", "images", "documents", "properties"):
            records = getattr(catalog, entity)
            for key in [k for k, r in records.items() if r.product_code in codes]:
                del records[key]

        for entity in ("products", "variants", "stock", "prices", "images", "documents", "properties"):
            getattr(catalog, entity).update(getattr(bundle, entity))

        catalog.coercions += bundle.coercions

    @staticmethod
    def _drop_orphans(catalog: TransformedCatalog):
        products = catalog.products
        variants = catalog.variants

        for key in [k for k, v in variants.items() if v.product_code not in products]:
            del variants[key]
            catalog.skipped["variants"] += 1

        for entity in ("stock", "prices"):
            records = getattr(catalog, entity)
            for key in [k for k, r in records.items() if r.variant_key not in variants]:
                del records[key]
                catalog.skipped[entity] += 1

        for entity in ("images", "documents", "properties"):
            records = getattr(catalog, entity)
            for key in [k for k, r in records.items() if r.product_code not in products]:
                del records[key]
                catalog.skipped[entity] += 1


def _parse_order(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        order = int(float(value))
    except (ValueError, OverflowError):
        return default
    return order if INT_MIN <= order <= INT_MAX else default
