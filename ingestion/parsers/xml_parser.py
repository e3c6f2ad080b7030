"""
Parse supplier XML feeds into a generic tree of product nodes
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from xml.parsers.expat import ExpatError

import xmltodict

from core.exceptions import MalformedFeedError
import logging

logger = logging.getLogger(__name__)


# Key under which element text is stored when the element also has attributes
TEXT_KEY = "_"


class FeedDialect(str, Enum):
    """Root shapes the parser accepts"""
    OFFER = "offer"
    GEKO = "geko"


@dataclass
class ParsedFeed:
    dialect: FeedDialect
    products: List[Dict[str, Any]] = field(default_factory=list)
    total_products: int = 0
    bytes_processed: int = 0


def _lowercase_tags(path, key, value):
    return key.lower(), value


def as_list(value: Any) -> List[Any]:
    """Single child elements come back as scalars/dicts, repeated ones as lists"""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def parse(raw_xml: bytes, limit: Optional[int] = None) -> ParsedFeed:
    """
    Parse raw feed bytes and return the dialect plus the product node list.

    Attributes are merged with child elements and tag names are lower-cased,
    so `<stock quantity="5"/>` and `<stock><quantity>5</quantity></stock>`
    produce the same node. Element text next to attributes lives under "_".

    Raises:
        MalformedFeedError: Document is not well-formed or has no
            offer/products or geko/products container.
    """
    size = len(raw_xml)
    logger.info(f"Parsing XML feed ({size / (1024 * 1024):.2f} MB)")

    try:
        tree = xmltodict.parse(
            raw_xml,
            attr_prefix="",
            cdata_key=TEXT_KEY,
            postprocessor=_lowercase_tags,
        )
    except ExpatError as e:
        raise MalformedFeedError(
            "Feed is not well-formed XML",
            context={"bytes": size},
            original_exception=e,
        )

    # The tree holds everything needed from here on
    del raw_xml

    dialect, products = _detect_dialect(tree, size)
    total = len(products)
    logger.info(f"Detected '{dialect.value}' feed with {total} products")

    if limit is not None and limit < total:
        logger.info(f"Limiting import to the first {limit} of {total} products")
        products = products[:limit]

    return ParsedFeed(
        dialect=dialect,
        products=products,
        total_products=total,
        bytes_processed=size,
    )


def _detect_dialect(tree: Dict[str, Any], size: int):
    for dialect in FeedDialect:
        root = tree.get(dialect.value)
        if not isinstance(root, dict) or "products" not in root:
            continue

        container = root["products"]
        # <products/> with no children parses to None
        if container is None:
            return dialect, []
        if not isinstance(container, dict):
            break

        return dialect, as_list(container.get("product"))

    raise MalformedFeedError(
        "Unexpected XML structure: products container not found",
        context={"root_elements": list(tree.keys()), "bytes": size},
    )
