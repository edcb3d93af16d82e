"""Builds canonical product documents for embedding generation."""

from __future__ import annotations

import json
import logging
import math
from datetime import UTC, date, datetime
from typing import Any

from src.models.document import (
    AttributeDataType,
    AttributeValue,
    BooleanValue,
    CanonicalAttribute,
    CanonicalProductDocument,
    DateValue,
    NumberValue,
    TextValue,
)
from src.models.product import Product, ProductAttributeDefinition
from src.services.product_registry import CatalogLookup

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 1

_TRUE_WORDS = {"true", "yes", "y", "1", "on"}
_FALSE_WORDS = {"false", "no", "n", "0", "off"}


class CanonicalDocumentBuilder:
    """Aggregates a product with its category, shop and attribute metadata."""

    def __init__(self, catalog: CatalogLookup) -> None:
        self.catalog = catalog

    @property
    def current_schema_version(self) -> int:
        return CURRENT_SCHEMA_VERSION

    async def build(self, product: Product) -> CanonicalProductDocument:
        """Return a fresh document for the product without modifying it.

        Lookups run with platform scope because embeddings are searched
        across tenants.
        """
        category_name = None
        if product.category_id:
            category = await self.catalog.find_category(
                product.category_id, platform_scope=True
            )
            category_name = category.name if category else None

        shop = await self.catalog.find_shop(product.shop_id, platform_scope=True)

        return CanonicalProductDocument(
            schema_version=self.current_schema_version,
            product_id=product.id,
            shop_id=product.shop_id,
            tenant_id=product.tenant_id,
            name=product.name,
            description=product.description,
            sku=product.sku,
            price=product.price,
            is_in_stock=product.is_in_stock(),
            is_on_sale=product.is_on_sale(),
            category_name=category_name,
            shop_name=shop.name if shop else None,
            generated_at=datetime.now(UTC),
            attributes=await self._build_attributes(product),
        )

    async def _build_attributes(self, product: Product) -> dict[str, CanonicalAttribute]:
        raw_values = parse_attribute_blob(product.attributes)
        if not raw_values:
            return {}

        definitions = await self.catalog.list_attribute_definitions(
            product.shop_id, platform_scope=True
        )
        lookup: dict[str, ProductAttributeDefinition] = {
            definition.name.casefold(): definition for definition in definitions
        }

        result: dict[str, CanonicalAttribute] = {}
        for key, raw in raw_values.items():
            definition = lookup.get(key.casefold())
            if definition is not None and not definition.include_in_embedding:
                continue

            if definition is None:
                data_type = infer_data_type(raw)
                value = coerce_attribute_value(raw, data_type)
                if value is None:
                    continue
                result[key] = CanonicalAttribute(
                    value=value,
                    data_type=data_type,
                    semantic_label=key,
                    priority=0,
                )
                continue

            value = coerce_attribute_value(raw, definition.data_type)
            if value is None:
                continue
            result[key] = CanonicalAttribute(
                value=value,
                data_type=definition.data_type,
                semantic_label=definition.semantic_label or definition.display_name,
                priority=definition.embedding_priority,
            )

        return result


def parse_attribute_blob(raw: str | None) -> dict[str, Any]:
    """Decode the product's attribute JSON, tolerating empty or broken input."""
    if not raw or not raw.strip():
        return {}
    try:
        values = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unparseable attribute blob: %.80s", raw)
        return {}
    if not isinstance(values, dict):
        logger.warning("Ignoring attribute blob that is not an object: %.80s", raw)
        return {}
    return {str(key): value for key, value in values.items()}


def infer_data_type(raw: Any) -> AttributeDataType:
    if isinstance(raw, bool):
        return AttributeDataType.BOOLEAN
    if isinstance(raw, (int, float)):
        return AttributeDataType.NUMBER
    return AttributeDataType.TEXT


def coerce_attribute_value(raw: Any, data_type: AttributeDataType) -> AttributeValue | None:
    """Convert a raw JSON value to the declared type, falling back to text.

    Returns None for null and blank values, which are left out of documents.
    """
    if raw is None:
        return None
    if isinstance(raw, str) and not raw.strip():
        return None

    if data_type is AttributeDataType.BOOLEAN:
        flag = _as_bool(raw)
        if flag is not None:
            return BooleanValue(value=flag)
    elif data_type is AttributeDataType.NUMBER:
        number = _as_number(raw)
        if number is not None:
            return NumberValue(value=number)
    elif data_type is AttributeDataType.DATE:
        parsed = _as_date(raw)
        if parsed is not None:
            return DateValue(value=parsed)

    return TextValue(value=_as_text(raw))


def _as_bool(raw: Any) -> bool | None:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        word = raw.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


def _as_number(raw: Any) -> float | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        number = float(raw)
    elif isinstance(raw, str):
        try:
            number = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _as_date(raw: Any) -> date | None:
    if not isinstance(raw, str):
        return None
    try:
        return datetime.fromisoformat(raw.strip()).date()
    except ValueError:
        return None


def _as_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw.strip()
    return json.dumps(raw, ensure_ascii=False)
