"""Product domain models and API schemas."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from src.models.document import AttributeDataType, CanonicalProductDocument


class Category(BaseModel):
    """A catalog category, looked up to enrich canonical documents."""

    id: str
    tenant_id: str | None = None
    name: str


class Shop(BaseModel):
    """A shop owning products."""

    id: str
    tenant_id: str | None = None
    name: str


class ProductAttributeDefinition(BaseModel):
    """Shop-level definition of a dynamic product attribute."""

    id: str
    shop_id: str
    tenant_id: str | None = None
    name: str
    display_name: str
    data_type: AttributeDataType = AttributeDataType.TEXT
    include_in_embedding: bool = True
    embedding_priority: int = 0
    semantic_label: str | None = None


class Product(BaseModel):
    """Product record as held by the catalog."""

    id: str
    shop_id: str
    tenant_id: str | None = None
    category_id: str | None = None
    name: str
    description: str | None = None
    sku: str = ""
    price: float = Field(0.0, ge=0)
    compare_at_price: float | None = None
    stock_quantity: int = 0
    is_active: bool = True
    is_published: bool = False
    attributes: str | None = Field(
        None,
        description="JSON object mapping attribute names to raw values",
    )

    canonical_document: str | None = None
    canonical_document_version: int = 0
    canonical_document_updated_at: datetime | None = None
    embedding_generated: bool = False
    # bumped by the catalog on every write of the product data
    revision: int = 0

    @property
    def is_eligible_for_embedding(self) -> bool:
        return self.is_active and self.is_published

    def is_in_stock(self) -> bool:
        return self.stock_quantity > 0

    def is_on_sale(self) -> bool:
        return self.compare_at_price is not None and self.compare_at_price > self.price

    def update_canonical_document(self, document: CanonicalProductDocument) -> None:
        """Cache a freshly built document and flag the product for re-embedding."""
        self.canonical_document = document.to_json()
        self.canonical_document_version = document.schema_version
        self.canonical_document_updated_at = datetime.now(UTC)
        self.embedding_generated = False

    def get_canonical_document(self) -> CanonicalProductDocument | None:
        return CanonicalProductDocument.from_json(self.canonical_document)

    def needs_canonical_document_update(self, current_schema_version: int) -> bool:
        return (
            not self.canonical_document
            or self.canonical_document_version < current_schema_version
        )

    def mark_embedding_generated(self) -> None:
        self.embedding_generated = True


class CategoryPayload(BaseModel):
    """Represents a category coming from the catalog service."""

    id: str = Field(..., description="Unique identifier of the category")
    tenant_id: str | None = None
    name: str


class ShopPayload(BaseModel):
    """Represents a shop coming from the catalog service."""

    id: str = Field(..., description="Unique identifier of the shop")
    tenant_id: str | None = None
    name: str


class AttributeDefinitionPayload(BaseModel):
    """Attribute definition registration sent by the catalog service."""

    id: str
    shop_id: str
    tenant_id: str | None = None
    name: str
    display_name: str | None = None
    data_type: AttributeDataType = AttributeDataType.TEXT
    include_in_embedding: bool = True
    embedding_priority: int = 0
    semantic_label: str | None = None

    def to_definition(self) -> ProductAttributeDefinition:
        data = self.model_dump()
        data["display_name"] = self.display_name or self.name
        return ProductAttributeDefinition(**data)


class ProductPayload(BaseModel):
    """Incoming payload sent by the catalog service when a product is registered."""

    product_id: str = Field(..., description="Unique identifier of the product")
    shop_id: str = Field(..., description="Shop identifier the product belongs to")
    tenant_id: str | None = None
    category_id: str | None = None
    name: str = Field(..., min_length=1)
    description: str | None = None
    sku: str = ""
    price: float = Field(0.0, ge=0)
    compare_at_price: float | None = Field(None, ge=0)
    stock_quantity: int = Field(0, ge=0)
    is_active: bool = True
    is_published: bool = False
    attributes: dict[str, Any] | str | None = Field(
        None,
        description="Dynamic attribute values, as an object or a JSON string",
    )

    def to_product(self) -> Product:
        attributes = self.attributes
        if isinstance(attributes, dict):
            attributes = json.dumps(attributes)
        return Product(
            id=self.product_id,
            shop_id=self.shop_id,
            tenant_id=self.tenant_id,
            category_id=self.category_id,
            name=self.name,
            description=self.description,
            sku=self.sku,
            price=self.price,
            compare_at_price=self.compare_at_price,
            stock_quantity=self.stock_quantity,
            is_active=self.is_active,
            is_published=self.is_published,
            attributes=attributes,
        )


class RegisteredProduct(BaseModel):
    """Acknowledgement returned once a product is stored in the registry."""

    product_id: str
    shop_id: str
    is_eligible_for_embedding: bool
    registered_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp when the product was registered inside the service",
    )
