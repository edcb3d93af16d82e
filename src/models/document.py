"""Canonical product documents and the chunks derived from them."""

from __future__ import annotations

from datetime import UTC, date, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, ValidationError


class AttributeDataType(str, Enum):
    """Data types an attribute definition can declare."""

    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


class TextValue(BaseModel):
    kind: Literal["text"] = "text"
    value: str

    def render(self) -> str:
        return self.value


class NumberValue(BaseModel):
    kind: Literal["number"] = "number"
    value: float

    def render(self) -> str:
        if self.value.is_integer():
            return str(int(self.value))
        return str(self.value)


class BooleanValue(BaseModel):
    kind: Literal["boolean"] = "boolean"
    value: bool

    def render(self) -> str:
        return "Yes" if self.value else "No"


class DateValue(BaseModel):
    kind: Literal["date"] = "date"
    value: date

    def render(self) -> str:
        return self.value.isoformat()


AttributeValue = Annotated[
    TextValue | NumberValue | BooleanValue | DateValue,
    Field(discriminator="kind"),
]


class CanonicalAttribute(BaseModel):
    """A normalized attribute value with its semantic context."""

    value: AttributeValue
    data_type: AttributeDataType = AttributeDataType.TEXT
    semantic_label: str | None = None
    priority: int = Field(
        default=0,
        description="Embedding priority, higher values are rendered first",
    )


class CanonicalProductDocument(BaseModel):
    """Flattened, versioned view of a product used as the embedding source."""

    schema_version: int = 1
    product_id: str
    shop_id: str
    tenant_id: str | None = None
    name: str
    description: str | None = None
    sku: str = ""
    price: float = 0.0
    is_in_stock: bool = False
    is_on_sale: bool = False
    category_name: str | None = None
    shop_name: str | None = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    attributes: dict[str, CanonicalAttribute] = Field(default_factory=dict)

    def to_embedding_text(self) -> str:
        """Render the document as the text sent to the embedding model.

        The product name comes first, followed by shop, category, description,
        price and availability. Attributes are listed last, highest priority
        first; attributes with equal priority keep their insertion order.
        """
        lines = [f"Product: {self.name}"]

        if self.shop_name and self.shop_name.strip():
            lines.append(f"Shop: {self.shop_name}")
        if self.category_name and self.category_name.strip():
            lines.append(f"Category: {self.category_name}")
        if self.description and self.description.strip():
            lines.append(f"Description: {self.description}")

        lines.append(f"Price: ${self.price:.2f}")

        if self.is_on_sale:
            lines.append("This product is currently on sale.")
        if not self.is_in_stock:
            lines.append("This product is currently out of stock.")

        if self.attributes:
            lines.append("Specifications:")
            ordered = sorted(
                self.attributes.items(),
                key=lambda item: -item[1].priority,
            )
            for key, attribute in ordered:
                label = attribute.semantic_label or key
                lines.append(f"- {label}: {attribute.value.render()}")

        return "\n".join(lines).strip()

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | None) -> CanonicalProductDocument | None:
        """Parse a cached document, returning None when it is absent or unreadable."""
        if not raw or not raw.strip():
            return None
        try:
            return cls.model_validate_json(raw)
        except ValidationError:
            return None


class ContentChunk(BaseModel):
    """A bounded slice of a document's embedding text."""

    index: int = Field(..., ge=0, description="Zero-based position, 0 is the primary chunk")
    text: str = Field(..., min_length=1)
