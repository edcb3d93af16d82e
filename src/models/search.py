"""Models for semantic product search requests and responses."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    """Incoming payload for a semantic search."""

    query: str = Field(..., description="Free-form query text")
    top_k: int | None = Field(
        default=None,
        ge=1,
        description="Number of products to return",
    )
    tenant_id: str | None = Field(
        default=None,
        description="Restrict results to one tenant, platform-wide when omitted",
    )
    shop_id: str | None = Field(default=None, description="Restrict results to one shop")


class ProductSearchResult(BaseModel):
    """A product matched by semantic search, ready for display."""

    product_id: str
    relevance_score: float = Field(..., description="Similarity in [0, 1], higher is better")
    product_name: str = ""
    shop_id: str | None = None
    shop_name: str | None = None
    category_name: str | None = None
    price: float = 0.0
    is_in_stock: bool = False
    is_on_sale: bool = False
    sku: str | None = None
    matched_snippet: str = ""


class SearchResponse(BaseModel):
    """Response body for search endpoints."""

    results: list[ProductSearchResult] = Field(default_factory=list)
