"""Models used by the embedding pipeline, its queue and the store."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, computed_field, field_validator


def embedding_point_id(product_id: str, chunk_index: int) -> str:
    """Deterministic identity of the (product, chunk) pair."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{product_id}:{chunk_index}"))


class ProductEmbedding(BaseModel):
    """A stored chunk vector together with its lineage and display payload."""

    id: str | None = None
    product_id: str = Field(..., min_length=1)
    tenant_id: str | None = None
    shop_id: str
    chunk_index: int = Field(0, ge=0)
    chunk_text: str
    vector: list[float] = Field(default_factory=list)
    embedding_model: str
    embedding_version: int
    canonical_document_version: int
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    payload_json: str | None = None
    is_active: bool = True

    @property
    def point_id(self) -> str:
        return embedding_point_id(self.product_id, self.chunk_index)


class EmbeddingPayload(BaseModel):
    """Denormalized display metadata shared by all chunks of a product."""

    product_id: str | None = None
    name: str | None = None
    shop_id: str | None = None
    shop_name: str | None = None
    category_name: str | None = None
    price: float = 0.0
    is_in_stock: bool = False
    is_on_sale: bool = False
    sku: str | None = None


class ProductChangeType(str, Enum):
    """Lifecycle changes published by the catalog."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    PUBLISHED = "published"
    UNPUBLISHED = "unpublished"
    BULK_REINDEX = "bulk_reindex"


class PipelineOperation(str, Enum):
    """Work the embedding pipeline performs for a single product."""

    GENERATE = "generate"
    DELETE = "delete"
    DEACTIVATE = "deactivate"
    ACTIVATE = "activate"


class ProductChangeEvent(BaseModel):
    """A product lifecycle event that may require embedding work."""

    change_type: ProductChangeType
    product_id: str = Field(..., min_length=1)
    shop_id: str = Field(..., min_length=1)
    tenant_id: str | None = None
    product_name: str = ""
    is_eligible_for_embedding: bool = False
    canonical_document_version: int = 0
    changed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class EmbeddingJob(BaseModel):
    """Queue message telling a worker what to do for one product."""

    product_id: str = Field(..., min_length=1)
    op: PipelineOperation = Field(
        default=PipelineOperation.GENERATE,
        description="Indicates the requested action for the vector store",
    )
    change_type: ProductChangeType | None = None
    shop_id: str | None = None
    tenant_id: str | None = None
    canonical_document_version: int | None = Field(
        default=None,
        description="Document schema version the producer saw, used for staleness checks",
    )
    trace_id: str | None = Field(
        default=None,
        description="Optional trace identifier propagated from the catalog service",
    )
    attempt: int = Field(0, ge=0, description="Number of failed executions so far")


class EventBatch(BaseModel):
    """Request body for POST /v1/embeddings/events."""

    items: list[ProductChangeEvent] = Field(..., min_length=1)

    @field_validator("items")
    @classmethod
    def _limit_items(cls, values: list[ProductChangeEvent]) -> list[ProductChangeEvent]:
        if len(values) > 500:
            raise ValueError("Batch size must be <= 500 items")
        return values


class EventDispatchResponse(BaseModel):
    """Response body for an event ingestion request."""

    queued: int = Field(..., ge=0)
    enabled: bool = True


class EmbeddingStatistics(BaseModel):
    """Aggregate counters over the embedding store."""

    total_embeddings: int = 0
    active_embeddings: int = 0
    inactive_embeddings: int = 0
    unique_products: int = 0
    outdated_embeddings: int = 0
    products_needing_embedding: int = 0
    current_model_version: int = 0
    current_model_name: str = ""
    embeddings_by_model: dict[str, int] = Field(default_factory=dict)
    embeddings_by_version: dict[int, int] = Field(default_factory=dict)


class BulkReindexResult(BaseModel):
    """Outcome of a bulk or outdated-only reindex request."""

    success: bool = False
    total_products: int = 0
    jobs_enqueued: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    errors: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_ms(self) -> int:
        if self.completed_at is None:
            return 0
        return int((self.completed_at - self.started_at).total_seconds() * 1000)


class ReindexRequest(BaseModel):
    """Request body for POST /v1/embeddings/reindex."""

    tenant_id: str | None = None
    shop_id: str | None = None


class ConnectionStatus(BaseModel):
    status: Literal["connected", "disconnected"]
    model: str
    model_version: int


class QueueStatus(BaseModel):
    """Backlog of the embedding job stream."""

    stream_length: int = 0
    pending: int = 0
    dead_letters: int = 0
