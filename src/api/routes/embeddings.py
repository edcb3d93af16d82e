"""Routes for ingesting change events and operating the embedding index."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status

from src.config import settings
from src.models.embedding import (
    BulkReindexResult,
    ConnectionStatus,
    EmbeddingStatistics,
    EventBatch,
    EventDispatchResponse,
    ProductEmbedding,
    QueueStatus,
    ReindexRequest,
)
from src.services.pipeline.dispatcher import DispatcherDependency
from src.services.queue.embedding_queue import QueueDependency
from src.services.queue.redis_stream import create_redis_stream_service
from src.services.reindex import BulkReindexService, ReindexServiceDependency
from src.services.storage.embedding_store import EmbeddingStoreDependency

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/embeddings", tags=["embeddings"])


def _require_reindex(service: BulkReindexService | None) -> BulkReindexService:
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Embedding backend is not configured",
        )
    return service


def _describe(embedding: ProductEmbedding) -> dict[str, Any]:
    data = embedding.model_dump(mode="json", exclude={"vector"})
    data["vector_preview"] = embedding.vector[:5]
    return data


@router.post(
    "/events",
    response_model=EventDispatchResponse,
    summary="Dispatch product change events to the embedding pipeline",
    status_code=status.HTTP_202_ACCEPTED,
)
async def dispatch_events(
    payload: EventBatch, dispatcher: DispatcherDependency
) -> EventDispatchResponse:
    """Translate each change event into one queued pipeline job.

    Nothing is queued while embedding generation is disabled.
    """
    try:
        queued = await dispatcher.dispatch_many(payload.items)
    except Exception:
        logger.exception("Failed to enqueue embedding jobs")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Embedding queue unavailable",
        )
    return EventDispatchResponse(queued=queued, enabled=dispatcher.enabled)


@router.get(
    "/stream",
    summary="List entries waiting in the embeddings stream",
)
async def list_stream_entries(
    queue: QueueDependency, count: int = Query(100, ge=1, le=1000)
) -> list[dict]:
    try:
        return await queue.read_entries(count)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        )


@router.get(
    "/queue",
    response_model=QueueStatus,
    summary="Backlog of the job stream and its dead letter stream",
)
async def queue_status(queue: QueueDependency) -> QueueStatus:
    stream = create_redis_stream_service(stream_key=queue.stream_key, client=queue.client)
    try:
        return QueueStatus(
            stream_length=await queue.length(),
            pending=await stream.pending_count(),
            dead_letters=await queue.length(settings.DLQ_STREAM_KEY),
        )
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        )


@router.get(
    "/dlq",
    summary="Read recent dead-letter queue entries",
)
async def read_dlq(
    queue: QueueDependency, count: int = Query(100, ge=1, le=1000)
) -> list[dict]:
    try:
        return await queue.read_entries(count, stream_key=settings.DLQ_STREAM_KEY)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        )


@router.get(
    "/list",
    summary="List embeddings stored in Qdrant",
)
async def list_embeddings(
    store: EmbeddingStoreDependency, limit: int = Query(100, ge=1, le=1000)
) -> list[dict]:
    try:
        embeddings = await store.list_embeddings(limit)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        )
    return [_describe(embedding) for embedding in embeddings]


@router.get(
    "/products/{product_id}",
    summary="Show the stored chunks of one product",
)
async def get_product_embeddings(
    product_id: str, store: EmbeddingStoreDependency
) -> list[dict]:
    embeddings = await store.get_by_product(product_id)
    return [_describe(embedding) for embedding in embeddings]


@router.post(
    "/reindex",
    response_model=BulkReindexResult,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue regeneration for every active, published product",
)
async def trigger_reindex(
    service: ReindexServiceDependency,
    payload: ReindexRequest | None = None,
) -> BulkReindexResult:
    request = payload or ReindexRequest()
    return await _require_reindex(service).trigger_bulk_reindex(
        tenant_id=request.tenant_id,
        shop_id=request.shop_id,
    )


@router.post(
    "/reindex/outdated",
    response_model=BulkReindexResult,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue regeneration for products embedded by an older model",
)
async def reindex_outdated(
    service: ReindexServiceDependency,
    batch_size: int = Query(settings.REINDEX_BATCH_SIZE, ge=1, le=10_000),
) -> BulkReindexResult:
    return await _require_reindex(service).reindex_outdated(batch_size)


@router.get(
    "/statistics",
    response_model=EmbeddingStatistics,
    summary="Embedding counts by state, model and version",
)
async def get_statistics(service: ReindexServiceDependency) -> EmbeddingStatistics:
    return await _require_reindex(service).get_statistics()


@router.get(
    "/connection",
    response_model=ConnectionStatus,
    summary="Check that the embedding backend serves the configured model",
)
async def test_connection(service: ReindexServiceDependency) -> ConnectionStatus:
    service = _require_reindex(service)
    connected = await service.test_connection()
    return ConnectionStatus(
        status="connected" if connected else "disconnected",
        model=service.encoder.model_name,
        model_version=service.encoder.model_version,
    )
