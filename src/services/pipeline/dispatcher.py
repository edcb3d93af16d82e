"""Maps product lifecycle events onto queued pipeline operations."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Annotated

from fastapi import Depends

from src.config import settings
from src.models.embedding import (
    EmbeddingJob,
    PipelineOperation,
    ProductChangeEvent,
    ProductChangeType,
)
from src.services.queue.embedding_queue import EmbeddingQueue, QueueDependency

logger = logging.getLogger(__name__)

_FIXED_OPERATIONS = {
    ProductChangeType.DELETED: PipelineOperation.DELETE,
    ProductChangeType.PUBLISHED: PipelineOperation.ACTIVATE,
    ProductChangeType.UNPUBLISHED: PipelineOperation.DEACTIVATE,
    ProductChangeType.BULK_REINDEX: PipelineOperation.GENERATE,
}


def resolve_operation(event: ProductChangeEvent) -> PipelineOperation:
    """Return the single pipeline operation an event calls for."""
    if event.change_type in (ProductChangeType.CREATED, ProductChangeType.UPDATED):
        if event.is_eligible_for_embedding:
            return PipelineOperation.GENERATE
        return PipelineOperation.DEACTIVATE
    return _FIXED_OPERATIONS[event.change_type]


class ChangeDispatcher:
    """Turns change events into embedding jobs on the work queue."""

    def __init__(self, queue: EmbeddingQueue, *, enabled: bool = True) -> None:
        self.queue = queue
        self.enabled = enabled

    def build_job(self, event: ProductChangeEvent, trace_id: str | None = None) -> EmbeddingJob:
        return EmbeddingJob(
            product_id=event.product_id,
            op=resolve_operation(event),
            change_type=event.change_type,
            shop_id=event.shop_id,
            tenant_id=event.tenant_id,
            canonical_document_version=event.canonical_document_version,
            trace_id=trace_id,
        )

    async def dispatch(self, event: ProductChangeEvent, trace_id: str | None = None) -> int:
        return await self.dispatch_many([event], trace_id=trace_id)

    async def dispatch_many(
        self, events: Sequence[ProductChangeEvent], trace_id: str | None = None
    ) -> int:
        """Enqueue one job per event; returns the number of jobs queued."""
        if not self.enabled:
            logger.debug("Embedding generation disabled, dropping %d events", len(events))
            return 0
        if not events:
            return 0

        jobs = [self.build_job(event, trace_id) for event in events]
        for job in jobs:
            logger.debug(
                "Dispatching %s for product %s",
                job.op.value,
                job.product_id,
                extra={"change_type": job.change_type, "shop_id": job.shop_id},
            )
        return await self.queue.enqueue(jobs)


def get_change_dispatcher(queue: QueueDependency) -> ChangeDispatcher:
    """FastAPI dependency returning a dispatcher bound to the Redis queue."""
    return ChangeDispatcher(
        queue,
        enabled=settings.ENABLE_EMBEDDING_GENERATION,
    )


DispatcherDependency = Annotated[ChangeDispatcher, Depends(get_change_dispatcher)]
