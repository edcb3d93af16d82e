"""Bulk re-embedding and embedding statistics."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import Depends

from src.models.embedding import (
    BulkReindexResult,
    EmbeddingStatistics,
    ProductChangeEvent,
    ProductChangeType,
)
from src.models.product import Product
from src.services.clients.encoder_client import EncoderClient, EncoderDependency
from src.services.pipeline.dispatcher import ChangeDispatcher, DispatcherDependency
from src.services.product_registry import ProductRepository, RegistryDependency
from src.services.storage.embedding_store import (
    EmbeddingStore,
    EmbeddingStoreDependency,
)

logger = logging.getLogger(__name__)


def _reindex_event(product_id: str, shop_id: str, tenant_id: str | None) -> ProductChangeEvent:
    return ProductChangeEvent(
        change_type=ProductChangeType.BULK_REINDEX,
        product_id=product_id,
        shop_id=shop_id,
        tenant_id=tenant_id,
        is_eligible_for_embedding=True,
    )


class BulkReindexService:
    """Schedules re-embedding after model upgrades or for initial setup."""

    def __init__(
        self,
        *,
        products: ProductRepository,
        store: EmbeddingStore,
        encoder: EncoderClient,
        dispatcher: ChangeDispatcher,
    ) -> None:
        self.products = products
        self.store = store
        self.encoder = encoder
        self.dispatcher = dispatcher

    async def trigger_bulk_reindex(
        self, tenant_id: str | None = None, shop_id: str | None = None
    ) -> BulkReindexResult:
        """Queue generation for every active, published product in scope."""
        logger.info("Starting bulk reindex (tenant=%s, shop=%s)", tenant_id, shop_id)
        result = BulkReindexResult()

        def in_scope(product: Product) -> bool:
            return (
                product.is_eligible_for_embedding
                and (tenant_id is None or product.tenant_id == tenant_id)
                and (shop_id is None or product.shop_id == shop_id)
            )

        products = await self.products.get_list(in_scope, platform_scope=True)
        result.total_products = len(products)
        for product in products:
            event = _reindex_event(product.id, product.shop_id, product.tenant_id)
            await self._enqueue(event, result)

        return self._complete(result, "Bulk reindex")

    async def reindex_outdated(self, batch_size: int = 100) -> BulkReindexResult:
        """Queue generation for products embedded with an older model version."""
        current_version = self.encoder.model_version
        logger.info(
            "Starting reindex of outdated embeddings (current version: %s)",
            current_version,
        )
        result = BulkReindexResult()

        product_ids = await self.store.get_products_needing_embedding(
            current_version, batch_size
        )
        result.total_products = len(product_ids)
        for product_id in product_ids:
            product = await self.products.find_by_id(product_id, platform_scope=True)
            if product is None:
                # stale vectors of a product that no longer exists
                await self.store.delete_by_product(product_id)
                continue
            event = _reindex_event(product.id, product.shop_id, product.tenant_id)
            await self._enqueue(event, result)

        return self._complete(result, "Outdated reindex")

    async def get_statistics(self) -> EmbeddingStatistics:
        stats = await self.store.get_statistics(self.encoder.model_version)
        stats.current_model_name = self.encoder.model_name

        pending = await self.products.get_list(
            lambda product: product.is_eligible_for_embedding
            and not product.embedding_generated,
            platform_scope=True,
        )
        stats.products_needing_embedding = len(pending)
        return stats

    async def get_embedding_counts(self) -> tuple[int, int]:
        """Return (total, active) chunk counts."""
        stats = await self.store.get_statistics(self.encoder.model_version)
        return stats.total_embeddings, stats.active_embeddings

    async def test_connection(self) -> bool:
        return await self.encoder.test_connection()

    async def _enqueue(self, event: ProductChangeEvent, result: BulkReindexResult) -> None:
        try:
            result.jobs_enqueued += await self.dispatcher.dispatch(event)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Failed to enqueue reindex job for product %s",
                event.product_id,
                exc_info=True,
            )
            result.errors.append(f"Failed to enqueue job for {event.product_id}: {exc}")

    @staticmethod
    def _complete(result: BulkReindexResult, label: str) -> BulkReindexResult:
        result.completed_at = datetime.now(UTC)
        result.success = not result.errors
        logger.info(
            "%s triggered: %d/%d jobs enqueued in %dms",
            label,
            result.jobs_enqueued,
            result.total_products,
            result.duration_ms,
        )
        return result


def get_reindex_service(
    encoder: EncoderDependency,
    store: EmbeddingStoreDependency,
    dispatcher: DispatcherDependency,
    registry: RegistryDependency,
) -> BulkReindexService | None:
    """FastAPI dependency; None when no encoder is configured."""
    if encoder is None:
        return None
    return BulkReindexService(
        products=registry,
        store=store,
        encoder=encoder,
        dispatcher=dispatcher,
    )


ReindexServiceDependency = Annotated[BulkReindexService | None, Depends(get_reindex_service)]
