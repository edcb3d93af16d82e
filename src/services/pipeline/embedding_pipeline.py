"""Turns products into stored chunk embeddings and manages their lifecycle."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from src.config import settings
from src.models.document import CanonicalProductDocument
from src.models.embedding import (
    EmbeddingJob,
    EmbeddingPayload,
    PipelineOperation,
    ProductEmbedding,
)
from src.models.product import Product
from src.services.clients.encoder_client import EncoderClient
from src.services.documents.canonical_builder import CanonicalDocumentBuilder
from src.services.documents.chunker import ContentChunker, create_content_chunker
from src.services.product_registry import (
    CatalogLookup,
    ProductRepository,
    get_registry,
)
from src.services.storage.embedding_store import EmbeddingStore, create_embedding_store

logger = logging.getLogger(__name__)


class EmbeddingPipeline:
    """Per-product operations: generate, delete, deactivate and activate.

    Each operation is idempotent, so a job delivered more than once is safe
    to replay. Failures propagate to the caller, which owns retries.
    """

    def __init__(
        self,
        *,
        products: ProductRepository,
        store: EmbeddingStore,
        encoder: EncoderClient,
        chunker: ContentChunker,
        builder: CanonicalDocumentBuilder,
        enabled: bool = True,
    ) -> None:
        self.products = products
        self.store = store
        self.encoder = encoder
        self.chunker = chunker
        self.builder = builder
        self.enabled = enabled

    async def run(self, job: EmbeddingJob) -> None:
        """Execute the operation requested by a queued job."""
        handlers = {
            PipelineOperation.GENERATE: self.generate_embedding,
            PipelineOperation.DELETE: self.delete_embeddings,
            PipelineOperation.DEACTIVATE: self.deactivate_embeddings,
            PipelineOperation.ACTIVATE: self.activate_embeddings,
        }
        await handlers[job.op](job.product_id)

    async def generate_embedding(self, product_id: str) -> None:
        if not self.enabled:
            logger.debug("Embedding generation disabled, skipping %s", product_id)
            return

        product = await self.products.find_by_id(product_id, platform_scope=True)
        if product is None:
            logger.warning(
                "Product not found for embedding generation",
                extra={"product_id": product_id},
            )
            return

        if not product.is_eligible_for_embedding:
            logger.info(
                "Product %s is not active and published, deactivating embeddings",
                product_id,
            )
            await self.deactivate_embeddings(product_id)
            return

        document = self._cached_document(product)
        rebuilt = document is None
        if rebuilt:
            document = await self.builder.build(product)
        chunks = self.chunker.chunk(document.to_embedding_text(), title=product.name)
        payload_json = self._build_payload(document).model_dump_json()

        for chunk in chunks:
            vector = await self.encoder.embed(chunk.text)
            await self.store.upsert(
                ProductEmbedding(
                    product_id=product.id,
                    tenant_id=product.tenant_id,
                    shop_id=product.shop_id,
                    chunk_index=chunk.index,
                    chunk_text=chunk.text,
                    vector=vector,
                    embedding_model=self.encoder.model_name,
                    embedding_version=self.encoder.model_version,
                    canonical_document_version=document.schema_version,
                    generated_at=datetime.now(UTC),
                    payload_json=payload_json,
                )
            )

        await self.store.delete_chunks_from(product.id, len(chunks))
        await self.store.set_active(product.id, True)

        # only the flag and the rebuilt document are written, never the loaded copy
        await self.products.mark_embedding_generated(
            product.id, product.revision, document if rebuilt else None
        )

        logger.info(
            "Embeddings generated",
            extra={
                "product_id": product.id,
                "shop_id": product.shop_id,
                "chunks": len(chunks),
                "model_version": self.encoder.model_version,
            },
        )

    async def delete_embeddings(self, product_id: str) -> None:
        await self.store.delete_by_product(product_id)
        logger.info("Embeddings deleted", extra={"product_id": product_id})

    async def deactivate_embeddings(self, product_id: str) -> None:
        updated = await self.store.set_active(product_id, False)
        if updated:
            logger.info(
                "Embeddings deactivated",
                extra={"product_id": product_id, "chunks": updated},
            )

    async def activate_embeddings(self, product_id: str) -> None:
        existing = await self.store.get_by_product(product_id, with_vectors=False)
        if not existing:
            await self.generate_embedding(product_id)
            return

        await self.store.set_active(product_id, True)
        logger.info(
            "Embeddings activated",
            extra={"product_id": product_id, "chunks": len(existing)},
        )

    def _cached_document(self, product: Product) -> CanonicalProductDocument | None:
        """Return the cached document unless it is missing or its schema is stale."""
        if product.needs_canonical_document_update(self.builder.current_schema_version):
            return None
        return product.get_canonical_document()

    @staticmethod
    def _build_payload(document: CanonicalProductDocument) -> EmbeddingPayload:
        return EmbeddingPayload(
            product_id=document.product_id,
            name=document.name,
            shop_id=document.shop_id,
            shop_name=document.shop_name,
            category_name=document.category_name,
            price=document.price,
            is_in_stock=document.is_in_stock,
            is_on_sale=document.is_on_sale,
            sku=document.sku,
        )


def create_embedding_pipeline(
    encoder: EncoderClient,
    *,
    store: EmbeddingStore | None = None,
    products: ProductRepository | None = None,
    catalog: CatalogLookup | None = None,
) -> EmbeddingPipeline:
    """Factory function wiring the pipeline from settings."""
    registry = get_registry()
    return EmbeddingPipeline(
        products=products or registry,
        store=store or create_embedding_store(),
        encoder=encoder,
        chunker=create_content_chunker(),
        builder=CanonicalDocumentBuilder(catalog or registry),
        enabled=settings.ENABLE_EMBEDDING_GENERATION,
    )
