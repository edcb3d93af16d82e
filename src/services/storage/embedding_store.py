"""Qdrant-backed persistence and nearest-neighbour search for product embeddings."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import datetime
from typing import Annotated, Any

from fastapi import Depends
from qdrant_client import QdrantClient  # type: ignore[import]
from qdrant_client.http import models as qmodels  # type: ignore[import]

from src.config import settings
from src.models.embedding import EmbeddingStatistics, ProductEmbedding
from src.services.exceptions import EmbeddingDimensionError

logger = logging.getLogger(__name__)

_SCROLL_PAGE_SIZE = 256


def cosine_to_similarity(cosine: float) -> float:
    """Map a cosine similarity onto ``1 - distance / 2`` with distance in [0, 2]."""
    distance = 1.0 - cosine
    return 1.0 - distance / 2.0


def _match(key: str, value: Any) -> qmodels.FieldCondition:
    return qmodels.FieldCondition(key=key, match=qmodels.MatchValue(value=value))


class EmbeddingStore:
    """Stores one Qdrant point per (product, chunk) pair.

    The point id is derived from the product id and chunk index, so writing
    the same chunk twice updates the existing point in place.
    """

    def __init__(self, client: QdrantClient, collection_name: str, dimensions: int):
        self.client = client
        self.collection_name = collection_name
        self.dimensions = dimensions
        self._collection_ready = False

    async def ensure_collection(self) -> None:
        """Create the collection with cosine distance when it does not exist yet."""
        if self._collection_ready:
            return

        exists = await asyncio.to_thread(
            self.client.collection_exists,
            collection_name=self.collection_name,
        )
        if not exists:
            logger.info("Creating Qdrant collection %s", self.collection_name)
            await asyncio.to_thread(
                self.client.create_collection,
                collection_name=self.collection_name,
                vectors_config=qmodels.VectorParams(
                    size=self.dimensions,
                    distance=qmodels.Distance.COSINE,
                ),
            )
        self._collection_ready = True

    async def search_similar(
        self,
        query_vector: list[float],
        top_k: int = 10,
        tenant_id: str | None = None,
        shop_id: str | None = None,
        active_only: bool = True,
    ) -> list[tuple[ProductEmbedding, float]]:
        """Return the closest chunks with their similarity, best first."""
        if top_k <= 0:
            return []
        await self.ensure_collection()

        must: list[qmodels.Condition] = []
        if active_only:
            must.append(_match("is_active", True))
        if tenant_id:
            must.append(_match("tenant_id", tenant_id))
        if shop_id:
            must.append(_match("shop_id", shop_id))

        response = await asyncio.to_thread(
            self.client.query_points,
            collection_name=self.collection_name,
            query=query_vector,
            query_filter=qmodels.Filter(must=must) if must else None,
            limit=top_k,
            with_payload=True,
            with_vectors=True,
        )

        scored = [
            (self._to_embedding(point), cosine_to_similarity(point.score))
            for point in response.points
        ]
        # Python's sort is stable, so equal scores keep backend order
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored

    async def get_by_product(
        self, product_id: str, *, with_vectors: bool = True
    ) -> list[ProductEmbedding]:
        await self.ensure_collection()
        points = await self._scroll(
            qmodels.Filter(must=[_match("product_id", product_id)]),
            with_vectors=with_vectors,
        )
        embeddings = [self._to_embedding(point) for point in points]
        embeddings.sort(key=lambda embedding: embedding.chunk_index)
        return embeddings

    async def delete_by_product(self, product_id: str) -> None:
        await self.ensure_collection()
        await asyncio.to_thread(
            self.client.delete,
            collection_name=self.collection_name,
            points_selector=qmodels.FilterSelector(
                filter=qmodels.Filter(must=[_match("product_id", product_id)])
            ),
        )
        logger.debug("Deleted embeddings", extra={"product_id": product_id})

    async def delete_chunks_from(self, product_id: str, first_index: int) -> None:
        """Drop chunks left over from a longer previous version of the product."""
        await self.ensure_collection()
        await asyncio.to_thread(
            self.client.delete,
            collection_name=self.collection_name,
            points_selector=qmodels.FilterSelector(
                filter=qmodels.Filter(
                    must=[
                        _match("product_id", product_id),
                        qmodels.FieldCondition(
                            key="chunk_index",
                            range=qmodels.Range(gte=first_index),
                        ),
                    ]
                )
            ),
        )

    async def upsert(self, embedding: ProductEmbedding) -> ProductEmbedding:
        """Insert or update the point for (product_id, chunk_index).

        An update keeps the stored active flag; activation is changed only
        through ``set_active``.
        """
        if len(embedding.vector) != self.dimensions:
            raise EmbeddingDimensionError(self.dimensions, len(embedding.vector))
        await self.ensure_collection()

        point_id = embedding.point_id
        existing = await asyncio.to_thread(
            self.client.retrieve,
            collection_name=self.collection_name,
            ids=[point_id],
            with_payload=["is_active"],
            with_vectors=False,
        )
        stored = embedding.model_copy(update={"id": point_id})
        if existing:
            stored.is_active = bool((existing[0].payload or {}).get("is_active", True))

        await asyncio.to_thread(
            self.client.upsert,
            collection_name=self.collection_name,
            points=[
                qmodels.PointStruct(
                    id=point_id,
                    vector=stored.vector,
                    payload=self._to_payload(stored),
                )
            ],
        )
        return stored

    async def set_active(self, product_id: str, active: bool) -> int:
        """Flip the active flag on every chunk of a product; returns the chunk count."""
        await self.ensure_collection()
        points = await self._scroll(
            qmodels.Filter(must=[_match("product_id", product_id)]),
            with_vectors=False,
            with_payload=False,
        )
        if not points:
            return 0

        await asyncio.to_thread(
            self.client.set_payload,
            collection_name=self.collection_name,
            payload={"is_active": active},
            points=[point.id for point in points],
        )
        return len(points)

    async def get_products_needing_embedding(
        self, current_version: int, batch_size: int = 100
    ) -> list[str]:
        """Distinct product ids with chunks from an older model version."""
        if batch_size <= 0:
            return []
        await self.ensure_collection()

        outdated = qmodels.Filter(
            must=[
                qmodels.FieldCondition(
                    key="embedding_version",
                    range=qmodels.Range(lt=current_version),
                )
            ]
        )
        product_ids: list[str] = []
        seen: set[str] = set()
        offset = None
        while len(product_ids) < batch_size:
            points, offset = await asyncio.to_thread(
                self.client.scroll,
                collection_name=self.collection_name,
                scroll_filter=outdated,
                limit=_SCROLL_PAGE_SIZE,
                offset=offset,
                with_payload=["product_id"],
                with_vectors=False,
            )
            for point in points:
                product_id = (point.payload or {}).get("product_id")
                if product_id and product_id not in seen:
                    seen.add(product_id)
                    product_ids.append(product_id)
                    if len(product_ids) >= batch_size:
                        break
            if offset is None:
                break
        return product_ids

    async def get_statistics(self, current_version: int) -> EmbeddingStatistics:
        await self.ensure_collection()
        points = await self._scroll(None, with_vectors=False)

        stats = EmbeddingStatistics(current_model_version=current_version)
        products: set[str] = set()
        by_model: Counter[str] = Counter()
        by_version: Counter[int] = Counter()
        for point in points:
            payload = point.payload or {}
            stats.total_embeddings += 1
            if payload.get("is_active", True):
                stats.active_embeddings += 1
            else:
                stats.inactive_embeddings += 1
            version = int(payload.get("embedding_version", 0))
            if version < current_version:
                stats.outdated_embeddings += 1
            products.add(str(payload.get("product_id")))
            by_model[str(payload.get("embedding_model", ""))] += 1
            by_version[version] += 1

        stats.unique_products = len(products)
        stats.embeddings_by_model = dict(by_model)
        stats.embeddings_by_version = dict(by_version)
        return stats

    async def list_embeddings(self, limit: int = 100) -> list[ProductEmbedding]:
        """Return stored chunks without their vectors, for inspection."""
        await self.ensure_collection()
        points, _ = await asyncio.to_thread(
            self.client.scroll,
            collection_name=self.collection_name,
            limit=limit,
            with_payload=True,
            with_vectors=False,
        )
        return [self._to_embedding(point) for point in points]

    async def _scroll(
        self,
        scroll_filter: qmodels.Filter | None,
        *,
        with_vectors: bool,
        with_payload: bool = True,
    ) -> list[Any]:
        collected: list[Any] = []
        offset = None
        while True:
            points, offset = await asyncio.to_thread(
                self.client.scroll,
                collection_name=self.collection_name,
                scroll_filter=scroll_filter,
                limit=_SCROLL_PAGE_SIZE,
                offset=offset,
                with_payload=with_payload,
                with_vectors=with_vectors,
            )
            collected.extend(points)
            if offset is None:
                return collected

    @staticmethod
    def _to_payload(embedding: ProductEmbedding) -> dict[str, Any]:
        return {
            "product_id": embedding.product_id,
            "tenant_id": embedding.tenant_id,
            "shop_id": embedding.shop_id,
            "chunk_index": embedding.chunk_index,
            "chunk_text": embedding.chunk_text,
            "embedding_model": embedding.embedding_model,
            "embedding_version": embedding.embedding_version,
            "canonical_document_version": embedding.canonical_document_version,
            "generated_at": embedding.generated_at.isoformat(),
            "payload_json": embedding.payload_json,
            "is_active": embedding.is_active,
        }

    @staticmethod
    def _to_embedding(point: Any) -> ProductEmbedding:
        payload = point.payload or {}
        vector = point.vector if isinstance(point.vector, list) else []
        generated_at = payload.get("generated_at")
        return ProductEmbedding(
            id=str(point.id),
            product_id=payload.get("product_id", ""),
            tenant_id=payload.get("tenant_id"),
            shop_id=payload.get("shop_id", ""),
            chunk_index=int(payload.get("chunk_index", 0)),
            chunk_text=payload.get("chunk_text", ""),
            vector=list(vector),
            embedding_model=payload.get("embedding_model", ""),
            embedding_version=int(payload.get("embedding_version", 0)),
            canonical_document_version=int(payload.get("canonical_document_version", 0)),
            generated_at=(
                datetime.fromisoformat(generated_at) if generated_at else datetime.min
            ),
            payload_json=payload.get("payload_json"),
            is_active=bool(payload.get("is_active", True)),
        )


def create_embedding_store(
    collection_name: str | None = None,
    client: QdrantClient | None = None,
) -> EmbeddingStore:
    """Factory function to create an embedding store."""
    return EmbeddingStore(
        client or QdrantClient(url=settings.QDRANT_URL),
        collection_name or settings.QDRANT_COLLECTION,
        settings.EMBEDDING_DIMENSIONS,
    )


_embedding_store: EmbeddingStore | None = None


def get_embedding_store() -> EmbeddingStore:
    """FastAPI dependency returning the shared embedding store."""
    global _embedding_store
    if _embedding_store is None:
        _embedding_store = create_embedding_store()
    return _embedding_store


EmbeddingStoreDependency = Annotated[EmbeddingStore, Depends(get_embedding_store)]
