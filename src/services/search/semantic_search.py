"""Query-time semantic search over stored product embeddings."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends
from pydantic import ValidationError

from src.config import settings
from src.models.embedding import EmbeddingPayload, ProductEmbedding
from src.models.search import ProductSearchResult
from src.services.clients.encoder_client import EncoderClient, EncoderDependency
from src.services.storage.embedding_store import (
    EmbeddingStore,
    EmbeddingStoreDependency,
)

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 200


def make_snippet(text: str, length: int = SNIPPET_LENGTH) -> str:
    if len(text) <= length:
        return text
    return text[: length - 3] + "..."


class SemanticSearchService:
    """Embeds queries, searches chunks and returns one result per product.

    Several chunks of the same product can match a query, so more candidates
    than requested are fetched and collapsed onto their best chunk. When a
    full candidate batch still yields too few products, the candidate limit
    is doubled and the search repeated, a bounded number of times.
    """

    def __init__(
        self,
        store: EmbeddingStore,
        encoder: EncoderClient,
        *,
        candidate_multiplier: int = 2,
        expansion_rounds: int = 2,
    ) -> None:
        self.store = store
        self.encoder = encoder
        self.candidate_multiplier = max(1, candidate_multiplier)
        self.expansion_rounds = max(0, expansion_rounds)

    async def search(
        self,
        query: str,
        top_k: int = 10,
        tenant_id: str | None = None,
        shop_id: str | None = None,
    ) -> list[ProductSearchResult]:
        if not query or not query.strip() or top_k <= 0:
            return []

        vector = await self.encoder.embed(query)
        ranked = await self._rank(
            vector,
            top_k,
            limit=self.candidate_multiplier * top_k,
            tenant_id=tenant_id,
            shop_id=shop_id,
        )

        logger.info(
            "Semantic search completed",
            extra={"top_k": top_k, "results": len(ranked), "shop_id": shop_id},
        )
        return [self._to_result(embedding, score) for embedding, score in ranked]

    async def get_similar_products(
        self, product_id: str, top_k: int = 5
    ) -> list[ProductSearchResult]:
        """Products closest to the primary chunk of the reference product."""
        if top_k <= 0:
            return []

        embeddings = await self.store.get_by_product(product_id)
        if not embeddings or not embeddings[0].vector:
            return []

        ranked = await self._rank(
            embeddings[0].vector,
            top_k,
            limit=self.candidate_multiplier * (top_k + 1),
            exclude_product_id=product_id,
        )
        return [self._to_result(embedding, score) for embedding, score in ranked]

    async def _rank(
        self,
        vector: list[float],
        top_k: int,
        *,
        limit: int,
        tenant_id: str | None = None,
        shop_id: str | None = None,
        exclude_product_id: str | None = None,
    ) -> list[tuple[ProductEmbedding, float]]:
        best: dict[str, tuple[ProductEmbedding, float]] = {}
        for round_number in range(self.expansion_rounds + 1):
            matches = await self.store.search_similar(
                vector,
                limit,
                tenant_id=tenant_id,
                shop_id=shop_id,
            )
            best = self._best_per_product(matches, exclude_product_id)

            exhausted = len(matches) < limit
            if len(best) >= top_k or exhausted or round_number == self.expansion_rounds:
                break
            logger.debug(
                "Expanding candidate limit from %d to %d (%d distinct products)",
                limit,
                limit * 2,
                len(best),
            )
            limit *= 2

        ranked = sorted(best.values(), key=lambda item: item[1], reverse=True)
        return ranked[:top_k]

    @staticmethod
    def _best_per_product(
        matches: list[tuple[ProductEmbedding, float]],
        exclude_product_id: str | None,
    ) -> dict[str, tuple[ProductEmbedding, float]]:
        best: dict[str, tuple[ProductEmbedding, float]] = {}
        for embedding, score in matches:
            if embedding.product_id == exclude_product_id:
                continue
            current = best.get(embedding.product_id)
            if current is None or score > current[1]:
                best[embedding.product_id] = (embedding, score)
        return best

    @staticmethod
    def _to_result(embedding: ProductEmbedding, score: float) -> ProductSearchResult:
        payload = EmbeddingPayload()
        if embedding.payload_json:
            try:
                payload = EmbeddingPayload.model_validate_json(embedding.payload_json)
            except ValidationError:
                logger.warning(
                    "Ignoring malformed payload on embedding %s",
                    embedding.id,
                    extra={"product_id": embedding.product_id},
                )

        return ProductSearchResult(
            product_id=embedding.product_id,
            relevance_score=score,
            product_name=payload.name or "",
            shop_id=embedding.shop_id,
            shop_name=payload.shop_name,
            category_name=payload.category_name,
            price=payload.price,
            is_in_stock=payload.is_in_stock,
            is_on_sale=payload.is_on_sale,
            sku=payload.sku,
            matched_snippet=make_snippet(embedding.chunk_text),
        )


def create_search_service(store: EmbeddingStore, encoder: EncoderClient) -> SemanticSearchService:
    """Factory function to create a search service from settings."""
    return SemanticSearchService(
        store,
        encoder,
        candidate_multiplier=settings.SEARCH_CANDIDATE_MULTIPLIER,
        expansion_rounds=settings.SEARCH_CANDIDATE_EXPANSION_ROUNDS,
    )


def get_search_service(
    encoder: EncoderDependency,
    store: EmbeddingStoreDependency,
) -> SemanticSearchService | None:
    """FastAPI dependency; None when no encoder is configured."""
    if encoder is None:
        return None
    return create_search_service(store, encoder)


SearchServiceDependency = Annotated[
    SemanticSearchService | None, Depends(get_search_service)
]
