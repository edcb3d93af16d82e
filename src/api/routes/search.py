"""Semantic product search routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, status

from src.config import settings
from src.models.search import SearchRequest, SearchResponse
from src.services.exceptions import InvalidInputError, UpstreamError
from src.services.search.semantic_search import (
    SearchServiceDependency,
    SemanticSearchService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/search", tags=["search"])


def _require_service(service: SemanticSearchService | None) -> SemanticSearchService:
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Embedding backend is not configured",
        )
    return service


@router.post(
    "",
    response_model=SearchResponse,
    summary="Search products by meaning",
)
async def search_products(
    payload: SearchRequest, service: SearchServiceDependency
) -> SearchResponse:
    service = _require_service(service)
    top_k = min(payload.top_k or settings.SEARCH_DEFAULT_TOP_K, settings.SEARCH_MAX_TOP_K)

    try:
        results = await service.search(
            payload.query,
            top_k,
            tenant_id=payload.tenant_id,
            shop_id=payload.shop_id,
        )
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except UpstreamError as exc:
        logger.error("Semantic search failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))

    return SearchResponse(results=results)


@router.get(
    "/similar/{product_id}",
    response_model=SearchResponse,
    summary="Find products similar to a reference product",
)
async def similar_products(
    product_id: str,
    service: SearchServiceDependency,
    top_k: int = Query(settings.SIMILAR_DEFAULT_TOP_K, ge=1),
) -> SearchResponse:
    service = _require_service(service)
    results = await service.get_similar_products(
        product_id, min(top_k, settings.SEARCH_MAX_TOP_K)
    )
    return SearchResponse(results=results)
