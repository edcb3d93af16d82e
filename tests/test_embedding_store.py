"""Tests for the Qdrant-backed embedding store."""

import math

import pytest
from qdrant_client.http import models as qmodels

from src.models.embedding import ProductEmbedding, embedding_point_id
from src.services.exceptions import EmbeddingDimensionError
from src.services.storage.embedding_store import cosine_to_similarity

QUERY = [1.0, 0.0, 0.0, 0.0]


def _unit(cosine: float) -> list[float]:
    """Unit vector whose cosine similarity with QUERY is ``cosine``."""
    return [cosine, math.sqrt(1.0 - cosine**2), 0.0, 0.0]


def _embedding(product_id: str, chunk_index: int = 0, **overrides) -> ProductEmbedding:
    data = {
        "product_id": product_id,
        "tenant_id": "tenant-1",
        "shop_id": "shop-1",
        "chunk_index": chunk_index,
        "chunk_text": f"{product_id} chunk {chunk_index}",
        "vector": _unit(0.5),
        "embedding_model": "stub-embedding",
        "embedding_version": 1,
        "canonical_document_version": 1,
        "payload_json": '{"name": "Thing"}',
    }
    data.update(overrides)
    return ProductEmbedding(**data)


def test_similarity_maps_cosine_distance_onto_unit_interval():
    assert cosine_to_similarity(1.0) == 1.0
    assert cosine_to_similarity(-1.0) == 0.0
    # cosine distance 0.2
    assert cosine_to_similarity(0.8) == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_upsert_twice_keeps_one_record_with_latest_content(store):
    await store.upsert(_embedding("p1", chunk_text="old text"))
    await store.upsert(_embedding("p1", chunk_text="new text", embedding_version=2))

    stored = await store.get_by_product("p1")

    assert len(stored) == 1
    assert stored[0].chunk_text == "new text"
    assert stored[0].embedding_version == 2
    assert stored[0].id == embedding_point_id("p1", 0)


@pytest.mark.asyncio
async def test_upsert_preserves_active_flag(store):
    await store.upsert(_embedding("p1"))
    await store.set_active("p1", False)

    await store.upsert(_embedding("p1", chunk_text="refreshed"))

    stored = await store.get_by_product("p1")
    assert stored[0].is_active is False
    assert stored[0].chunk_text == "refreshed"


@pytest.mark.asyncio
async def test_upsert_rejects_wrong_dimension(store):
    with pytest.raises(EmbeddingDimensionError) as exc_info:
        await store.upsert(_embedding("p1", vector=[1.0, 0.0]))

    assert exc_info.value.expected == 4
    assert exc_info.value.actual == 2


@pytest.mark.asyncio
async def test_search_ranks_by_similarity(store):
    await store.upsert(_embedding("b", vector=_unit(-0.2)))
    await store.upsert(_embedding("a", vector=_unit(0.8)))

    results = await store.search_similar(QUERY, top_k=2)

    assert [embedding.product_id for embedding, _ in results] == ["a", "b"]
    assert results[0][1] == pytest.approx(0.9, abs=1e-4)
    assert results[1][1] == pytest.approx(0.4, abs=1e-4)


@pytest.mark.asyncio
async def test_search_applies_filters_before_ranking(store):
    await store.upsert(_embedding("near", shop_id="shop-2", vector=_unit(0.95)))
    await store.upsert(_embedding("far", vector=_unit(0.1)))
    await store.upsert(
        _embedding("other-tenant", tenant_id="tenant-2", shop_id="shop-3", vector=_unit(0.9))
    )

    by_shop = await store.search_similar(QUERY, top_k=1, shop_id="shop-1")
    by_tenant = await store.search_similar(QUERY, top_k=5, tenant_id="tenant-1")

    assert [embedding.product_id for embedding, _ in by_shop] == ["far"]
    assert {embedding.product_id for embedding, _ in by_tenant} == {"near", "far"}


@pytest.mark.asyncio
async def test_inactive_embeddings_hidden_from_search_but_retained(store):
    await store.upsert(_embedding("p1", vector=_unit(0.9)))
    updated = await store.set_active("p1", False)

    assert updated == 1
    assert await store.search_similar(QUERY, top_k=5) == []
    assert len(await store.search_similar(QUERY, top_k=5, active_only=False)) == 1
    assert len(await store.get_by_product("p1")) == 1


@pytest.mark.asyncio
async def test_get_by_product_orders_chunks(store):
    for index in (2, 0, 1):
        await store.upsert(_embedding("p1", chunk_index=index))

    stored = await store.get_by_product("p1")

    assert [embedding.chunk_index for embedding in stored] == [0, 1, 2]


@pytest.mark.asyncio
async def test_delete_by_product_is_idempotent(store):
    await store.upsert(_embedding("p1"))
    await store.upsert(_embedding("p1", chunk_index=1))
    await store.upsert(_embedding("p2"))

    await store.delete_by_product("p1")
    await store.delete_by_product("p1")

    assert await store.get_by_product("p1") == []
    assert len(await store.get_by_product("p2")) == 1


@pytest.mark.asyncio
async def test_delete_chunks_from_prunes_trailing_chunks(store):
    for index in range(3):
        await store.upsert(_embedding("p1", chunk_index=index))

    await store.delete_chunks_from("p1", 1)

    assert [embedding.chunk_index for embedding in await store.get_by_product("p1")] == [0]


@pytest.mark.asyncio
async def test_set_active_without_embeddings_is_noop(store):
    assert await store.set_active("missing", True) == 0


@pytest.mark.asyncio
async def test_products_needing_embedding_are_distinct_and_capped(store):
    await store.upsert(_embedding("old-1", embedding_version=1))
    await store.upsert(_embedding("old-1", chunk_index=1, embedding_version=1))
    await store.upsert(_embedding("old-2", embedding_version=1))
    await store.upsert(_embedding("current", embedding_version=2))

    outdated = await store.get_products_needing_embedding(2, batch_size=10)
    capped = await store.get_products_needing_embedding(2, batch_size=1)

    assert sorted(outdated) == ["old-1", "old-2"]
    assert len(capped) == 1


@pytest.mark.asyncio
async def test_statistics_count_states_models_and_versions(store):
    await store.upsert(_embedding("p1", embedding_version=1))
    await store.upsert(_embedding("p1", chunk_index=1, embedding_version=1))
    await store.upsert(_embedding("p2", embedding_version=2, embedding_model="other"))
    await store.set_active("p2", False)

    stats = await store.get_statistics(current_version=2)

    assert stats.total_embeddings == 3
    assert stats.active_embeddings == 2
    assert stats.inactive_embeddings == 1
    assert stats.unique_products == 2
    assert stats.outdated_embeddings == 2
    assert stats.embeddings_by_model == {"stub-embedding": 2, "other": 1}
    assert stats.embeddings_by_version == {1: 2, 2: 1}


@pytest.mark.asyncio
async def test_list_embeddings_omits_vectors(store):
    await store.upsert(_embedding("p1"))

    listed = await store.list_embeddings(limit=10)

    assert len(listed) == 1
    assert listed[0].vector == []
    assert listed[0].payload_json == '{"name": "Thing"}'


def _scored(product_id: str, cosine: float) -> qmodels.ScoredPoint:
    return qmodels.ScoredPoint(
        id=embedding_point_id(product_id, 0),
        version=0,
        score=cosine,
        payload={"product_id": product_id, "shop_id": "shop-1", "chunk_text": product_id},
        vector=QUERY,
    )


@pytest.mark.asyncio
async def test_search_keeps_backend_order_for_equal_scores(store, monkeypatch):
    response = qmodels.QueryResponse(
        points=[_scored("weak", 0.2), _scored("tie-second", 0.8), _scored("tie-first", 0.8)]
    )
    monkeypatch.setattr(store.client, "query_points", lambda **_kwargs: response)

    results = await store.search_similar(QUERY, top_k=3)

    assert [embedding.product_id for embedding, _ in results] == [
        "tie-second",
        "tie-first",
        "weak",
    ]
    assert results[0][1] == results[1][1]


@pytest.mark.asyncio
async def test_identical_vectors_tie_on_similarity(store):
    await store.upsert(_embedding("twin-a", vector=_unit(0.6)))
    await store.upsert(_embedding("twin-b", vector=_unit(0.6)))

    results = await store.search_similar(QUERY, top_k=2)

    assert {embedding.product_id for embedding, _ in results} == {"twin-a", "twin-b"}
    assert results[0][1] == pytest.approx(results[1][1])
