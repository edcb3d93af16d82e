"""Tests for the embedding operations API."""

import pytest

from src.config import settings
from src.services.clients.encoder_client import get_encoder_client
from tests.factories import make_product


def _event(product_id="prod-1", change_type="created", eligible=True):
    return {
        "change_type": change_type,
        "product_id": product_id,
        "shop_id": "shop-1",
        "tenant_id": "tenant-1",
        "is_eligible_for_embedding": eligible,
        "canonical_document_version": 1,
    }


@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json() == {"message": "Hello World"}


@pytest.mark.asyncio
async def test_health_reports_unreachable_qdrant(client, monkeypatch):
    monkeypatch.setattr(settings, "QDRANT_URL", "http://127.0.0.1:9")

    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["qdrant"] == "disconnected"
    assert data["embedding_backend"] == "connected"


@pytest.mark.asyncio
async def test_events_are_queued(client, redis_client):
    response = await client.post(
        "/v1/embeddings/events",
        json={"items": [_event("a"), _event("b", change_type="deleted")]},
    )

    assert response.status_code == 202
    assert response.json() == {"queued": 2, "enabled": True}
    assert await redis_client.xlen(settings.EMBEDDINGS_STREAM_KEY) == 2

    stream = await client.get("/v1/embeddings/stream")
    assert [entry["payload"]["op"] for entry in stream.json()] == ["generate", "delete"]


@pytest.mark.asyncio
async def test_events_rejects_empty_batch(client):
    response = await client.post("/v1/embeddings/events", json={"items": []})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_events_rejects_oversized_batch(client):
    items = [_event(f"p{i}") for i in range(501)]

    response = await client.post("/v1/embeddings/events", json={"items": items})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_events_when_generation_disabled(client, redis_client, monkeypatch):
    monkeypatch.setattr(settings, "ENABLE_EMBEDDING_GENERATION", False)

    response = await client.post("/v1/embeddings/events", json={"items": [_event()]})

    assert response.status_code == 202
    assert response.json() == {"queued": 0, "enabled": False}
    assert await redis_client.xlen(settings.EMBEDDINGS_STREAM_KEY) == 0


@pytest.mark.asyncio
async def test_dlq_is_empty_by_default(client):
    response = await client.get("/v1/embeddings/dlq")

    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_product_embeddings_and_listing(client, pipeline, registry):
    registry.register(make_product())
    await pipeline.generate_embedding("prod-1")

    by_product = await client.get("/v1/embeddings/products/prod-1")
    listing = await client.get("/v1/embeddings/list", params={"limit": 10})

    assert by_product.status_code == 200
    (chunk,) = by_product.json()
    assert chunk["product_id"] == "prod-1"
    assert "vector" not in chunk
    assert len(chunk["vector_preview"]) == 4
    assert [item["product_id"] for item in listing.json()] == ["prod-1"]


@pytest.mark.asyncio
async def test_reindex_queues_eligible_products(client, registry, redis_client):
    registry.register(make_product("a"))
    registry.register(make_product("b", shop_id="shop-2"))

    response = await client.post("/v1/embeddings/reindex", json={"shop_id": "shop-2"})

    assert response.status_code == 202
    data = response.json()
    assert data["success"] is True
    assert data["total_products"] == 1
    assert data["jobs_enqueued"] == 1
    assert data["duration_ms"] >= 0
    assert await redis_client.xlen(settings.EMBEDDINGS_STREAM_KEY) == 1


@pytest.mark.asyncio
async def test_reindex_without_body_covers_all_products(client, registry):
    registry.register(make_product("a"))
    registry.register(make_product("b"))

    response = await client.post("/v1/embeddings/reindex")

    assert response.status_code == 202
    assert response.json()["jobs_enqueued"] == 2


@pytest.mark.asyncio
async def test_reindex_outdated_with_nothing_stored(client):
    response = await client.post("/v1/embeddings/reindex/outdated", params={"batch_size": 5})

    assert response.status_code == 202
    assert response.json()["total_products"] == 0


@pytest.mark.asyncio
async def test_statistics(client, pipeline, registry):
    registry.register(make_product())
    await pipeline.generate_embedding("prod-1")

    response = await client.get("/v1/embeddings/statistics")

    assert response.status_code == 200
    data = response.json()
    assert data["total_embeddings"] == 1
    assert data["active_embeddings"] == 1
    assert data["unique_products"] == 1
    assert data["products_needing_embedding"] == 0
    assert data["current_model_name"] == "stub-embedding"


@pytest.mark.asyncio
async def test_connection_status(client, encoder):
    connected = await client.get("/v1/embeddings/connection")
    encoder.connected = False
    disconnected = await client.get("/v1/embeddings/connection")

    assert connected.json() == {
        "status": "connected",
        "model": "stub-embedding",
        "model_version": 1,
    }
    assert disconnected.json()["status"] == "disconnected"


@pytest.mark.asyncio
async def test_operations_unavailable_without_encoder(client):
    from src.main import app

    app.dependency_overrides[get_encoder_client] = lambda: None

    statistics = await client.get("/v1/embeddings/statistics")
    reindex = await client.post("/v1/embeddings/reindex")

    assert statistics.status_code == 503
    assert reindex.status_code == 503


@pytest.mark.asyncio
async def test_queue_status_counts_pending_entries(client, redis_client):
    await client.post("/v1/embeddings/events", json={"items": [_event("a"), _event("b")]})
    await redis_client.xgroup_create(
        settings.EMBEDDINGS_STREAM_KEY, settings.EMBEDDINGS_CONSUMER_GROUP, id="0"
    )
    await redis_client.xreadgroup(
        settings.EMBEDDINGS_CONSUMER_GROUP,
        "consumer-1",
        {settings.EMBEDDINGS_STREAM_KEY: ">"},
        count=1,
    )

    response = await client.get("/v1/embeddings/queue")

    assert response.status_code == 200
    assert response.json() == {"stream_length": 2, "pending": 1, "dead_letters": 0}
