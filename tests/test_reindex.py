"""Tests for bulk reindexing and embedding statistics."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.models.embedding import PipelineOperation, ProductChangeType, ProductEmbedding
from src.services.pipeline.dispatcher import ChangeDispatcher
from src.services.queue.embedding_queue import EmbeddingQueue
from src.services.reindex import BulkReindexService
from tests.factories import StubEncoder, make_product


@pytest.fixture()
def queue():
    mock_queue = MagicMock(spec=EmbeddingQueue)
    mock_queue.enqueue = AsyncMock(side_effect=lambda jobs: len(jobs))
    return mock_queue


@pytest.fixture()
def service(registry, store, encoder, queue):
    return BulkReindexService(
        products=registry,
        store=store,
        encoder=encoder,
        dispatcher=ChangeDispatcher(queue),
    )


def _queued_jobs(queue):
    return [job for call in queue.enqueue.await_args_list for job in call.args[0]]


def _stored(product_id, version=1, chunk_index=0):
    return ProductEmbedding(
        product_id=product_id,
        tenant_id="tenant-1",
        shop_id="shop-1",
        chunk_index=chunk_index,
        chunk_text=f"{product_id} text",
        vector=[1.0, 0.0, 0.0, 0.0],
        embedding_model="stub-embedding",
        embedding_version=version,
        canonical_document_version=1,
    )


@pytest.mark.asyncio
async def test_bulk_reindex_queues_eligible_products_only(service, registry, queue):
    registry.register(make_product("live"))
    registry.register(make_product("draft", is_published=False))
    registry.register(make_product("archived", is_active=False))

    result = await service.trigger_bulk_reindex()

    assert result.success is True
    assert result.total_products == 1
    assert result.jobs_enqueued == 1
    assert result.completed_at is not None
    (job,) = _queued_jobs(queue)
    assert job.product_id == "live"
    assert job.op is PipelineOperation.GENERATE
    assert job.change_type is ProductChangeType.BULK_REINDEX


@pytest.mark.asyncio
async def test_bulk_reindex_scopes_by_tenant_and_shop(service, registry, queue):
    registry.register(make_product("a"))
    registry.register(make_product("b", shop_id="shop-2"))
    registry.register(make_product("c", tenant_id="tenant-2", shop_id="shop-9"))

    by_shop = await service.trigger_bulk_reindex(shop_id="shop-2")
    by_tenant = await service.trigger_bulk_reindex(tenant_id="tenant-1")

    assert by_shop.total_products == 1
    assert by_tenant.total_products == 2
    assert [job.product_id for job in _queued_jobs(queue)] == ["b", "a", "b"]


@pytest.mark.asyncio
async def test_bulk_reindex_records_enqueue_errors(service, registry, queue):
    registry.register(make_product("a"))
    registry.register(make_product("b"))
    queue.enqueue.side_effect = [ConnectionError("redis down"), 1]

    result = await service.trigger_bulk_reindex()

    assert result.success is False
    assert result.jobs_enqueued == 1
    assert len(result.errors) == 1
    assert "a" in result.errors[0]


@pytest.mark.asyncio
async def test_reindex_outdated_queues_old_versions(registry, store, queue):
    encoder = StubEncoder(model_version=2)
    service = BulkReindexService(
        products=registry,
        store=store,
        encoder=encoder,
        dispatcher=ChangeDispatcher(queue),
    )
    registry.register(make_product("old"))
    registry.register(make_product("fresh"))
    await store.upsert(_stored("old", version=1))
    await store.upsert(_stored("fresh", version=2))

    result = await service.reindex_outdated(batch_size=10)

    assert result.total_products == 1
    assert [job.product_id for job in _queued_jobs(queue)] == ["old"]


@pytest.mark.asyncio
async def test_reindex_outdated_removes_vectors_of_deleted_products(registry, store, queue):
    service = BulkReindexService(
        products=registry,
        store=store,
        encoder=StubEncoder(model_version=2),
        dispatcher=ChangeDispatcher(queue),
    )
    await store.upsert(_stored("gone", version=1))

    result = await service.reindex_outdated()

    assert result.jobs_enqueued == 0
    assert await store.get_by_product("gone") == []
    queue.enqueue.assert_not_awaited()


@pytest.mark.asyncio
async def test_statistics_include_model_and_pending_products(service, registry, store):
    registry.register(make_product("pending"))
    registry.register(make_product("draft", is_published=False))
    await store.upsert(_stored("p1"))
    await store.upsert(_stored("p1", chunk_index=1))
    await store.set_active("p1", False)

    stats = await service.get_statistics()

    assert stats.total_embeddings == 2
    assert stats.inactive_embeddings == 2
    assert stats.current_model_name == "stub-embedding"
    assert stats.current_model_version == 1
    assert stats.products_needing_embedding == 1


@pytest.mark.asyncio
async def test_embedding_counts(service, store):
    await store.upsert(_stored("p1"))
    await store.upsert(_stored("p2"))
    await store.set_active("p2", False)

    assert await service.get_embedding_counts() == (2, 1)


@pytest.mark.asyncio
async def test_connection_delegates_to_encoder(service, encoder):
    assert await service.test_connection() is True

    encoder.connected = False

    assert await service.test_connection() is False
