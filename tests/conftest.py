"""Pytest configuration and fixtures for the semantic search service."""

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis
from httpx import ASGITransport, AsyncClient
from qdrant_client import QdrantClient

from src.config import settings
from src.models.product import Category, ProductAttributeDefinition, Shop
from src.services.clients.encoder_client import get_encoder_client
from src.services.documents.canonical_builder import CanonicalDocumentBuilder
from src.services.documents.chunker import ContentChunker
from src.services.pipeline.embedding_pipeline import EmbeddingPipeline
from src.services.product_registry import ProductRegistry, get_registry
from src.services.queue.embedding_queue import EmbeddingQueue, get_embedding_queue
from src.services.storage.embedding_store import EmbeddingStore, get_embedding_store
from tests.factories import TEST_DIMENSIONS, StubEncoder


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "asyncio: marks tests as async tests")


@pytest.fixture()
def encoder():
    return StubEncoder()


@pytest.fixture()
def registry():
    """Fresh catalog with one shop and one category."""
    catalog = ProductRegistry()
    catalog.register_shop(Shop(id="shop-1", tenant_id="tenant-1", name="Peak Outfitters"))
    catalog.register_category(Category(id="cat-1", tenant_id="tenant-1", name="Footwear"))
    catalog.register_attribute(
        ProductAttributeDefinition(
            id="attr-color",
            shop_id="shop-1",
            tenant_id="tenant-1",
            name="color",
            display_name="Color",
            embedding_priority=5,
        )
    )
    return catalog


@pytest.fixture()
def store():
    """Embedding store over an in-memory Qdrant instance."""
    client = QdrantClient(":memory:")
    yield EmbeddingStore(client, "test_product_embeddings", TEST_DIMENSIONS)
    client.close()


@pytest.fixture()
def pipeline(registry, store, encoder):
    return EmbeddingPipeline(
        products=registry,
        store=store,
        encoder=encoder,
        chunker=ContentChunker(settings.max_chunk_chars),
        builder=CanonicalDocumentBuilder(registry),
    )


@pytest_asyncio.fixture()
async def redis_client():
    """Provide a fake Redis client for each test."""
    client = FakeAsyncRedis(decode_responses=True)
    try:
        yield client
    finally:
        await client.flushdb()
        await client.aclose()


@pytest_asyncio.fixture()
async def client(redis_client, registry, store, encoder):
    """Return an HTTPX async client pointing at the FastAPI app."""
    from src.main import app

    app.dependency_overrides[get_encoder_client] = lambda: encoder
    app.dependency_overrides[get_embedding_store] = lambda: store
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_embedding_queue] = lambda: EmbeddingQueue(
        redis_client, settings.EMBEDDINGS_STREAM_KEY
    )
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://testserver",
        ) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
