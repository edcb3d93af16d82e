"""FastAPI application factory and bootstrap helpers."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import include_api_routes
from src.config import settings
from src.services.clients.encoder_client import get_encoder_client
from src.services.pipeline.embedding_pipeline import create_embedding_pipeline
from src.services.storage.embedding_store import get_embedding_store
from src.services.workers.embedding_worker import EmbeddingWorker, create_embedding_worker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events."""
    store = get_embedding_store()
    try:
        await store.ensure_collection()
    except Exception:
        logger.exception("Qdrant unavailable on startup, collection check deferred")

    workers = _start_embedded_workers()
    try:
        yield
    finally:
        for worker in workers:
            await worker.stop()


def _start_embedded_workers() -> list[EmbeddingWorker]:
    """Run pipeline workers inside the API process when configured."""
    encoder = get_encoder_client()
    if not settings.EMBEDDED_WORKER or encoder is None:
        logger.info("Embedded embedding workers disabled")
        return []

    pipeline = create_embedding_pipeline(encoder, store=get_embedding_store())
    workers = [
        create_embedding_worker(pipeline)
        for _ in range(max(1, settings.WORKER_CONCURRENCY))
    ]
    for worker in workers:
        worker.start()
    logger.info("Started %d embedded embedding workers", len(workers))
    return workers


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Product Semantic Search",
        description="Product embedding pipeline and semantic search service",
        version="1.0.0",
        lifespan=lifespan,
    )

    _configure_cors(app)
    include_api_routes(app)

    return app


def _configure_cors(app: FastAPI) -> None:
    """Allow broad access in non-production environments."""

    if settings.is_production:
        return

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
