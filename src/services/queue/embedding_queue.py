"""Redis-backed queue utilities for embedding jobs."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Annotated, Any

import redis.asyncio as redis
from fastapi import Depends

from src.config import settings
from src.models.embedding import EmbeddingJob

logger = logging.getLogger(__name__)

_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """Return a singleton Redis client for the current process."""

    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


class EmbeddingQueue:
    """Durable work queue for pipeline jobs, one stream entry per job."""

    def __init__(self, client: redis.Redis, stream_key: str) -> None:
        self._client = client
        self._stream_key = stream_key

    @property
    def client(self) -> redis.Redis:
        return self._client

    @property
    def stream_key(self) -> str:
        return self._stream_key

    async def enqueue(self, jobs: Sequence[EmbeddingJob]) -> int:
        """Push the provided jobs onto the Redis stream."""

        if not jobs:
            return 0

        for job in jobs:
            await self._client.xadd(
                name=self._stream_key,
                fields={"payload": job.model_dump_json()},
                id="*",
            )

        logger.info("Queued %s embedding jobs", len(jobs))
        return len(jobs)

    async def length(self, stream_key: str | None = None) -> int:
        return await self._client.xlen(stream_key or self._stream_key)

    async def read_entries(
        self, count: int = 100, stream_key: str | None = None
    ) -> list[dict[str, Any]]:
        """Return the oldest entries of a stream with their payload decoded."""
        entries = await self._client.xrange(
            stream_key or self._stream_key, min="-", max="+", count=count
        )

        results: list[dict[str, Any]] = []
        for entry_id, fields in entries:
            payload = fields.get("payload")
            parsed: Any = None
            if payload:
                try:
                    parsed = json.loads(payload)
                except json.JSONDecodeError:
                    parsed = payload
            results.append({"id": entry_id, "payload": parsed, "fields": fields})
        return results


def get_embedding_queue() -> EmbeddingQueue:
    client = get_redis_client()
    return EmbeddingQueue(client, settings.EMBEDDINGS_STREAM_KEY)


QueueDependency = Annotated[EmbeddingQueue, Depends(get_embedding_queue)]
