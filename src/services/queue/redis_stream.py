"""Consumer-group access to the embedding job stream.

Entries stay in the group's pending list until acknowledged. A worker that
dies mid-batch leaves its entries pending; ``claim_stale`` hands them to a
live consumer once they have been idle long enough.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import redis.asyncio as redis
from redis.exceptions import ResponseError

from src.config import settings

logger = logging.getLogger(__name__)

StreamMessages = Sequence[tuple[str, dict[str, str]]]
StreamBatch = list[tuple[str, StreamMessages]]


class RedisStreamService:
    """Reads, acknowledges and appends job entries for one consumer group."""

    def __init__(self, client: redis.Redis, stream_key: str, group_name: str):
        self.client = client
        self.stream_key = stream_key
        self.group_name = group_name

    async def ensure_consumer_group(self) -> None:
        try:
            await self.client.xgroup_create(
                name=self.stream_key,
                groupname=self.group_name,
                id="0",
                mkstream=True,
            )
            logger.info("Created consumer group %s on %s", self.group_name, self.stream_key)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise
            logger.debug("Consumer group %s already exists", self.group_name)

    async def read_batch(
        self,
        consumer_name: str,
        count: int = 10,
        block_ms: int = 5000,
    ) -> StreamBatch:
        """Read new entries, recreating the group if the stream was dropped."""
        try:
            return await self._read_new(consumer_name, count, block_ms)
        except ResponseError as exc:
            if "NOGROUP" not in str(exc):
                raise
            logger.warning("Consumer group %s missing, recreating", self.group_name)
            await self.ensure_consumer_group()
            return await self._read_new(consumer_name, count, block_ms)

    async def _read_new(self, consumer_name: str, count: int, block_ms: int) -> StreamBatch:
        return await self.client.xreadgroup(
            groupname=self.group_name,
            consumername=consumer_name,
            streams={self.stream_key: ">"},
            count=count,
            block=block_ms,
        )

    async def claim_stale(
        self, consumer_name: str, min_idle_ms: int, count: int = 10
    ) -> StreamBatch:
        """Take over entries another consumer left unacknowledged."""
        result = await self.client.xautoclaim(
            self.stream_key,
            self.group_name,
            consumer_name,
            min_idle_time=min_idle_ms,
            start_id="0-0",
            count=count,
        )
        # reply is [next_cursor, messages, (deleted ids on Redis 7+)]
        messages = [message for message in result[1] if message and message[1]]
        if not messages:
            return []

        logger.info(
            "Reclaimed %d stale entries for %s", len(messages), consumer_name
        )
        return [(self.stream_key, messages)]

    async def pending_count(self) -> int:
        """Number of delivered but unacknowledged entries in the group."""
        try:
            summary = await self.client.xpending(self.stream_key, self.group_name)
        except ResponseError as exc:
            if "NOGROUP" in str(exc):
                return 0
            raise
        return int(summary.get("pending", 0)) if summary else 0

    async def acknowledge_messages(self, message_ids: list[str]) -> None:
        if message_ids:
            await self.client.xack(self.stream_key, self.group_name, *message_ids)

    async def delete_messages(self, message_ids: list[str]) -> None:
        if message_ids:
            await self.client.xdel(self.stream_key, *message_ids)

    async def add_to_stream(
        self, fields: dict[str, str], stream_key: str | None = None
    ) -> str:
        return await self.client.xadd(stream_key or self.stream_key, fields)

    async def requeue(self, payload: str) -> str:
        """Append a job payload to the tail of the work stream for another attempt."""
        return await self.add_to_stream({"payload": payload})


def create_redis_stream_service(
    stream_key: str | None = None,
    group_name: str | None = None,
    client: redis.Redis | None = None,
) -> RedisStreamService:
    client = client or redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        health_check_interval=30,
    )
    return RedisStreamService(
        client,
        stream_key or settings.EMBEDDINGS_STREAM_KEY,
        group_name or settings.EMBEDDINGS_CONSUMER_GROUP,
    )
