"""Background worker that runs pipeline jobs from the Redis stream."""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import uuid

from pydantic import ValidationError

from src.config import settings
from src.models.embedding import EmbeddingJob
from src.services.clients.encoder_client import get_encoder_client
from src.services.pipeline.embedding_pipeline import (
    EmbeddingPipeline,
    create_embedding_pipeline,
)
from src.services.queue.dlq_manager import DLQManager, create_dlq_manager
from src.services.queue.redis_stream import (
    RedisStreamService,
    StreamBatch,
    create_redis_stream_service,
)
from src.services.workers.base import BaseWorker

logger = logging.getLogger(__name__)


class EmbeddingWorker(BaseWorker):
    """Consumes embedding jobs from a consumer group and runs the pipeline.

    A failed job is appended again with its attempt counter increased until
    ``max_attempts`` executions have failed; after that it goes to the DLQ.
    The original entry is acknowledged once the job completed or was handed
    off to the stream or the DLQ. When neither write succeeds it stays
    pending, and entries left pending are reclaimed before new ones are read.
    """

    def __init__(
        self,
        *,
        redis_service: RedisStreamService,
        pipeline: EmbeddingPipeline,
        dlq_manager: DLQManager,
        consumer_name: str | None = None,
        max_attempts: int | None = None,
    ) -> None:
        super().__init__(consumer_name)
        self.redis_service = redis_service
        self.pipeline = pipeline
        self.dlq_manager = dlq_manager
        self.batch_size = settings.BATCH_MAX_MESSAGES
        self.block_ms = settings.BATCH_MAX_WAIT_MS
        self.max_attempts = max(1, max_attempts or settings.JOB_MAX_ATTEMPTS)
        self.stale_idle_ms = settings.STALE_JOB_IDLE_MS

    async def run_forever(self) -> None:
        """Main worker loop."""
        await self.redis_service.ensure_consumer_group()
        await self.pipeline.store.ensure_collection()

        logger.info(
            "Embedding worker started",
            extra={
                "stream": self.redis_service.stream_key,
                "group": self.redis_service.group_name,
                "consumer": self.consumer_name,
            },
        )

        try:
            while not self.is_shutdown_requested():
                try:
                    entries = await self.redis_service.claim_stale(
                        self.consumer_name,
                        min_idle_ms=self.stale_idle_ms,
                        count=self.batch_size,
                    )
                    if not entries:
                        entries = await self.redis_service.read_batch(
                            consumer_name=self.consumer_name,
                            count=self.batch_size,
                            block_ms=self.block_ms,
                        )
                except Exception as exc:
                    logger.error(
                        "Failed to read from Redis stream: %s", exc, exc_info=True
                    )
                    await asyncio.sleep(1)
                    continue

                if not entries:
                    continue

                await self.process_entries(entries)
        except asyncio.CancelledError:
            logger.info("Embedding worker %s cancelled", self.consumer_name)
            raise

    async def process_entries(self, entries: StreamBatch) -> None:
        """Process a batch of stream entries."""
        ack_ids: list[str] = []

        for _stream, messages in entries:
            for message_id, data in messages:
                if await self._process_message(message_id, data):
                    ack_ids.append(message_id)
                else:
                    logger.warning(
                        "Leaving entry %s pending for a later reclaim", message_id
                    )

        if not ack_ids:
            return

        try:
            await self.redis_service.acknowledge_messages(ack_ids)
            await self.redis_service.delete_messages(ack_ids)
        except Exception as ack_exc:
            logger.error("Failed to ack/delete messages %s: %s", ack_ids, ack_exc)

    async def _process_message(self, message_id: str, data: dict[str, str]) -> bool:
        """Run one entry; returns False when it must not be acknowledged."""
        payload = data.get("payload")
        if payload is None:
            logger.warning("Missing payload for entry %s", message_id)
            return True

        try:
            job = EmbeddingJob.model_validate_json(payload)
        except ValidationError as exc:
            logger.error("Discarding malformed job %s: %s", message_id, exc)
            letter = await self.dlq_manager.send_to_dlq(message_id, payload, exc)
            return letter is not None

        try:
            await self.pipeline.run(job)
        except Exception as exc:
            return await self._handle_failure(message_id, job, exc)

        logger.info(
            "Embedding job completed",
            extra={
                "entry_id": message_id,
                "product_id": job.product_id,
                "op": job.op.value,
                "trace_id": job.trace_id,
            },
        )
        return True

    async def _handle_failure(
        self, message_id: str, job: EmbeddingJob, exc: Exception
    ) -> bool:
        attempts = job.attempt + 1
        logger.exception(
            "Embedding job %s failed (attempt %d/%d)",
            message_id,
            attempts,
            self.max_attempts,
            extra={"product_id": job.product_id, "op": job.op.value},
        )

        if attempts < self.max_attempts:
            retry = job.model_copy(update={"attempt": attempts})
            try:
                await self.redis_service.requeue(retry.model_dump_json())
                return True
            except Exception as requeue_exc:
                logger.error(
                    "Failed to requeue job %s: %s", message_id, requeue_exc
                )

        letter = await self.dlq_manager.send_to_dlq(
            message_id,
            job.model_dump_json(),
            exc,
            attempts=attempts,
        )
        return letter is not None

    @staticmethod
    def _build_consumer_name() -> str:
        """Build a unique consumer name."""
        hostname = socket.gethostname()
        pid = os.getpid()
        suffix = uuid.uuid4().hex[:6]
        return f"{hostname}:{pid}:{suffix}"


def create_embedding_worker(pipeline: EmbeddingPipeline | None = None) -> EmbeddingWorker:
    """Factory function to create an embedding worker with all dependencies."""
    redis_service = create_redis_stream_service()
    dlq_manager = create_dlq_manager(redis_service)

    if pipeline is None:
        encoder = get_encoder_client()
        if encoder is None:
            raise RuntimeError(
                "Encoder client is not configured. Set EMBEDDING_BASE_URL and "
                "EMBEDDING_MODEL.",
            )
        pipeline = create_embedding_pipeline(encoder)

    return EmbeddingWorker(
        redis_service=redis_service,
        pipeline=pipeline,
        dlq_manager=dlq_manager,
    )


async def run_worker(concurrency: int | None = None) -> None:
    """Run one or more embedding workers."""
    worker_count = concurrency or max(1, settings.WORKER_CONCURRENCY)
    workers = [create_embedding_worker() for _ in range(worker_count)]

    tasks = [asyncio.create_task(worker.run_forever()) for worker in workers]
    await asyncio.gather(*tasks, return_exceptions=True)


def main() -> None:
    """CLI entry point."""
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Embedding worker interrupted, shutting down")


if __name__ == "__main__":
    main()
