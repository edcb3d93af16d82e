"""Dead letter stream for embedding jobs that cannot be completed."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from src.config import settings
from src.services.queue.redis_stream import RedisStreamService

logger = logging.getLogger(__name__)


class DeadLetter(BaseModel):
    """A parked job with enough context to diagnose or replay it."""

    entry_id: str
    payload: str
    error: str
    attempts: int = 1
    original_stream: str
    failed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_failure(
        cls,
        entry_id: str,
        payload: str,
        error: BaseException,
        *,
        attempts: int,
        original_stream: str,
    ) -> DeadLetter:
        return cls(
            entry_id=entry_id,
            payload=payload,
            error=f"{type(error).__name__}: {error}",
            attempts=attempts,
            original_stream=original_stream,
        )

    def to_fields(self) -> dict[str, str]:
        """Flat string mapping as stored in the stream entry."""
        return {
            "payload": self.payload,
            "error": self.error,
            "entry_id": self.entry_id,
            "attempts": str(self.attempts),
            "failed_at": self.failed_at.isoformat(),
            "original_stream": self.original_stream,
        }


class DLQManager:
    """Parks failed jobs on the dead letter stream."""

    def __init__(self, redis_service: RedisStreamService, dlq_stream: str | None = None):
        self.redis_service = redis_service
        self.dlq_stream = dlq_stream or settings.DLQ_STREAM_KEY

    async def send_to_dlq(
        self,
        entry_id: str,
        payload: str,
        error: BaseException,
        *,
        attempts: int = 1,
        original_stream: str | None = None,
    ) -> DeadLetter | None:
        """Park a failed job; returns None when the DLQ write itself fails."""
        letter = DeadLetter.from_failure(
            entry_id,
            payload,
            error,
            attempts=attempts,
            original_stream=original_stream or self.redis_service.stream_key,
        )
        try:
            await self.redis_service.add_to_stream(
                letter.to_fields(), stream_key=self.dlq_stream
            )
        except Exception as dlq_error:
            # the job is lost at this point, keep enough in the log to replay it
            logger.error(
                "Failed to send entry %s to DLQ: %s",
                entry_id,
                dlq_error,
                extra={"payload": payload, "original_error": letter.error},
                exc_info=True,
            )
            return None

        logger.warning(
            "Job %s dead-lettered after %d attempts: %s",
            entry_id,
            attempts,
            letter.error,
            extra={"dlq_stream": self.dlq_stream},
        )
        return letter


def create_dlq_manager(redis_service: RedisStreamService) -> DLQManager:
    return DLQManager(redis_service)
