"""Base worker functionality for async job processing."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    """Abstract base class for async workers."""

    def __init__(self, consumer_name: str | None = None):
        self.consumer_name = consumer_name or self._build_consumer_name()
        self._shutdown_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @abstractmethod
    async def run_forever(self) -> None:
        """Main worker loop. Should be implemented by subclasses."""
        pass

    @abstractmethod
    def _build_consumer_name(self) -> str:
        """Build a unique consumer name for this worker instance."""
        pass

    def start(self) -> asyncio.Task[None]:
        """Run the worker loop as a task on the current event loop."""
        if self._task is None or self._task.done():
            self._shutdown_event.clear()
            self._task = asyncio.create_task(
                self.run_forever(), name=f"worker:{self.consumer_name}"
            )
        return self._task

    async def stop(self, timeout: float = 5.0) -> None:
        """Request shutdown and wait for the loop, cancelling it after ``timeout``."""
        self.shutdown()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout)
        except (TimeoutError, asyncio.CancelledError):
            logger.info("Worker %s stopped", self.consumer_name)
        except Exception:
            logger.exception("Worker %s exited with an error", self.consumer_name)
        finally:
            self._task = None

    def shutdown(self) -> None:
        """Signal the worker to shut down gracefully."""
        self._shutdown_event.set()

    def is_shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._shutdown_event.is_set()
