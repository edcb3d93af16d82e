"""Encoder client abstractions and implementations."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Annotated, Any

from fastapi import Depends
from openai import AsyncOpenAI, OpenAIError

from src.config import settings
from src.services.exceptions import InvalidInputError, UpstreamError

logger = logging.getLogger(__name__)


class EncoderClient(ABC):
    """Abstract encoder interface responsible for producing embeddings."""

    @property
    @abstractmethod
    def model_name(self) -> str: ...

    @property
    @abstractmethod
    def model_version(self) -> int: ...

    @property
    @abstractmethod
    def dimensions(self) -> int: ...

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for the provided text."""

    @abstractmethod
    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""

    @abstractmethod
    async def test_connection(self) -> bool:
        """Return True when the backend is reachable and serves the model."""


class OpenAIEncoderClient(EncoderClient):
    """Encoder backed by an OpenAI-compatible embeddings endpoint.

    Ollama exposes this API under ``/v1``, so the same client serves local
    models and hosted ones.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        model_version: int = 1,
        dimensions: int = 768,
        timeout: float = 60.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        if not model:
            raise ValueError("Embedding model must be provided")
        if dimensions <= 0:
            raise ValueError("Embedding dimensions must be positive")

        self._client = client or AsyncOpenAI(
            base_url=base_url,
            api_key=api_key or "unused",
            timeout=timeout,
        )
        self._model = model
        self._model_version = model_version
        self._dimensions = dimensions

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def model_version(self) -> int:
        return self._model_version

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise InvalidInputError("Text cannot be empty")

        vectors = await self._request([text])
        return vectors[0]

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        if any(not text or not text.strip() for text in texts):
            raise InvalidInputError("Texts cannot contain empty entries")

        return await self._request(list(texts))

    async def test_connection(self) -> bool:
        try:
            response = await self._client.models.list()
            available = [model.id for model in response.data]
        except Exception as exc:  # noqa: BLE001
            logger.warning("Embedding backend connection test failed: %s", exc)
            return False

        wanted = self._model.lower()
        found = any(model_id.lower().startswith(wanted) for model_id in available)
        if not found:
            logger.warning(
                "Embedding model %s not served by backend",
                self._model,
                extra={"available_models": available},
            )
        return found

    async def _request(self, inputs: list[str]) -> list[list[float]]:
        try:
            response = await self._client.embeddings.create(
                model=self._model,
                input=inputs,
            )
        except OpenAIError as exc:
            raise UpstreamError(f"Embedding request failed: {exc}") from exc

        data: list[Any] = list(response.data or [])
        if not data:
            raise UpstreamError("Embedding response did not include vector data")
        if len(data) != len(inputs):
            raise UpstreamError(
                f"Embedding response returned {len(data)} vectors for {len(inputs)} inputs"
            )

        data.sort(key=lambda item: item.index)
        vectors: list[list[float]] = []
        for item in data:
            vector = list(item.embedding or [])
            if not vector:
                raise UpstreamError("Embedding response contained an empty vector")
            if len(vector) != self._dimensions:
                logger.warning(
                    "Embedding dimension mismatch: expected %s, got %s",
                    self._dimensions,
                    len(vector),
                    extra={"model": self._model},
                )
            vectors.append(vector)
        return vectors


_encoder_client: EncoderClient | None = None


def _initialize_encoder() -> EncoderClient | None:
    if not settings.encoder_enabled:
        return None

    return OpenAIEncoderClient(
        base_url=settings.EMBEDDING_BASE_URL,
        api_key=settings.EMBEDDING_API_KEY,
        model=settings.EMBEDDING_MODEL,
        model_version=settings.EMBEDDING_MODEL_VERSION,
        dimensions=settings.EMBEDDING_DIMENSIONS,
        timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
    )


_encoder_client = _initialize_encoder()


def get_encoder_client() -> EncoderClient | None:
    """FastAPI dependency returning the configured encoder client if any."""

    return _encoder_client


EncoderDependency = Annotated[EncoderClient | None, Depends(get_encoder_client)]
