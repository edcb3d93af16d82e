"""
Configuration settings for the application.
"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    """Application settings loaded from environment variables."""

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Redis / queue settings
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    EMBEDDINGS_STREAM_KEY: str = os.getenv("EMBEDDINGS_STREAM_KEY", "embeddings:jobs")
    EMBEDDINGS_CONSUMER_GROUP: str = os.getenv(
        "EMBEDDINGS_CONSUMER_GROUP",
        "embeddings-workers",
    )
    DLQ_STREAM_KEY: str = os.getenv("DLQ_STREAM_KEY", "embeddings:dlq")
    BATCH_MAX_MESSAGES: int = int(os.getenv("BATCH_MAX_MESSAGES", "32"))
    BATCH_MAX_WAIT_MS: int = int(os.getenv("BATCH_MAX_WAIT_MS", "200"))
    WORKER_CONCURRENCY: int = int(os.getenv("WORKER_CONCURRENCY", "4"))
    JOB_MAX_ATTEMPTS: int = int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
    # Pending entries idle this long are reclaimed from a dead consumer
    STALE_JOB_IDLE_MS: int = int(os.getenv("STALE_JOB_IDLE_MS", "60000"))
    # Run workers inside the API process so they share its product registry
    EMBEDDED_WORKER: bool = _env_bool("EMBEDDED_WORKER", "true")

    # Qdrant settings
    QDRANT_URL: str = os.getenv("QDRANT_URL", "http://localhost:6333")
    QDRANT_COLLECTION: str = os.getenv(
        "QDRANT_COLLECTION",
        "product_embeddings",
    )

    # Embedding backend (any OpenAI-compatible endpoint, Ollama by default)
    ENABLE_EMBEDDING_GENERATION: bool = _env_bool("ENABLE_EMBEDDING_GENERATION", "true")
    EMBEDDING_BASE_URL: str = os.getenv("EMBEDDING_BASE_URL", "http://localhost:11434/v1")
    EMBEDDING_API_KEY: str = os.getenv("EMBEDDING_API_KEY", "ollama")
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "embeddinggemma")
    EMBEDDING_MODEL_VERSION: int = int(os.getenv("EMBEDDING_MODEL_VERSION", "1"))
    EMBEDDING_DIMENSIONS: int = int(os.getenv("EMBEDDING_DIMENSIONS", "768"))
    EMBEDDING_TIMEOUT_SECONDS: float = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "60"))

    # Chunking
    MAX_TOKENS_PER_CHUNK: int = int(os.getenv("MAX_TOKENS_PER_CHUNK", "512"))
    CHARS_PER_TOKEN: float = float(os.getenv("CHARS_PER_TOKEN", "4"))

    # Search
    SEARCH_DEFAULT_TOP_K: int = int(os.getenv("SEARCH_DEFAULT_TOP_K", "10"))
    SEARCH_MAX_TOP_K: int = int(os.getenv("SEARCH_MAX_TOP_K", "50"))
    SIMILAR_DEFAULT_TOP_K: int = int(os.getenv("SIMILAR_DEFAULT_TOP_K", "5"))
    SEARCH_CANDIDATE_MULTIPLIER: int = int(os.getenv("SEARCH_CANDIDATE_MULTIPLIER", "2"))
    SEARCH_CANDIDATE_EXPANSION_ROUNDS: int = int(
        os.getenv("SEARCH_CANDIDATE_EXPANSION_ROUNDS", "2")
    )

    # Re-indexing
    REINDEX_BATCH_SIZE: int = int(os.getenv("REINDEX_BATCH_SIZE", "100"))

    @property
    def is_production(self) -> bool:
        """
        Check if running in production environment.
        """
        return self.ENVIRONMENT.lower() == "production"

    @property
    def encoder_enabled(self) -> bool:
        """Return True when an encoder client can be initialized."""
        return bool(self.EMBEDDING_BASE_URL and self.EMBEDDING_MODEL)

    @property
    def max_chunk_chars(self) -> int:
        """Character budget of a single chunk."""
        return int(self.MAX_TOKENS_PER_CHUNK * self.CHARS_PER_TOKEN)

    def __init__(self):
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        logging.basicConfig(level=self.log_level)
        self.logger = logging.getLogger(__name__)

        self.logger.debug(
            f"Config initialized with environment={self.ENVIRONMENT}, "
            f"log_level={self.log_level}"
        )


# Create a global settings instance for import
settings = Settings()
