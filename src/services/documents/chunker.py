"""Splits embedding text into chunks that respect the model's input budget."""

from __future__ import annotations

import math

from langchain_text_splitters import RecursiveCharacterTextSplitter

from src.config import settings
from src.models.document import ContentChunk

# paragraph, line, sentence, word, then a hard cut inside an overlong word
_SEPARATORS = [r"\n\s*\n", r"\n", r"(?<=[.!?])\s+", r"\s+", ""]
_TITLE_TEMPLATE = "Title: {}\n\n"


class ContentChunker:
    """Deterministic chunker working on natural text boundaries.

    Text that fits in one chunk is returned untouched as chunk 0. Longer text
    is split recursively without overlap, and every chunk repeats the title
    so it can be embedded on its own.
    """

    def __init__(self, max_chars: int, chars_per_token: float = 4.0) -> None:
        if max_chars < 16:
            raise ValueError("max_chars must be at least 16")
        self.max_chars = max_chars
        self.chars_per_token = chars_per_token

    def chunk(self, text: str, title: str | None = None) -> list[ContentChunk]:
        if not text or not text.strip():
            return []

        text = text.strip()
        if len(text) <= self.max_chars:
            return [ContentChunk(index=0, text=text)]

        prefix = self._prefix(title)
        splitter = self._splitter(self.max_chars - len(prefix))
        return [
            ContentChunk(index=index, text=f"{prefix}{body}")
            for index, body in enumerate(splitter.split_text(text))
        ]

    def estimate_token_count(self, text: str) -> int:
        if not text or not text.strip():
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def _prefix(self, title: str | None) -> str:
        if not title or not title.strip():
            return ""
        # the title may take at most half of each chunk
        limit = self.max_chars // 2 - len(_TITLE_TEMPLATE.format(""))
        return _TITLE_TEMPLATE.format(title.strip()[:limit].rstrip())

    @staticmethod
    def _splitter(budget: int) -> RecursiveCharacterTextSplitter:
        return RecursiveCharacterTextSplitter(
            separators=_SEPARATORS,
            is_separator_regex=True,
            keep_separator="end",
            chunk_size=budget,
            chunk_overlap=0,
            length_function=len,
            strip_whitespace=True,
        )


def create_content_chunker() -> ContentChunker:
    """Factory function to create a chunker from settings."""
    return ContentChunker(settings.max_chunk_chars, settings.CHARS_PER_TOKEN)
