"""Tests for the content chunker."""

import pytest

from src.services.documents.chunker import ContentChunker


def _long_text() -> str:
    paragraphs = [
        "Product: Alpine Tent\nShop: Peak Outfitters\nCategory: Camping",
        "Description: " + " ".join(f"Sentence number {i} describes the tent." for i in range(12)),
        "Specifications:\n- Weight: 2100\n- Capacity: 3 people\n- Season: 4",
    ]
    return "\n\n".join(paragraphs)


def test_short_text_is_a_single_chunk_without_prefix():
    chunker = ContentChunker(max_chars=100)

    chunks = chunker.chunk("Product: Mug\nPrice: $4.50", title="Mug")

    assert len(chunks) == 1
    assert chunks[0].index == 0
    assert chunks[0].text == "Product: Mug\nPrice: $4.50"


@pytest.mark.parametrize("text", ["", "   \n  "])
def test_blank_text_produces_no_chunks(text):
    assert ContentChunker(max_chars=100).chunk(text, title="Mug") == []


def test_long_text_respects_limit_and_carries_title():
    chunker = ContentChunker(max_chars=160)

    chunks = chunker.chunk(_long_text(), title="Alpine Tent")

    assert len(chunks) > 1
    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    for chunk in chunks:
        assert len(chunk.text) <= 160
        assert chunk.text.startswith("Title: Alpine Tent\n\n")
        assert chunk.text.strip() != "Title: Alpine Tent"
    assert "Product: Alpine Tent" in chunks[0].text


def test_long_text_never_splits_words():
    text = _long_text()
    words = set(text.split())
    chunker = ContentChunker(max_chars=120)

    for chunk in chunker.chunk(text, title="Tent"):
        body = chunk.text.removeprefix("Title: Tent\n\n")
        assert set(body.split()) <= words


def test_chunking_is_deterministic():
    chunker = ContentChunker(max_chars=140)

    first = chunker.chunk(_long_text(), title="Alpine Tent")
    second = chunker.chunk(_long_text(), title="Alpine Tent")

    assert first == second


def test_chunks_cover_all_words_in_order():
    text = _long_text()
    chunker = ContentChunker(max_chars=150)

    bodies = [
        chunk.text.removeprefix("Title: T\n\n") for chunk in chunker.chunk(text, title="T")
    ]

    assert " ".join(bodies).split() == text.split()


def test_word_longer_than_budget_is_the_only_hard_split():
    chunker = ContentChunker(max_chars=40)
    text = "short words " + "x" * 100

    chunks = chunker.chunk(text)

    assert all(len(chunk.text) <= 40 for chunk in chunks)
    assert "".join(chunk.text for chunk in chunks[1:]) == "x" * 100


def test_oversized_title_is_truncated_to_half_the_budget():
    chunker = ContentChunker(max_chars=60)

    chunks = chunker.chunk("word " * 40, title="T" * 200)

    prefix = chunks[0].text.split("\n\n")[0] + "\n\n"
    assert len(prefix) <= 30
    assert all(len(chunk.text) <= 60 for chunk in chunks)


def test_estimate_token_count():
    chunker = ContentChunker(max_chars=100, chars_per_token=4)

    assert chunker.estimate_token_count("") == 0
    assert chunker.estimate_token_count("abcd") == 1
    assert chunker.estimate_token_count("abcde") == 2


def test_rejects_tiny_budget():
    with pytest.raises(ValueError):
        ContentChunker(max_chars=8)
