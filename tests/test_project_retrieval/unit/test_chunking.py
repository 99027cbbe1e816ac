"""Unit tests for text chunking functionality.

Tests cover:
- Short-text identity and empty input
- Break-point priority (paragraph > sentence > word > hard cut)
- Overlap, coverage, and bounded chunk length on long text
- Forward progress on degenerate input
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from project_retrieval.chunking import (
    ChunkingConfig,
    TextChunker,
    find_break_point,
    split,
    split_into_chunks,
)


class TestChunkingConfig:
    """Tests for ChunkingConfig validation."""

    def test_default_config(self) -> None:
        config = ChunkingConfig()
        assert config.chunk_size == 4000
        assert config.overlap == 400
        assert config.search_window == 200

    def test_invalid_chunk_size(self) -> None:
        with pytest.raises(ValueError, match="chunk_size must be positive"):
            ChunkingConfig(chunk_size=0)

    def test_invalid_overlap(self) -> None:
        with pytest.raises(ValueError, match="overlap must be non-negative"):
            ChunkingConfig(overlap=-1)

        with pytest.raises(ValueError, match="overlap .* must be less than chunk_size"):
            ChunkingConfig(chunk_size=100, overlap=100)

    def test_invalid_search_window(self) -> None:
        with pytest.raises(ValueError, match="search_window must be non-negative"):
            ChunkingConfig(search_window=-5)


class TestFindBreakPoint:
    """Tests for break-point priority."""

    def test_paragraph_beats_sentence(self) -> None:
        text = "aaaa\n\nbbbb. cccc"
        # Window covers the whole string; the paragraph break wins even though
        # the sentence end is closer to the target.
        assert find_break_point(text, 0, len(text), search_window=50) == 6

    def test_sentence_beats_word(self) -> None:
        text = "one two. three four"
        assert find_break_point(text, 0, len(text), search_window=50) == 9

    def test_newline_sentence_terminator(self) -> None:
        text = "first line?\nsecond"
        assert find_break_point(text, 0, len(text), search_window=50) == 12

    def test_word_boundary(self) -> None:
        text = "alpha beta gamma"
        assert find_break_point(text, 0, len(text), search_window=50) == 11

    def test_hard_cut(self) -> None:
        text = "x" * 50
        assert find_break_point(text, 0, 30, search_window=10) == 30

    def test_only_searches_window(self) -> None:
        text = "a\n\n" + "b" * 40
        # The paragraph break sits outside the last 10 characters
        assert find_break_point(text, 0, len(text), search_window=10) == len(text)


class TestSplit:
    """Tests for split_into_chunks."""

    def test_split_small_text(self) -> None:
        text = "This is a small text."
        assert split_into_chunks(text) == [text]

    def test_small_text_is_trimmed(self) -> None:
        assert split_into_chunks("\n  hello world \t") == ["hello world"]

    def test_split_empty_text(self) -> None:
        assert split_into_chunks("") == []
        assert split_into_chunks("   \n\t ") == []

    def test_exactly_chunk_size_is_single_chunk(self) -> None:
        text = "a" * 4000
        assert split_into_chunks(text) == [text]

    def test_split_alias(self) -> None:
        assert split is split_into_chunks

    def test_hard_cut_overlap(self) -> None:
        text = "A" * 5000
        chunks = split_into_chunks(text)

        assert len(chunks) == 2
        assert len(chunks[0]) == 4000
        # Second window starts at 4000 - 400
        assert len(chunks[1]) == 1400

    def test_paragraph_document_scenario(self) -> None:
        """9,000 characters with a paragraph break roughly every 500 characters."""
        paragraph = ("Lorem ipsum dolor sit amet. " * 18)[:498]
        text = "\n\n".join(paragraph for _ in range(19))
        assert len(text) > 9000

        chunks = split_into_chunks(text)

        assert len(chunks) >= 3
        assert all(len(c) <= 4100 for c in chunks)
        for previous, current in zip(chunks, chunks[1:], strict=False):
            # Next chunk begins inside the tail of the previous one
            head = current[:50]
            assert head in previous[-450:]

    def test_degenerate_overlap_still_advances(self) -> None:
        config = ChunkingConfig(chunk_size=10, overlap=9, search_window=10)
        chunker = TextChunker(config)
        text = "ab " * 20

        chunks = chunker.split(text)

        assert chunks
        assert chunks[-1].endswith("ab")

    def test_deterministic(self) -> None:
        text = "Sentence one. Sentence two! Sentence three? " * 300
        assert split_into_chunks(text) == split_into_chunks(text)


@settings(max_examples=50, deadline=None)
@given(st.text(max_size=4000))
def test_short_text_property(text: str) -> None:
    """Any text of at most 4000 characters yields [trim(t)] or []."""
    expected = [text.strip()] if text.strip() else []
    assert split_into_chunks(text) == expected


SEPARATORS = [" ", "  ", ". ", "! ", "? ", ".\n", "\n\n"]


@settings(max_examples=30, deadline=None)
@given(st.lists(st.sampled_from(SEPARATORS), min_size=900, max_size=2500))
def test_long_text_coverage_property(separators: list[str]) -> None:
    """Chunks stay bounded and appear in source order without gaps."""
    # Numbered words make every chunk occur exactly once in the source
    text = "".join(f"w{i}{sep}" for i, sep in enumerate(separators))
    source = text.strip()
    chunks = split_into_chunks(text)

    assert len(chunks) >= 2
    assert all(0 < len(c) <= 4000 for c in chunks)

    position = 0
    previous_start = -1
    for chunk in chunks:
        found = source.find(chunk)
        assert found != -1
        assert found > previous_start
        # No gap: each chunk starts at or before the end of the previous one
        assert found <= position
        previous_start = found
        position = max(position, found + len(chunk))

    assert source[position:].strip() == ""
