"""Text chunking for project retrieval.

Splits document text into character-bounded chunks that overlap at their
boundaries. Chunking is a pure function of the input and config: same input
produces the same chunks, and no input can make it fail.
"""

from dataclasses import dataclass

# Delimiter groups in priority order. Within a group the first pattern found
# (searching backwards) wins.
BREAK_PATTERNS: tuple[tuple[str, ...], ...] = (
    ("\n\n",),
    (". ", "! ", "? ", ".\n", "!\n", "?\n"),
    (" ",),
)


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for text chunking.

    Attributes:
        chunk_size: Target chunk length in characters
        overlap: Characters shared between consecutive chunks
        search_window: How far back from the target end to look for a break point
    """

    chunk_size: int = 4000
    overlap: int = 400
    search_window: int = 200

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.overlap < 0:
            raise ValueError(f"overlap must be non-negative, got {self.overlap}")
        if self.overlap >= self.chunk_size:
            raise ValueError(
                f"overlap ({self.overlap}) must be less than chunk_size ({self.chunk_size})"
            )
        if self.search_window < 0:
            raise ValueError(f"search_window must be non-negative, got {self.search_window}")


def find_break_point(text: str, start: int, target_end: int, search_window: int = 200) -> int:
    """Return the best position at or before target_end to close a chunk.

    Looks at the last `search_window` characters of ``text[start:target_end]``
    for the highest-priority delimiter and returns the offset just past it.
    Falls back to a hard cut at target_end.

    Example:
        >>> find_break_point("one two three", 0, 9, search_window=5)
        8
    """
    window = min(search_window, target_end - start)
    search_start = target_end - window
    region = text[search_start:target_end]

    for patterns in BREAK_PATTERNS:
        for pattern in patterns:
            pos = region.rfind(pattern)
            if pos != -1:
                return search_start + pos + len(pattern)

    return target_end


class TextChunker:
    """Character-window chunker with boundary-aware break points."""

    def __init__(self, config: ChunkingConfig | None = None):
        self.config = config or ChunkingConfig()

    def split(self, text: str) -> list[str]:
        """Split text into overlapping chunks.

        Args:
            text: Input text (any content, including empty)

        Returns:
            Trimmed, non-empty chunk texts in document order
        """
        text = text.strip()
        if not text:
            return []

        size = self.config.chunk_size
        if len(text) <= size:
            return [text]

        chunks: list[str] = []
        start = 0
        length = len(text)

        while start < length:
            end = min(start + size, length)
            if end < length:
                chunk_end = find_break_point(text, start, end, self.config.search_window)
            else:
                chunk_end = end

            chunk = text[start:chunk_end].strip()
            if chunk:
                chunks.append(chunk)

            if chunk_end >= length:
                break

            next_start = chunk_end - self.config.overlap
            # Degenerate break points must still move the window forward
            start = next_start if next_start > start else chunk_end

        return chunks


_default_chunker = TextChunker()


def split_into_chunks(text: str) -> list[str]:
    """Split text with the default 4000/400 configuration.

    Example:
        >>> split_into_chunks("  short note  ")
        ['short note']
        >>> split_into_chunks("   ")
        []
    """
    return _default_chunker.split(text)


split = split_into_chunks
