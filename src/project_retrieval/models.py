"""Pydantic models for retrieval data structures.

Rows read from the chunk store and results handed to callers are validated
against these schemas so bad data fails at the boundary rather than deep in
prompt assembly.
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class Chunk(BaseModel):
    """A stored chunk of document text.

    Attributes:
        id: Row id assigned on insert
        document_id: Owning document
        project_id: Project whose index the chunk belongs to
        chunk_index: Zero-based position within the document
        text: Chunk text (trimmed, non-empty)
        vectorized: Whether the chunk is present in the project index
    """

    id: int
    document_id: int
    project_id: int
    chunk_index: int = Field(ge=0)
    text: str = Field(min_length=1)
    vectorized: bool = False


class ChunkSource(BaseModel):
    """Citation record for displaying where a retrieved chunk came from.

    Attributes:
        chunk_id: Chunk row id
        document_id: Originating document
        document_name: Human-readable document name
        chunk_index: Position of the chunk within the document
        chunk_preview: Leading excerpt of the chunk text followed by "..."
    """

    chunk_id: int
    document_id: int
    document_name: str
    chunk_index: int
    chunk_preview: str


class SearchHit(BaseModel):
    """A single nearest-neighbour match.

    Attributes:
        chunk_id: Id of the matched chunk
        distance: Vector distance to the query (lower is closer)
    """

    chunk_id: int
    distance: float = Field(ge=0.0)

    @field_validator("distance", mode="before")
    @classmethod
    def clamp_distance(cls, v: float) -> float:
        """Clamp tiny negative distances produced by float rounding."""
        return max(0.0, float(v))


class SearchRequest(BaseModel):
    """A top-k query against a single project index."""

    project_id: int
    query: str
    k: int = Field(default=5, ge=1, le=100)


class RetrievalContext(BaseModel):
    """Ordered context assembled for a chat prompt.

    Attributes:
        project_id: Project that was searched
        hits: Raw index matches, ascending distance
        chunks: Resolved chunks ordered by (document_id, chunk_index)
        sources: Citation records for the resolved chunks
    """

    project_id: int
    hits: list[SearchHit] = Field(default_factory=list)
    chunks: list[Chunk] = Field(default_factory=list)
    sources: list[ChunkSource] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.chunks

    def prompt_context(self) -> str:
        """Render the chunks as a block of text for a system prompt."""
        parts = [
            f"Chunk {index} (from document {chunk.document_id}):\n{chunk.text}\n\n"
            for index, chunk in enumerate(self.chunks, start=1)
        ]
        return "".join(parts)


class VectorizeReport(BaseModel):
    """Outcome of a vectorization batch.

    Attributes:
        document_id: Document that was processed (None for project sweeps)
        project_id: Project index the chunks were added to
        vectorized_ids: Chunks added and marked vectorized
        failed: Chunk id -> error message for chunks left pending
        skipped_reason: Set when the batch did not run at all
    """

    document_id: int | None = None
    project_id: int | None = None
    vectorized_ids: list[int] = Field(default_factory=list)
    failed: dict[int, str] = Field(default_factory=dict)
    skipped_reason: str | None = None

    @property
    def vectorized_count(self) -> int:
        return len(self.vectorized_ids)


class IndexManifest(BaseModel):
    """Sidecar record written next to a project's index file on every sync.

    Attributes:
        project_id: Project the index belongs to
        embedding_model: Model used to produce the stored vectors
        dimensions: Vector dimensionality
        vector_count: Number of vectors at last sync
        synced_at: Timestamp of the last successful sync
    """

    project_id: int
    embedding_model: str
    dimensions: int = Field(ge=1)
    vector_count: int = Field(default=0, ge=0)
    synced_at: datetime


class IndexStats(BaseModel):
    """Statistics about an open project index."""

    project_id: int
    total_vectors: int = Field(ge=0)
    dimensions: int
    embedding_model: str
    last_synced: datetime | None = None
    dirty: bool = False
