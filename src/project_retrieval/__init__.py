"""Project-scoped semantic retrieval backend.

Splits edited documents into overlapping chunks, keeps one vector index per
project, and answers top-k similarity queries that chat callers use to build
retrieval-augmented prompts.

Architecture:
    - chunking: Character-window splitting with boundary-aware break points
    - chunk_store: SQLite persistence of chunks and their vectorized flag
    - embedding: Embedding provider client (OpenAI)
    - index: Per-project faiss index with disk sync
    - cache: Single-opener registry of open project indices
    - coordinator: Vectorization and search orchestration
    - models: Pydantic schemas for chunks, hits, citations, reports

Usage:
    >>> from project_retrieval import RetrievalCoordinator, load_config
    >>> coordinator = RetrievalCoordinator.from_config(load_config("default"))
    >>> context = await coordinator.search(2, "cache eviction policy", k=5)
"""

__version__ = "0.1.0"

from project_retrieval.cache import VectorIndexCache
from project_retrieval.chunk_store import ChunkStore
from project_retrieval.chunking import ChunkingConfig, TextChunker, split_into_chunks
from project_retrieval.config import RetrievalConfig, load_config
from project_retrieval.coordinator import RetrievalCoordinator
from project_retrieval.errors import (
    ChunkStoreError,
    EmbeddingProviderError,
    IndexClosedError,
    IndexIOError,
    RetrievalError,
)
from project_retrieval.index import FaissProjectIndex, IndexState, ProjectVectorIndex
from project_retrieval.models import (
    Chunk,
    ChunkSource,
    RetrievalContext,
    SearchHit,
    VectorizeReport,
)

__all__ = [
    "Chunk",
    "ChunkSource",
    "ChunkStore",
    "ChunkStoreError",
    "ChunkingConfig",
    "EmbeddingProviderError",
    "FaissProjectIndex",
    "IndexClosedError",
    "IndexIOError",
    "IndexState",
    "ProjectVectorIndex",
    "RetrievalConfig",
    "RetrievalContext",
    "RetrievalCoordinator",
    "RetrievalError",
    "SearchHit",
    "TextChunker",
    "VectorIndexCache",
    "VectorizeReport",
    "load_config",
    "split_into_chunks",
]
