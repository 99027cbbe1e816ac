"""Per-project vector index management and search operations.

Each project owns one faiss structure stored under its own directory:

    <vectors_root>/project_<id>/chunks.faiss
    <vectors_root>/project_<id>/manifest.json

Vectors are keyed by chunk id, so search results are always scoped to the
project whose index was queried.
"""

from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from pathlib import Path

import faiss
import numpy as np
from filelock import FileLock, Timeout
from loguru import logger

from project_retrieval.embedding import EmbeddingClient
from project_retrieval.errors import IndexClosedError, IndexIOError
from project_retrieval.manifest import (
    MANIFEST_FILENAME,
    load_manifest,
    manifest_for,
    needs_reindex,
    save_manifest,
)
from project_retrieval.models import IndexStats, SearchHit

INDEX_FILENAME = "chunks.faiss"
LOCK_FILENAME = ".lock"


class IndexState(str, Enum):
    """Lifecycle of a project index handle."""

    UNINITIALIZED = "uninitialized"
    OPEN = "open"
    CLOSED = "closed"


class ProjectVectorIndex(ABC):
    """Abstract base class for a single project's vector index."""

    project_id: int
    path: Path

    @property
    @abstractmethod
    def state(self) -> IndexState: ...

    @abstractmethod
    async def open(self) -> None:
        """Load the index from disk, or initialize an empty one.

        Raises:
            IndexIOError: If the directory or stored index cannot be used
        """
        ...

    @abstractmethod
    async def add(self, item_id: int, text: str, api_key: str) -> None:
        """Embed `text` and insert or replace the vector for `item_id`.

        Raises:
            EmbeddingProviderError: If the embedding call fails
        """
        ...

    @abstractmethod
    async def top_k(self, query_text: str, k: int, api_key: str) -> list[SearchHit]:
        """Return up to `k` nearest items, ascending distance.

        Raises:
            ValueError: If k < 1
        """
        ...

    @abstractmethod
    async def remove(self, item_ids: Sequence[int]) -> int:
        """Drop vectors for the given ids. Returns how many were removed."""
        ...

    @abstractmethod
    async def item_ids(self) -> list[int]:
        """Ids of every vector currently held in memory."""
        ...

    @abstractmethod
    async def sync(self) -> None:
        """Flush in-memory state to disk.

        Raises:
            IndexIOError: If the write fails
        """
        ...

    @abstractmethod
    async def stats(self) -> IndexStats: ...

    @abstractmethod
    async def close(self) -> None:
        """Mark the handle closed. Unsynced changes are discarded."""
        ...


class FaissProjectIndex(ProjectVectorIndex):
    """Exact L2 search over one project's chunk vectors using faiss.

    Concurrency:
        All reads and writes of the faiss structure go through one asyncio
        lock per handle. Embedding calls happen outside the lock, so a slow
        provider does not stall searches that are already embedded.
    """

    def __init__(
        self,
        project_id: int,
        path: Path,
        embedding_client: EmbeddingClient,
        dimensions: int,
        lock_timeout_seconds: float = 30.0,
    ):
        """Create an unopened handle.

        Args:
            project_id: Project the index belongs to
            path: Project directory holding the index files
            embedding_client: Client used to embed added texts and queries
            dimensions: Vector dimensionality of the embedding model
            lock_timeout_seconds: Timeout for the on-disk lock taken by sync
        """
        self.project_id = project_id
        self.path = Path(path)
        self.embedding_client = embedding_client
        self.dimensions = dimensions
        self.lock_timeout_seconds = lock_timeout_seconds

        self._state = IndexState.UNINITIALIZED
        self._index: faiss.IndexIDMap2 | None = None
        self._lock = asyncio.Lock()
        self._dirty = False
        self._last_synced: datetime | None = None

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def index_file(self) -> Path:
        return self.path / INDEX_FILENAME

    def _require_open(self) -> faiss.IndexIDMap2:
        if self._state is not IndexState.OPEN or self._index is None:
            if self._state is IndexState.CLOSED:
                raise IndexClosedError(self.project_id)
            raise IndexIOError(self.project_id, "index has not been opened")
        return self._index

    async def open(self) -> None:
        async with self._lock:
            if self._state is IndexState.OPEN:
                return
            if self._state is IndexState.CLOSED:
                raise IndexClosedError(self.project_id)
            self._index, self._last_synced = await asyncio.to_thread(self._load)
            self._state = IndexState.OPEN

        logger.info(
            f"Opened vector index for project {self.project_id} "
            f"({self._index.ntotal} vectors) at {self.path}"
        )

    def _load(self) -> tuple[faiss.IndexIDMap2, datetime | None]:
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IndexIOError(self.project_id, f"cannot create {self.path}: {e}") from e

        manifest = load_manifest(self.path / MANIFEST_FILENAME)
        model_name = self.embedding_client.model_name

        if not self.index_file.exists():
            return faiss.IndexIDMap2(faiss.IndexFlatL2(self.dimensions)), None

        if manifest is not None and needs_reindex(manifest, model_name, self.dimensions):
            raise IndexIOError(
                self.project_id,
                f"stored vectors have {manifest.dimensions} dimensions but "
                f"{self.dimensions} are configured; reindex required",
            )

        try:
            index = faiss.read_index(str(self.index_file))
        except RuntimeError as e:
            raise IndexIOError(self.project_id, f"cannot read {self.index_file}: {e}") from e

        if index.d != self.dimensions:
            raise IndexIOError(
                self.project_id,
                f"index file has {index.d} dimensions, expected {self.dimensions}",
            )
        return index, manifest.synced_at if manifest else None

    async def add(self, item_id: int, text: str, api_key: str) -> None:
        self._require_open()
        vector = await self.embedding_client.embed(text, api_key)

        ids = np.asarray([item_id], dtype=np.int64)
        vectors = np.asarray([vector], dtype=np.float32)
        async with self._lock:
            index = self._require_open()
            # IDMap allows duplicate ids; drop the old vector to keep add an upsert
            index.remove_ids(ids)
            index.add_with_ids(vectors, ids)
            self._dirty = True

        logger.debug(f"Added chunk {item_id} to project {self.project_id} vector index")

    async def top_k(self, query_text: str, k: int, api_key: str) -> list[SearchHit]:
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")

        async with self._lock:
            if self._require_open().ntotal == 0:
                return []

        vector = await self.embedding_client.embed(query_text, api_key)
        query = np.asarray([vector], dtype=np.float32)

        async with self._lock:
            index = self._require_open()
            limit = min(k, index.ntotal)
            if limit == 0:
                return []
            distances, labels = index.search(query, limit)

        hits = [
            SearchHit(chunk_id=int(label), distance=float(distance))
            for distance, label in zip(distances[0], labels[0], strict=True)
            if label != -1
        ]
        hits.sort(key=lambda hit: hit.distance)
        logger.info(f"Found {len(hits)} similar chunks in project {self.project_id}")
        return hits

    async def remove(self, item_ids: Sequence[int]) -> int:
        if not item_ids:
            return 0
        ids = np.asarray(list(item_ids), dtype=np.int64)
        async with self._lock:
            removed = int(self._require_open().remove_ids(ids))
            if removed:
                self._dirty = True

        if removed:
            logger.info(f"Removed {removed} vectors from project {self.project_id} index")
        return removed

    async def item_ids(self) -> list[int]:
        async with self._lock:
            index = self._require_open()
            return [int(i) for i in faiss.vector_to_array(index.id_map)]

    async def sync(self) -> None:
        async with self._lock:
            index = self._require_open()
            self._last_synced = await asyncio.to_thread(self._write, index)
            self._dirty = False

        logger.info(f"Synced project {self.project_id} vector index to disk")

    def _write(self, index: faiss.IndexIDMap2) -> datetime:
        temp_file = self.path / f"{INDEX_FILENAME}.tmp"
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            with FileLock(self.path / LOCK_FILENAME, timeout=self.lock_timeout_seconds):
                faiss.write_index(index, str(temp_file))
                os.replace(temp_file, self.index_file)
                manifest = manifest_for(
                    self.project_id,
                    self.embedding_client.model_name,
                    self.dimensions,
                    int(index.ntotal),
                )
                save_manifest(self.path / MANIFEST_FILENAME, manifest)
        except Timeout as e:
            raise IndexIOError(self.project_id, f"timed out waiting for {e.lock_file}") from e
        except (OSError, RuntimeError) as e:
            logger.error(f"Failed to sync project {self.project_id} index: {e}")
            raise IndexIOError(self.project_id, f"sync failed: {e}") from e
        return manifest.synced_at

    async def stats(self) -> IndexStats:
        async with self._lock:
            index = self._require_open()
            return IndexStats(
                project_id=self.project_id,
                total_vectors=int(index.ntotal),
                dimensions=self.dimensions,
                embedding_model=self.embedding_client.model_name,
                last_synced=self._last_synced,
                dirty=self._dirty,
            )

    async def close(self) -> None:
        async with self._lock:
            if self._dirty:
                logger.warning(
                    f"Closing project {self.project_id} index with unsynced changes; "
                    "they will be lost"
                )
            self._index = None
            self._state = IndexState.CLOSED
