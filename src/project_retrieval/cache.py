"""Registry of open project vector indices.

`VectorIndexCache` is built once at startup and passed to everything that
needs a project index. It guarantees a single open handle per project:

- The map lock only guards dictionary lookups and inserts. It is never held
  while an index is being opened, so a slow open for one project does not
  block any other project.
- A per-project "opening" future makes the first caller the only opener.
  Concurrent callers for the same project await that future and receive the
  same handle, or the same exception if the open failed.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Callable
from pathlib import Path
from types import TracebackType

from loguru import logger

from project_retrieval.embedding import EmbeddingClient
from project_retrieval.errors import IndexIOError
from project_retrieval.index import FaissProjectIndex, ProjectVectorIndex

IndexFactory = Callable[[int, Path], ProjectVectorIndex]


class VectorIndexCache:
    """Lazily opened, explicitly closed project index handles keyed by project id."""

    def __init__(self, vectors_root: str | Path, index_factory: IndexFactory):
        """Create an empty cache.

        Args:
            vectors_root: Directory that holds one sub-directory per project
            index_factory: Builds an unopened handle for (project_id, path)
        """
        self.vectors_root = Path(vectors_root)
        self._index_factory = index_factory
        self._handles: dict[int, ProjectVectorIndex] = {}
        self._opening: dict[int, asyncio.Future[ProjectVectorIndex]] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def for_faiss(
        cls,
        vectors_root: str | Path,
        embedding_client: EmbeddingClient,
        dimensions: int,
        lock_timeout_seconds: float = 30.0,
    ) -> VectorIndexCache:
        """Build a cache whose handles are `FaissProjectIndex` instances."""

        def factory(project_id: int, path: Path) -> ProjectVectorIndex:
            return FaissProjectIndex(
                project_id,
                path,
                embedding_client,
                dimensions,
                lock_timeout_seconds=lock_timeout_seconds,
            )

        return cls(vectors_root, factory)

    def project_path(self, project_id: int) -> Path:
        return self.vectors_root / f"project_{project_id}"

    def exists_on_disk(self, project_id: int) -> bool:
        return self.project_path(project_id).exists()

    def open_projects(self) -> list[int]:
        return sorted(self._handles)

    async def get_or_open(self, project_id: int) -> ProjectVectorIndex:
        """Return the project's handle, opening it on first use.

        Raises:
            IndexIOError: If the index directory or files cannot be opened
        """
        async with self._lock:
            handle = self._handles.get(project_id)
            if handle is not None:
                return handle

            pending = self._opening.get(project_id)
            is_opener = pending is None
            if pending is None:
                pending = asyncio.get_running_loop().create_future()
                self._opening[project_id] = pending

        if not is_opener:
            logger.debug(f"Waiting for in-flight open of project {project_id} index")
            # shield: a cancelled waiter must not cancel the shared open
            return await asyncio.shield(pending)

        logger.info(f"Initializing vector index for project {project_id}")
        try:
            handle = self._index_factory(project_id, self.project_path(project_id))
            await handle.open()
        except BaseException as e:
            async with self._lock:
                self._opening.pop(project_id, None)
            if isinstance(e, asyncio.CancelledError):
                pending.cancel()
            else:
                pending.set_exception(e)
                # Mark retrieved so an unawaited failure is not logged twice
                pending.exception()
            raise

        async with self._lock:
            self._handles[project_id] = handle
            self._opening.pop(project_id, None)
        pending.set_result(handle)
        return handle

    async def close(self, project_id: int) -> None:
        """Evict a project's handle. On-disk data is left untouched."""
        async with self._lock:
            pending = self._opening.get(project_id)

        if pending is not None:
            # Let an in-flight open finish so its handle is not inserted after eviction
            await asyncio.wait([pending])

        async with self._lock:
            handle = self._handles.pop(project_id, None)

        if handle is None:
            return
        await handle.close()
        logger.info(f"Removed project {project_id} vector index from cache")

    async def delete(self, project_id: int) -> None:
        """Close a project's handle and delete its index directory. Irreversible.

        Raises:
            IndexIOError: If the directory cannot be removed
        """
        await self.close(project_id)

        path = self.project_path(project_id)
        if not path.exists():
            return
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except OSError as e:
            raise IndexIOError(project_id, f"cannot delete {path}: {e}") from e
        logger.info(f"Deleted vector index directory for project {project_id}")

    async def close_all(self) -> None:
        async with self._lock:
            project_ids = list(self._handles) + list(self._opening)
        for project_id in set(project_ids):
            await self.close(project_id)

    async def __aenter__(self) -> VectorIndexCache:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close_all()
