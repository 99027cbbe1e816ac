"""Vectorization and query-time retrieval across chunk store and project indices.

Write path:
    document saved -> ChunkStore.replace_chunks (pending) -> vectorize_pending
    -> ProjectVectorIndex.add per chunk -> mark vectorized -> one sync

Read path:
    search -> ProjectVectorIndex.top_k -> ChunkStore resolves text and
    citations -> RetrievalContext
"""

from __future__ import annotations

from collections.abc import Sequence
from types import TracebackType

from loguru import logger

from project_retrieval.cache import VectorIndexCache
from project_retrieval.chunk_store import ChunkStore
from project_retrieval.config import RetrievalConfig, RetrievalSettings
from project_retrieval.embedding import EmbeddingClient, create_embedding_client
from project_retrieval.errors import EmbeddingProviderError, RetrievalError
from project_retrieval.index import ProjectVectorIndex
from project_retrieval.models import Chunk, RetrievalContext, SearchRequest, VectorizeReport


class RetrievalCoordinator:
    """Orchestrates chunk vectorization and project-scoped search.

    Vectorization is best-effort per chunk: an embedding failure leaves that
    chunk pending for a later retry without rolling back chunks that already
    succeeded. Search never raises for retrieval failures; it returns an
    empty context so chat can continue without retrieved context.
    """

    def __init__(
        self,
        store: ChunkStore,
        cache: VectorIndexCache,
        settings: RetrievalSettings | None = None,
        api_key: str | None = None,
        embedding_client: EmbeddingClient | None = None,
    ):
        """Wire the coordinator to its collaborators.

        Args:
            store: Chunk persistence
            cache: Open project indices
            settings: Enable flag and default top_k
            api_key: Embedding provider credential; None disables retrieval
            embedding_client: Client shared by the cache's indices, closed with
                the coordinator when given
        """
        self.store = store
        self.cache = cache
        self.settings = settings or RetrievalSettings()
        self.api_key = api_key
        self.embedding_client = embedding_client

    @classmethod
    def from_config(cls, config: RetrievalConfig) -> RetrievalCoordinator:
        """Build the coordinator and its collaborators from configuration."""
        store = ChunkStore(
            config.store.db_path,
            chunking=config.chunking,
            preview_chars=config.retrieval.preview_chars,
        )
        embedding_client = create_embedding_client(config.embedding)
        cache = VectorIndexCache.for_faiss(
            config.index.vectors_root,
            embedding_client,
            config.embedding.dimensions,
            lock_timeout_seconds=config.index.lock_timeout_seconds,
        )
        return cls(
            store,
            cache,
            settings=config.retrieval,
            api_key=config.embedding.api_key,
            embedding_client=embedding_client,
        )

    def _skip_reason(self) -> str | None:
        if not self.settings.enabled:
            return "vectorization_disabled"
        if not self.api_key:
            return "no_api_key"
        return None

    # Write path

    async def vectorize_pending(self, document_id: int) -> VectorizeReport:
        """Add a document's pending chunks to its project index.

        Returns:
            Report of vectorized and failed chunk ids

        Raises:
            IndexIOError: If the project index cannot be opened or synced
        """
        report = VectorizeReport(document_id=document_id)

        skip = self._skip_reason()
        if skip:
            logger.info(f"Skipping vectorization for document {document_id}: {skip}")
            report.skipped_reason = skip
            return report

        project_id = self.store.project_of_document(document_id)
        if project_id is None:
            logger.warning(f"Document {document_id} has no project; nothing to vectorize")
            report.skipped_reason = "unknown_document"
            return report
        report.project_id = project_id

        chunks = self.store.list_unvectorized(document_id)
        if not chunks:
            logger.info(f"No chunks to vectorize for document {document_id}")
            return report

        logger.info(
            f"Vectorizing {len(chunks)} chunks for document {document_id} in project {project_id}"
        )
        index = await self.cache.get_or_open(project_id)
        await self._vectorize_chunks(index, chunks, report)

        logger.info(
            f"Vectorized {report.vectorized_count} chunks for document {document_id} "
            f"in project {project_id} ({len(report.failed)} failed)"
        )
        return report

    async def vectorize_project(self, project_id: int, limit: int = 500) -> VectorizeReport:
        """Retry sweep over pending chunks of a whole project."""
        report = VectorizeReport(project_id=project_id)

        skip = self._skip_reason()
        if skip:
            report.skipped_reason = skip
            return report

        chunks = self.store.list_unvectorized_for_project(project_id, limit=limit)
        if not chunks:
            logger.info(f"No pending chunks in project {project_id}")
            return report

        index = await self.cache.get_or_open(project_id)
        await self._vectorize_chunks(index, chunks, report)
        logger.info(
            f"Project {project_id} sweep: {report.vectorized_count} vectorized, "
            f"{len(report.failed)} still pending"
        )
        return report

    async def _vectorize_chunks(
        self, index: ProjectVectorIndex, chunks: Sequence[Chunk], report: VectorizeReport
    ) -> None:
        assert self.api_key is not None

        # Vectors of chunks replaced or deleted since the last batch
        live = set(self.store.chunk_ids_for_project(index.project_id))
        stale = sorted(set(await index.item_ids()) - live)
        if stale:
            await index.remove(stale)
            logger.info(f"Pruned {len(stale)} stale vectors from project {index.project_id}")

        for chunk in chunks:
            try:
                await index.add(chunk.id, chunk.text, self.api_key)
            except EmbeddingProviderError as e:
                logger.warning(f"Failed to vectorize chunk {chunk.id}: {e}")
                report.failed[chunk.id] = str(e)
                continue

            self.store.mark_vectorized(chunk.id)
            report.vectorized_ids.append(chunk.id)

        await index.sync()

    async def update_document(
        self, document_id: int, project_id: int, name: str, text: str
    ) -> VectorizeReport:
        """Save a document edit: re-chunk it, then vectorize if enabled.

        Vectors of the previous chunk set are pruned from the index. Failures
        after the chunks are saved are logged rather than raised, so editing
        is never blocked by retrieval.
        """
        previous_project = self.store.project_of_document(document_id)
        old_ids = self.store.chunk_ids_for_document(document_id)

        self.store.upsert_document(document_id, project_id, name)
        new_ids = self.store.replace_chunks(document_id, project_id, text)

        skip = self._skip_reason()
        if old_ids and previous_project is not None:
            # vectorize_pending syncs the same index right after, unless it is
            # skipped or has nothing to add
            sync_now = skip is not None or previous_project != project_id or not new_ids
            await self._prune(previous_project, old_ids, sync=sync_now)

        try:
            return await self.vectorize_pending(document_id)
        except RetrievalError as e:
            logger.error(f"Vectorization of document {document_id} failed: {e}")
            return VectorizeReport(
                document_id=document_id, project_id=project_id, skipped_reason="index_error"
            )

    async def move_document(self, document_id: int, project_id: int) -> list[int]:
        """Move a document to another project and reset its chunks to pending.

        The chunks' vectors are removed from the old project's index and that
        index is synced. Call vectorize_pending afterwards to index them in
        the new project.
        """
        old_project = self.store.project_of_document(document_id)
        moved = self.store.move_document(document_id, project_id)

        if moved and old_project is not None and old_project != project_id:
            await self._prune(old_project, moved, sync=True)
        return moved

    async def _prune(self, project_id: int, chunk_ids: Sequence[int], *, sync: bool) -> None:
        if project_id not in self.cache.open_projects() and not self.cache.exists_on_disk(
            project_id
        ):
            return
        try:
            index = await self.cache.get_or_open(project_id)
            removed = await index.remove(chunk_ids)
            if removed and sync:
                await index.sync()
        except RetrievalError as e:
            # Stale ids are also filtered out at search time
            logger.warning(f"Could not prune {len(chunk_ids)} vectors from project {project_id}: {e}")

    async def delete_project(self, project_id: int) -> None:
        """Delete a project's index directory and all of its chunk rows."""
        await self.cache.delete(project_id)
        self.store.delete_project(project_id)

    # Read path

    async def search(
        self, project_id: int, query_text: str, k: int | None = None
    ) -> RetrievalContext:
        """Retrieve the chunks most similar to a query within one project.

        Args:
            project_id: Project to search
            query_text: User prompt
            k: Number of chunks (defaults to settings.top_k)

        Returns:
            Context ordered by (document_id, chunk_index); empty when
            retrieval is disabled, unconfigured, or fails

        Raises:
            ValidationError: If k is outside 1..100
        """
        request = SearchRequest(
            project_id=project_id,
            query=query_text,
            k=self.settings.top_k if k is None else k,
        )

        empty = RetrievalContext(project_id=project_id)
        skip = self._skip_reason()
        if skip:
            logger.debug(f"Skipping retrieval for project {project_id}: {skip}")
            return empty
        if not request.query.strip():
            return empty

        assert self.api_key is not None
        try:
            index = await self.cache.get_or_open(project_id)
            hits = await index.top_k(request.query, request.k, self.api_key)
            if not hits:
                logger.debug(f"No vectorized chunks found for project {project_id}")
                return empty

            found = self.store.fetch_by_ids([hit.chunk_id for hit in hits])
            # Ids can outlive their rows or point at chunks moved to another project
            chunks = [c for c in found if c.project_id == project_id and c.vectorized]
            sources = self.store.fetch_sources([c.id for c in chunks])
        except RetrievalError as e:
            logger.warning(f"Project {project_id} vector search failed: {e}")
            return empty

        kept = {c.id for c in chunks}
        logger.debug(f"Retrieved {len(chunks)} chunks from project {project_id} index")
        return RetrievalContext(
            project_id=project_id,
            hits=[hit for hit in hits if hit.chunk_id in kept],
            chunks=chunks,
            sources=sources,
        )

    async def close(self) -> None:
        await self.cache.close_all()
        self.store.close()
        if self.embedding_client is not None:
            await self.embedding_client.aclose()

    async def __aenter__(self) -> RetrievalCoordinator:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
