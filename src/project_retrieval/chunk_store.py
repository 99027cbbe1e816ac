"""SQLite persistence for document chunks.

Chunks are regenerated wholesale whenever a document's text changes; each row
carries a vectorized flag that the coordinator flips once the chunk has been
added to its project's index.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from loguru import logger

from project_retrieval.chunking import ChunkingConfig, TextChunker
from project_retrieval.errors import ChunkStoreError
from project_retrieval.models import Chunk, ChunkSource

# AUTOINCREMENT keeps deleted chunk ids from being reused; index entries are
# keyed by chunk id and may outlive the row until the next prune.
SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS documents (
  id INTEGER PRIMARY KEY,
  project_id INTEGER NOT NULL,
  name TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS document_chunks (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  document_id INTEGER NOT NULL,
  project_id INTEGER NOT NULL,
  chunk_index INTEGER NOT NULL,
  chunk_text TEXT NOT NULL,
  is_vectorized INTEGER NOT NULL DEFAULT 0,
  created_at TEXT DEFAULT CURRENT_TIMESTAMP,
  UNIQUE (document_id, chunk_index)
);

CREATE INDEX IF NOT EXISTS idx_chunks_project ON document_chunks(project_id);
CREATE INDEX IF NOT EXISTS idx_chunks_document ON document_chunks(document_id);
CREATE INDEX IF NOT EXISTS idx_chunks_vectorized ON document_chunks(is_vectorized);
"""

_CHUNK_COLUMNS = "id, document_id, project_id, chunk_index, chunk_text, is_vectorized"


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        project_id=row["project_id"],
        chunk_index=row["chunk_index"],
        text=row["chunk_text"],
        vectorized=bool(row["is_vectorized"]),
    )


def _placeholders(ids: Sequence[int]) -> str:
    return ",".join("?" for _ in ids)


class ChunkStore:
    """Chunk rows with document/project association and a vectorized flag.

    Thread/Task Safety:
        A single connection is shared behind a re-entrant lock, so calls from
        the event loop and from worker threads are serialized.
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        chunking: ChunkingConfig | None = None,
        preview_chars: int = 150,
    ):
        """Open (and create if needed) the chunk database.

        Args:
            db_path: SQLite file path, or ":memory:"
            chunking: Chunker configuration used by replace_chunks
            preview_chars: Length of citation previews returned by fetch_sources
        """
        self.db_path = str(db_path)
        self.chunker = TextChunker(chunking)
        self.preview_chars = preview_chars
        self._lock = threading.RLock()

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA_SQL)
        except sqlite3.Error as e:
            raise ChunkStoreError(f"Failed to open chunk store at {self.db_path}: {e}") from e

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements atomically; sqlite errors surface as ChunkStoreError."""
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                raise ChunkStoreError(str(e)) from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # Documents

    def upsert_document(self, document_id: int, project_id: int, name: str) -> None:
        """Record a document's project and display name."""
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO documents (id, project_id, name) VALUES (?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET project_id = excluded.project_id, "
                "name = excluded.name",
                (document_id, project_id, name),
            )

    def project_of_document(self, document_id: int) -> int | None:
        """Resolve the project a document belongs to.

        Falls back to the project recorded on the document's chunks when the
        document itself was never registered.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT project_id FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
            if row is None:
                row = conn.execute(
                    "SELECT project_id FROM document_chunks WHERE document_id = ? LIMIT 1",
                    (document_id,),
                ).fetchone()
        return row["project_id"] if row else None

    def move_document(self, document_id: int, project_id: int) -> list[int]:
        """Reassign a document and its chunks to another project.

        All of the document's chunks are reset to pending, since the new
        project's index has not seen them yet.

        Returns:
            Ids of the chunks that were moved
        """
        with self._transaction() as conn:
            conn.execute(
                "UPDATE documents SET project_id = ? WHERE id = ?", (project_id, document_id)
            )
            conn.execute(
                "UPDATE document_chunks SET project_id = ?, is_vectorized = 0 "
                "WHERE document_id = ?",
                (project_id, document_id),
            )
            rows = conn.execute(
                "SELECT id FROM document_chunks WHERE document_id = ? ORDER BY chunk_index",
                (document_id,),
            ).fetchall()

        moved = [row["id"] for row in rows]
        logger.info(f"Moved document {document_id} ({len(moved)} chunks) to project {project_id}")
        return moved

    # Chunks

    def replace_chunks(self, document_id: int, project_id: int, text: str) -> list[int]:
        """Replace every chunk of a document with a fresh split of `text`.

        The delete and the inserts commit together; a failure rolls back to the
        previous chunk set.

        Args:
            document_id: Document being saved
            project_id: Project the document belongs to
            text: Full plain text of the document

        Returns:
            New chunk ids in chunk_index order
        """
        chunks = self.chunker.split(text)

        with self._transaction() as conn:
            conn.execute("DELETE FROM document_chunks WHERE document_id = ?", (document_id,))
            chunk_ids: list[int] = []
            for index, chunk_text in enumerate(chunks):
                cursor = conn.execute(
                    "INSERT INTO document_chunks "
                    "(document_id, project_id, chunk_index, chunk_text, is_vectorized) "
                    "VALUES (?, ?, ?, ?, 0)",
                    (document_id, project_id, index, chunk_text),
                )
                chunk_ids.append(int(cursor.lastrowid))

        if chunk_ids:
            logger.info(
                f"Saved {len(chunk_ids)} chunks for document {document_id} in project {project_id}"
            )
        else:
            logger.info(f"No chunks to save for document {document_id}")
        return chunk_ids

    def chunk_ids_for_document(self, document_id: int) -> list[int]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id FROM document_chunks WHERE document_id = ? ORDER BY chunk_index",
                (document_id,),
            ).fetchall()
        return [row["id"] for row in rows]

    def list_unvectorized(self, document_id: int) -> list[Chunk]:
        """Return the document's pending chunks in chunk_index order."""
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM document_chunks "
                "WHERE document_id = ? AND is_vectorized = 0 ORDER BY chunk_index",
                (document_id,),
            ).fetchall()
        return [_row_to_chunk(row) for row in rows]

    def list_unvectorized_for_project(self, project_id: int, limit: int = 500) -> list[Chunk]:
        """Return up to `limit` pending chunks across a whole project."""
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM document_chunks "
                "WHERE project_id = ? AND is_vectorized = 0 "
                "ORDER BY document_id, chunk_index LIMIT ?",
                (project_id, limit),
            ).fetchall()
        return [_row_to_chunk(row) for row in rows]

    def mark_vectorized(self, chunk_id: int) -> None:
        """Flag a chunk as present in its project index. Idempotent."""
        with self._transaction() as conn:
            conn.execute("UPDATE document_chunks SET is_vectorized = 1 WHERE id = ?", (chunk_id,))

    def vectorized_ids_for_project(self, project_id: int) -> list[int]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id FROM document_chunks WHERE project_id = ? AND is_vectorized = 1",
                (project_id,),
            ).fetchall()
        return [row["id"] for row in rows]

    def chunk_ids_for_project(self, project_id: int) -> list[int]:
        """Every live chunk id of a project, pending or vectorized."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id FROM document_chunks WHERE project_id = ? ORDER BY id", (project_id,)
            ).fetchall()
        return [row["id"] for row in rows]

    def count_for_project(self, project_id: int) -> int:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM document_chunks WHERE project_id = ?", (project_id,)
            ).fetchone()
        return int(row["n"])

    def fetch_by_ids(self, ids: Sequence[int]) -> list[Chunk]:
        """Load chunks by id, ordered by (document_id, chunk_index).

        Unknown ids are skipped; chunks can be deleted between a search and
        this lookup.
        """
        if not ids:
            return []
        ids = list(ids)
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM document_chunks "
                f"WHERE id IN ({_placeholders(ids)}) ORDER BY document_id, chunk_index",
                ids,
            ).fetchall()
        return [_row_to_chunk(row) for row in rows]

    def fetch_sources(self, ids: Sequence[int]) -> list[ChunkSource]:
        """Citation records for chunk ids, ordered like fetch_by_ids."""
        if not ids:
            return []
        ids = list(ids)
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT dc.id, dc.document_id, dc.chunk_index, "
                "COALESCE(d.name, 'Document ' || dc.document_id) AS document_name, "
                "SUBSTR(dc.chunk_text, 1, ?) AS chunk_preview "
                "FROM document_chunks dc "
                "LEFT JOIN documents d ON d.id = dc.document_id "
                f"WHERE dc.id IN ({_placeholders(ids)}) "
                "ORDER BY dc.document_id, dc.chunk_index",
                [self.preview_chars, *ids],
            ).fetchall()

        return [
            ChunkSource(
                chunk_id=row["id"],
                document_id=row["document_id"],
                document_name=row["document_name"],
                chunk_index=row["chunk_index"],
                chunk_preview=row["chunk_preview"].strip() + "...",
            )
            for row in rows
        ]

    def get_chunk_text(self, chunk_id: int) -> str | None:
        """Full text of a single chunk, or None if it no longer exists."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT chunk_text FROM document_chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
        return row["chunk_text"] if row else None

    def delete_project(self, project_id: int) -> int:
        """Delete every chunk and document row of a project.

        Returns:
            Number of chunk rows removed
        """
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM document_chunks WHERE project_id = ?", (project_id,))
            conn.execute("DELETE FROM documents WHERE project_id = ?", (project_id,))
        logger.info(f"Deleted {cursor.rowcount} chunks for project {project_id}")
        return cursor.rowcount
