"""Exception types raised by the retrieval backend.

Callers that only need to degrade gracefully (chat context assembly, document
editing) can catch `RetrievalError`; the subclasses let batch code decide
whether a failure is per-item (embedding) or fatal (index I/O).
"""

from __future__ import annotations


class RetrievalError(Exception):
    """Base class for all retrieval backend errors."""


class EmbeddingProviderError(RetrievalError):
    """The external embedding call failed or returned an unusable vector."""


class IndexIOError(RetrievalError):
    """A project index could not be created, opened, or synced to disk."""

    def __init__(self, project_id: int, message: str) -> None:
        self.project_id = project_id
        super().__init__(f"Project {project_id}: {message}")


class IndexClosedError(RetrievalError):
    """An operation was attempted on a handle that has been closed."""

    def __init__(self, project_id: int) -> None:
        self.project_id = project_id
        super().__init__(f"Vector index for project {project_id} is closed")


class ChunkStoreError(RetrievalError):
    """A chunk store read or write failed."""
