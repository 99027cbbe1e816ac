"""Index manifest tracking for per-project vector persistence.

Every sync writes a small JSON record next to the project's index file so a
later open can tell whether the stored vectors are compatible with the
currently configured embedding model.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from project_retrieval.models import IndexManifest

MANIFEST_FILENAME = "manifest.json"


def load_manifest(path: Path) -> IndexManifest | None:
    """Load a manifest from path if it exists and parses, else return None."""
    if not path.exists():
        return None
    try:
        return IndexManifest.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable index manifest {path}: {e}")
        return None


def save_manifest(path: Path, manifest: IndexManifest) -> None:
    """Persist a manifest using a write-then-rename so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_suffix(".tmp")
    temp_file.write_text(manifest.model_dump_json(indent=2), encoding="utf-8")
    temp_file.replace(path)


def needs_reindex(manifest: IndexManifest, embedding_model: str, dimensions: int) -> bool:
    """Return True if stored vectors cannot be queried with the current model.

    A dimension change makes the index unusable. A model change with the same
    dimensionality still works mechanically but degrades ranking, so it is
    only reported.
    """
    if manifest.dimensions != dimensions:
        return True
    if manifest.embedding_model != embedding_model:
        logger.warning(
            f"Index for project {manifest.project_id} was built with "
            f"{manifest.embedding_model!r} but {embedding_model!r} is configured. "
            "Search results may be degraded; reindex recommended."
        )
    return False


def manifest_for(
    project_id: int, embedding_model: str, dimensions: int, vector_count: int
) -> IndexManifest:
    """Create a manifest stamped with the current time."""
    return IndexManifest(
        project_id=project_id,
        embedding_model=embedding_model,
        dimensions=dimensions,
        vector_count=vector_count,
        synced_at=datetime.now(UTC),
    )
