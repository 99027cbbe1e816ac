"""Unit tests for index manifest persistence."""

from pathlib import Path

from project_retrieval.manifest import (
    MANIFEST_FILENAME,
    load_manifest,
    manifest_for,
    needs_reindex,
    save_manifest,
)


def test_save_and_load(tmp_path: Path) -> None:
    path = tmp_path / "project_1" / MANIFEST_FILENAME
    manifest = manifest_for(1, "text-embedding-3-small", 1536, 42)

    save_manifest(path, manifest)

    assert load_manifest(path) == manifest
    assert not path.with_suffix(".tmp").exists()


def test_load_missing_returns_none(tmp_path: Path) -> None:
    assert load_manifest(tmp_path / MANIFEST_FILENAME) is None


def test_load_corrupt_returns_none(tmp_path: Path) -> None:
    path = tmp_path / MANIFEST_FILENAME
    path.write_text("{not json", encoding="utf-8")

    assert load_manifest(path) is None


def test_manifest_timestamp_is_aware() -> None:
    manifest = manifest_for(1, "model", 8, 0)
    assert manifest.synced_at.tzinfo is not None


class TestNeedsReindex:
    def test_matching(self) -> None:
        manifest = manifest_for(1, "model-a", 1536, 10)
        assert needs_reindex(manifest, "model-a", 1536) is False

    def test_dimension_change(self) -> None:
        manifest = manifest_for(1, "model-a", 1536, 10)
        assert needs_reindex(manifest, "model-a", 3072) is True

    def test_model_change_only_warns(self) -> None:
        manifest = manifest_for(1, "model-a", 1536, 10)
        assert needs_reindex(manifest, "model-b", 1536) is False
