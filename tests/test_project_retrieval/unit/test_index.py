"""Unit tests for the per-project faiss index."""

from pathlib import Path

import pytest

from project_retrieval.errors import IndexClosedError, IndexIOError
from project_retrieval.index import INDEX_FILENAME, FaissProjectIndex, IndexState
from project_retrieval.manifest import MANIFEST_FILENAME, load_manifest

DIMS = 8
KEY = "sk-test"


def unit(axis: int, scale: float = 1.0) -> list[float]:
    vector = [0.0] * DIMS
    vector[axis] = scale
    return vector


@pytest.fixture
def make_index(tmp_path: Path, fake_embedding):
    def factory(project_id: int = 1, dimensions: int = DIMS) -> FaissProjectIndex:
        return FaissProjectIndex(
            project_id, tmp_path / f"project_{project_id}", fake_embedding, dimensions
        )

    return factory


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_open_creates_directory(self, make_index) -> None:
        index = make_index()
        assert index.state is IndexState.UNINITIALIZED

        await index.open()

        assert index.state is IndexState.OPEN
        assert index.path.is_dir()
        stats = await index.stats()
        assert stats.total_vectors == 0
        assert stats.dimensions == DIMS
        assert stats.last_synced is None

    @pytest.mark.asyncio
    async def test_open_is_idempotent(self, make_index) -> None:
        index = make_index()
        await index.open()
        await index.add(1, "text", KEY)
        await index.open()
        assert (await index.stats()).total_vectors == 1

    @pytest.mark.asyncio
    async def test_operations_before_open(self, make_index) -> None:
        index = make_index()
        with pytest.raises(IndexIOError, match="has not been opened"):
            await index.add(1, "text", KEY)

    @pytest.mark.asyncio
    async def test_closed_handle_rejects_operations(self, make_index) -> None:
        index = make_index()
        await index.open()
        await index.close()

        assert index.state is IndexState.CLOSED
        with pytest.raises(IndexClosedError):
            await index.add(1, "text", KEY)
        with pytest.raises(IndexClosedError):
            await index.top_k("query", 3, KEY)
        with pytest.raises(IndexClosedError):
            await index.sync()
        with pytest.raises(IndexClosedError):
            await index.open()


class TestSearch:
    @pytest.mark.asyncio
    async def test_empty_index_skips_embedding(self, make_index, fake_embedding) -> None:
        index = make_index()
        await index.open()

        assert await index.top_k("anything", 5, KEY) == []
        assert fake_embedding.calls == []

    @pytest.mark.asyncio
    async def test_k_must_be_positive(self, make_index) -> None:
        index = make_index()
        await index.open()
        with pytest.raises(ValueError, match="k must be >= 1"):
            await index.top_k("query", 0, KEY)

    @pytest.mark.asyncio
    async def test_results_ordered_by_distance(self, make_index, fake_embedding) -> None:
        fake_embedding.exact.update(
            {
                "near": unit(0, 1.0),
                "middle": unit(0, 3.0),
                "far": unit(1, 5.0),
                "query": unit(0, 1.1),
            }
        )
        index = make_index()
        await index.open()
        await index.add(30, "far", KEY)
        await index.add(10, "near", KEY)
        await index.add(20, "middle", KEY)

        hits = await index.top_k("query", 3, KEY)

        assert [hit.chunk_id for hit in hits] == [10, 20, 30]
        distances = [hit.distance for hit in hits]
        assert distances == sorted(distances)
        assert all(d >= 0 for d in distances)

    @pytest.mark.asyncio
    async def test_k_larger_than_index(self, make_index) -> None:
        index = make_index()
        await index.open()
        await index.add(1, "one", KEY)
        await index.add(2, "two", KEY)

        hits = await index.top_k("query", 10, KEY)

        assert sorted(hit.chunk_id for hit in hits) == [1, 2]

    @pytest.mark.asyncio
    async def test_add_is_upsert(self, make_index, fake_embedding) -> None:
        fake_embedding.exact.update({"old": unit(0), "new": unit(1), "query": unit(1)})
        index = make_index()
        await index.open()

        await index.add(5, "old", KEY)
        await index.add(5, "new", KEY)

        assert (await index.stats()).total_vectors == 1
        [hit] = await index.top_k("query", 5, KEY)
        assert hit.chunk_id == 5
        assert hit.distance == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_remove(self, make_index) -> None:
        index = make_index()
        await index.open()
        for item_id in (1, 2, 3):
            await index.add(item_id, f"text {item_id}", KEY)

        assert await index.remove([1, 3, 99]) == 2
        assert await index.remove([]) == 0

        hits = await index.top_k("query", 5, KEY)
        assert [hit.chunk_id for hit in hits] == [2]

    @pytest.mark.asyncio
    async def test_item_ids(self, make_index) -> None:
        index = make_index()
        await index.open()
        assert await index.item_ids() == []

        for item_id in (5, 7, 9):
            await index.add(item_id, f"text {item_id}", KEY)
        await index.add(7, "text 7 again", KEY)
        await index.remove([5])

        assert sorted(await index.item_ids()) == [7, 9]

    @pytest.mark.asyncio
    async def test_item_ids_requires_open(self, make_index) -> None:
        index = make_index()
        with pytest.raises(IndexIOError):
            await index.item_ids()


class TestPersistence:
    @pytest.mark.asyncio
    async def test_sync_and_reopen(self, make_index) -> None:
        index = make_index()
        await index.open()
        await index.add(1, "alpha", KEY)
        await index.add(2, "beta", KEY)
        assert (await index.stats()).dirty

        await index.sync()

        stats = await index.stats()
        assert not stats.dirty
        assert stats.last_synced is not None
        assert (index.path / INDEX_FILENAME).exists()
        manifest = load_manifest(index.path / MANIFEST_FILENAME)
        assert manifest is not None
        assert manifest.vector_count == 2
        assert manifest.embedding_model == "fake-embedding"

        await index.close()
        reopened = make_index()
        await reopened.open()
        assert (await reopened.stats()).total_vectors == 2
        assert (await reopened.stats()).last_synced == manifest.synced_at

    @pytest.mark.asyncio
    async def test_unsynced_changes_are_discarded(self, make_index) -> None:
        index = make_index()
        await index.open()
        await index.add(1, "alpha", KEY)
        await index.sync()
        await index.add(2, "beta", KEY)
        await index.close()

        reopened = make_index()
        await reopened.open()
        assert (await reopened.stats()).total_vectors == 1

    @pytest.mark.asyncio
    async def test_dimension_mismatch_requires_reindex(self, make_index) -> None:
        index = make_index()
        await index.open()
        await index.add(1, "alpha", KEY)
        await index.sync()
        await index.close()

        mismatched = make_index(dimensions=16)
        with pytest.raises(IndexIOError, match="reindex required"):
            await mismatched.open()

    @pytest.mark.asyncio
    async def test_corrupt_index_file(self, make_index) -> None:
        index = make_index()
        index.path.mkdir(parents=True)
        (index.path / INDEX_FILENAME).write_bytes(b"not a faiss index")

        with pytest.raises(IndexIOError, match="cannot read"):
            await index.open()

    @pytest.mark.asyncio
    async def test_projects_are_isolated(self, make_index) -> None:
        first = make_index(1)
        second = make_index(2)
        await first.open()
        await second.open()

        await first.add(100, "shared text", KEY)
        await second.add(200, "shared text", KEY)

        assert [h.chunk_id for h in await first.top_k("shared text", 5, KEY)] == [100]
        assert [h.chunk_id for h in await second.top_k("shared text", 5, KEY)] == [200]
