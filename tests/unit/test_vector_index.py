"""Tests for the exact cosine-similarity vector index."""
import asyncio
import sqlite3
import threading

import pytest

from docqa import db
from docqa.errors import StorageCorruption, StorageUnavailable
from docqa.rag.vector_index import VectorIndex, cosine_similarity
from tests.fakes import make_fragment


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_length_mismatch_raises(self):
        with pytest.raises(StorageCorruption):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


class TestSearch:
    @pytest.mark.asyncio
    async def test_results_are_ranked_and_floored(self, index):
        await index.insert_batch([
            make_fragment("doc:0", [1.0, 0.0]),
            make_fragment("doc:1", [0.0, 1.0]),
            make_fragment("doc:2", [1.0, 1.0]),
        ])

        results = index.search([1.0, 0.0], top_k=5, similarity_floor=0.3)

        assert [r.fragment.id for r in results] == ["doc:0", "doc:2"]
        assert results[0].similarity == pytest.approx(1.0)
        assert results[1].similarity == pytest.approx(0.7071, abs=1e-4)

    @pytest.mark.asyncio
    async def test_top_k_limits_results(self, index):
        await index.insert_batch([make_fragment(f"doc:{i}", [1.0, i / 10]) for i in range(5)])

        assert len(index.search([1.0, 0.0], top_k=2, similarity_floor=-1.0)) == 2
        assert index.search([1.0, 0.0], top_k=0, similarity_floor=-1.0) == []

    @pytest.mark.asyncio
    async def test_ties_keep_insertion_order(self, index):
        await index.insert_batch([
            make_fragment("doc:0", [0.0, 1.0]),
            make_fragment("doc:1", [2.0, 0.0]),
            make_fragment("doc:2", [1.0, 0.0]),
            make_fragment("doc:3", [3.0, 0.0]),
        ])

        results = index.search([1.0, 0.0], top_k=3, similarity_floor=0.5)

        assert [r.fragment.id for r in results] == ["doc:1", "doc:2", "doc:3"]

    @pytest.mark.asyncio
    async def test_zero_fragment_vector_scores_zero(self, index):
        await index.insert_batch([make_fragment("doc:0", [0.0, 0.0])])

        results = index.search([1.0, 0.0], top_k=1, similarity_floor=-1.0)

        assert results[0].similarity == 0.0

    @pytest.mark.asyncio
    async def test_source_filter(self, index):
        await index.insert_batch([
            make_fragment("a:0", [1.0, 0.0], source_id="a"),
            make_fragment("b:0", [1.0, 0.0], source_id="b"),
        ])

        results = index.search([1.0, 0.0], top_k=5, similarity_floor=0.0, source_filter="b")

        assert [r.source_id for r in results] == ["b"]

    @pytest.mark.asyncio
    async def test_empty_index_returns_nothing(self, index):
        assert index.search([1.0, 0.0], top_k=3, similarity_floor=0.0) == []

    @pytest.mark.asyncio
    async def test_query_dimension_mismatch_raises(self, index):
        await index.insert_batch([make_fragment("doc:0", [1.0, 0.0])])

        with pytest.raises(StorageCorruption):
            index.search([1.0, 0.0, 0.0], top_k=3, similarity_floor=0.0)


class TestInsertBatch:
    @pytest.mark.asyncio
    async def test_mixed_dimensions_rejected_without_write(self, index, db_path):
        with pytest.raises(StorageCorruption):
            await index.insert_batch([
                make_fragment("doc:0", [1.0, 0.0]),
                make_fragment("doc:1", [1.0, 0.0, 0.0]),
            ])

        assert index.stats().total_fragments == 0
        assert db.load_fragments(db_path) == []

    @pytest.mark.asyncio
    async def test_dimension_fixed_by_first_batch(self, index):
        await index.insert_batch([make_fragment("doc:0", [1.0, 0.0])])

        with pytest.raises(StorageCorruption):
            await index.insert_batch([make_fragment("other:0", [1.0, 0.0, 0.0], source_id="other")])

        assert index.dimension == 2
        assert index.stats().per_source == {"doc": 1}

    @pytest.mark.asyncio
    async def test_same_id_replaces_fragment(self, index):
        await index.insert_batch([make_fragment("doc:0", [1.0, 0.0], text="Old text here.")])
        await index.insert_batch([make_fragment("doc:0", [1.0, 0.0], text="New text here.")])

        results = index.search([1.0, 0.0], top_k=5, similarity_floor=0.0)

        assert index.stats().total_fragments == 1
        assert results[0].text == "New text here."

    @pytest.mark.asyncio
    async def test_failed_write_publishes_nothing(self, index, db_path, monkeypatch):
        await index.insert_batch([make_fragment("doc:0", [1.0, 0.0])])

        def failing_insert(path, rows, settings=None):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(db, "insert_fragments", failing_insert)

        with pytest.raises(StorageUnavailable):
            await index.insert_batch([
                make_fragment("new:0", [1.0, 0.0], source_id="new"),
                make_fragment("new:1", [0.0, 1.0], source_id="new"),
            ])

        assert index.stats().per_source == {"doc": 1}
        assert [row["id"] for row in db.load_fragments(db_path)] == ["doc:0"]

    @pytest.mark.asyncio
    async def test_search_during_write_sees_old_snapshot(self, index, monkeypatch):
        await index.insert_batch([make_fragment("doc:0", [1.0, 0.0])])

        started = threading.Event()
        release = threading.Event()
        original_insert = db.insert_fragments

        def blocking_insert(path, rows, settings=None):
            started.set()
            release.wait(timeout=5)
            return original_insert(path, rows, settings)

        monkeypatch.setattr(db, "insert_fragments", blocking_insert)

        batch = [make_fragment(f"new:{i}", [1.0, 0.0], source_id="new") for i in range(3)]
        write = asyncio.create_task(index.insert_batch(batch))
        await asyncio.to_thread(started.wait, 5)

        during = index.search([1.0, 0.0], top_k=10, similarity_floor=0.0)
        release.set()
        await write
        after = index.search([1.0, 0.0], top_k=10, similarity_floor=0.0)

        assert [r.fragment.id for r in during] == ["doc:0"]
        assert [r.fragment.id for r in after] == ["doc:0", "new:0", "new:1", "new:2"]


class TestPersistence:
    @pytest.mark.asyncio
    async def test_reload_restores_fragments(self, index, db_path):
        await index.insert_batch([
            make_fragment("doc:0", [0.25, 0.1], page=2),
            make_fragment("doc:1", [0.1, 0.9]),
        ])

        reloaded = VectorIndex(db_path)
        await reloaded.load()

        assert reloaded.stats() == index.stats()
        result = reloaded.search([0.25, 0.1], top_k=1, similarity_floor=0.0)[0]
        assert result.fragment.embedding == (0.25, 0.1)
        assert result.location.page == 2

    @pytest.mark.asyncio
    async def test_inconsistent_stored_dimensions_raise(self, db_path):
        db.init_database(db_path)
        db.insert_fragments(db_path, [
            {"id": "doc:0", "source_id": "doc", "text": "One.", "embedding": [1.0, 0.0],
             "created_at": "2024-01-01T00:00:00+00:00"},
            {"id": "doc:1", "source_id": "doc", "text": "Two.", "embedding": [1.0, 0.0, 0.0],
             "created_at": "2024-01-01T00:00:00+00:00"},
        ])

        with pytest.raises(StorageCorruption):
            await VectorIndex(db_path).load()


class TestDeleteAndStats:
    @pytest.mark.asyncio
    async def test_delete_by_source(self, index, db_path):
        await index.insert_batch([
            make_fragment("a:0", [1.0, 0.0], source_id="a"),
            make_fragment("a:1", [1.0, 0.0], source_id="a"),
            make_fragment("b:0", [1.0, 0.0], source_id="b"),
        ])

        removed = await index.delete_by_source("a")

        assert removed == 2
        assert index.stats().per_source == {"b": 1}
        assert all(r.source_id == "b" for r in index.search([1.0, 0.0], 10, 0.0))
        assert [row["id"] for row in db.load_fragments(db_path)] == ["b:0"]

    @pytest.mark.asyncio
    async def test_delete_unknown_source_removes_nothing(self, index):
        assert await index.delete_by_source("missing") == 0

    @pytest.mark.asyncio
    async def test_stats_of_empty_index(self, index):
        stats = index.stats()

        assert stats.total_fragments == 0
        assert stats.per_source == {}
        assert stats.dimension is None
