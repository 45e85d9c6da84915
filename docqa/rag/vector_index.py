"""Exact cosine-similarity vector index backed by SQLite.

Handles:
- Embedding dimension fixed by the first batch and persisted
- Atomic batch insertion (one transaction, then one snapshot swap)
- Exact full-scan search with a similarity floor and optional source filter
- Whole-source deletion and statistics

Searches read an immutable snapshot captured at call time and never take a
lock. Writers are serialized by an asyncio lock.
"""
import asyncio
import sqlite3
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from docqa import config, db
from docqa.errors import StorageCorruption, StorageUnavailable
from docqa.models import Fragment, FragmentLocation, IndexStats, RankedFragment

logger = structlog.get_logger()

DIMENSION_KEY = "embedding_dimension"
MODEL_KEY = "embedding_model"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|), defined as 0.0 when either norm is zero."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise StorageCorruption(
            f"Vector length mismatch: {va.shape[0]} vs {vb.shape[0]}",
            operation="cosine_similarity",
        )

    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


@dataclass(frozen=True)
class _Snapshot:
    """Immutable view of the fragment set, in insertion order."""

    fragments: Tuple[Fragment, ...]
    matrix: np.ndarray  # shape (n, dimension)
    norms: np.ndarray  # shape (n,)
    dimension: Optional[int]

    @classmethod
    def build(cls, fragments: Sequence[Fragment], dimension: Optional[int]) -> "_Snapshot":
        fragments = tuple(fragments)
        if fragments:
            matrix = np.array([f.embedding for f in fragments], dtype=np.float64)
        else:
            matrix = np.zeros((0, dimension or 0), dtype=np.float64)
        matrix.setflags(write=False)
        norms = np.linalg.norm(matrix, axis=1) if fragments else np.zeros(0)
        return cls(fragments=fragments, matrix=matrix, norms=norms, dimension=dimension)


class VectorIndex:
    """Fragment store with exact similarity ranking."""

    def __init__(self, db_path: Path = None, embedding_model: str = None):
        """Initialize the index.

        Args:
            db_path: SQLite database path (default: config.DB_PATH)
            embedding_model: Recorded alongside the dimension for diagnostics
        """
        self.db_path = Path(db_path or config.DB_PATH)
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self._snapshot = _Snapshot.build((), None)
        self._write_lock = asyncio.Lock()

        logger.info(
            "vector_index_initialized",
            db_path=str(self.db_path),
            embedding_model=self.embedding_model,
        )

    @property
    def dimension(self) -> Optional[int]:
        return self._snapshot.dimension

    async def load(self) -> None:
        """Create the schema if needed and load all fragments into memory.

        Raises:
            StorageCorruption: If stored embeddings disagree on length
            StorageUnavailable: If the database cannot be read
        """
        try:
            await asyncio.to_thread(db.init_database, self.db_path)
            rows = await asyncio.to_thread(db.load_fragments, self.db_path)
            stored_dim = await asyncio.to_thread(db.get_index_setting, self.db_path, DIMENSION_KEY)
        except sqlite3.Error as e:
            raise StorageUnavailable(
                f"Failed to load vector index: {e}", operation="load", cause=e
            ) from e

        dimension = int(stored_dim) if stored_dim is not None else None
        fragments = [_row_to_fragment(row) for row in rows]

        for fragment in fragments:
            if dimension is None:
                dimension = fragment.dimension
            if fragment.dimension != dimension:
                logger.error(
                    "embedding_dimension_corrupted",
                    fragment_id=fragment.id,
                    expected=dimension,
                    actual=fragment.dimension,
                )
                raise StorageCorruption(
                    f"Fragment {fragment.id} has embedding length {fragment.dimension}, "
                    f"index dimension is {dimension}",
                    operation="load",
                )

        self._snapshot = _Snapshot.build(fragments, dimension)

        logger.info(
            "vector_index_loaded",
            fragment_count=len(fragments),
            dimension=dimension,
        )

    async def insert_batch(self, fragments: Sequence[Fragment]) -> int:
        """Atomically add a batch of fragments.

        Either every fragment becomes visible to later searches or none does.
        A fragment whose id already exists replaces the stored one.

        Returns:
            Number of fragments written

        Raises:
            StorageCorruption: If embedding lengths disagree with the index
            StorageUnavailable: If the write fails (nothing is published)
        """
        fragments = list(fragments)
        if not fragments:
            return 0

        async with self._write_lock:
            current = self._snapshot
            dimension = current.dimension or fragments[0].dimension
            self._validate_batch(fragments, dimension)

            rows = [_fragment_to_row(f) for f in fragments]
            settings = None
            if current.dimension is None:
                settings = {DIMENSION_KEY: str(dimension), MODEL_KEY: self.embedding_model}

            try:
                await asyncio.to_thread(db.insert_fragments, self.db_path, rows, settings)
            except sqlite3.Error as e:
                logger.error(
                    "vector_index_insert_failed",
                    error=str(e),
                    batch_size=len(fragments),
                )
                raise StorageUnavailable(
                    f"Failed to write fragment batch: {e}",
                    operation="insert_batch",
                    cause=e,
                ) from e

            # Same-id fragments in the batch: last one wins, as in the table
            batch = {f.id: f for f in fragments}
            kept = [f for f in current.fragments if f.id not in batch]
            self._snapshot = _Snapshot.build(kept + list(batch.values()), dimension)

        logger.info(
            "fragment_batch_inserted",
            count=len(fragments),
            total_fragments=len(self._snapshot.fragments),
        )
        return len(fragments)

    def _validate_batch(self, fragments: List[Fragment], dimension: int) -> None:
        for fragment in fragments:
            if fragment.dimension != dimension:
                raise StorageCorruption(
                    f"Fragment {fragment.id} has embedding length {fragment.dimension}, "
                    f"index dimension is {dimension}",
                    operation="insert_batch",
                )
            if not fragment.text or not fragment.text.strip():
                raise StorageCorruption(
                    f"Fragment {fragment.id} has empty text",
                    operation="insert_batch",
                )

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int,
        similarity_floor: float,
        source_filter: Optional[str] = None,
    ) -> List[RankedFragment]:
        """Rank fragments by cosine similarity to a query vector.

        Args:
            query_vector: Query embedding
            top_k: Maximum number of results
            similarity_floor: Minimum similarity for a result to be kept
            source_filter: Restrict candidates to one source

        Returns:
            At most top_k results, best first; ties keep insertion order

        Raises:
            StorageCorruption: If the query vector length differs from the index
        """
        snapshot = self._snapshot

        if top_k <= 0 or not snapshot.fragments:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        if query.ndim != 1 or query.shape[0] != snapshot.dimension:
            raise StorageCorruption(
                f"Query dimension mismatch: expected {snapshot.dimension}, got {query.shape[-1]}",
                operation="search",
            )

        denom = snapshot.norms * float(np.linalg.norm(query))
        dots = snapshot.matrix @ query
        similarities = np.divide(
            dots, denom, out=np.zeros_like(dots), where=denom > 0
        )
        similarities = np.clip(similarities, -1.0, 1.0)

        candidates = np.flatnonzero(similarities >= similarity_floor)
        if source_filter is not None:
            candidates = np.array(
                [i for i in candidates if snapshot.fragments[i].source_id == source_filter],
                dtype=np.intp,
            )

        if candidates.size == 0:
            logger.info("vector_search_no_candidates", floor=similarity_floor)
            return []

        order = candidates[np.argsort(-similarities[candidates], kind="stable")][:top_k]

        results = [
            RankedFragment(fragment=snapshot.fragments[i], similarity=float(similarities[i]))
            for i in order
        ]

        logger.info(
            "vector_search_completed",
            scanned=len(snapshot.fragments),
            top_k=top_k,
            results_found=len(results),
            top_similarity=round(results[0].similarity, 4),
        )

        return results

    async def delete_by_source(self, source_id: str) -> int:
        """Remove every fragment of a source.

        Returns:
            Number of fragments removed
        """
        async with self._write_lock:
            current = self._snapshot
            try:
                await asyncio.to_thread(db.delete_fragments_by_source, self.db_path, source_id)
            except sqlite3.Error as e:
                raise StorageUnavailable(
                    f"Failed to delete source {source_id}: {e}",
                    operation="delete_by_source",
                    cause=e,
                ) from e

            kept = [f for f in current.fragments if f.source_id != source_id]
            removed = len(current.fragments) - len(kept)
            self._snapshot = _Snapshot.build(kept, current.dimension)

        logger.info("source_removed", source_id=source_id, removed=removed)
        return removed

    def stats(self) -> IndexStats:
        """Fragment totals overall and per source."""
        snapshot = self._snapshot
        per_source: Dict[str, int] = dict(
            sorted(Counter(f.source_id for f in snapshot.fragments).items())
        )
        return IndexStats(
            total_fragments=len(snapshot.fragments),
            per_source=per_source,
            dimension=snapshot.dimension,
        )


def _fragment_to_row(fragment: Fragment) -> dict:
    return {
        "id": fragment.id,
        "source_id": fragment.source_id,
        "text": fragment.text,
        "embedding": fragment.embedding,
        "page": fragment.location.page,
        "char_start": fragment.location.char_start,
        "char_end": fragment.location.char_end,
        "created_at": fragment.created_at or db.utc_now(),
    }


def _row_to_fragment(row: dict) -> Fragment:
    return Fragment(
        id=row["id"],
        source_id=row["source_id"],
        text=row["text"],
        embedding=tuple(float(v) for v in row["embedding"]),
        location=FragmentLocation(
            page=row.get("page"),
            char_start=row.get("char_start"),
            char_end=row.get("char_end"),
        ),
        created_at=row["created_at"],
    )
