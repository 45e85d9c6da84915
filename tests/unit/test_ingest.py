"""Tests for batched embedding during ingestion."""
import asyncio

import pytest

from docqa.errors import EmbeddingUnavailable
from docqa.rag.ingest import IngestPipeline
from tests.fakes import FakeEmbedder


class StallingEmbedder(FakeEmbedder):
    """Fails fast on texts about birds and never answers for anything else."""

    def __init__(self):
        super().__init__()
        self.cancelled = []

    async def embed(self, text):
        self.calls.append(text)
        if "bird" in text.lower():
            raise EmbeddingUnavailable("Embedding service unavailable", operation="embed")
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled.append(text)
            raise


@pytest.mark.asyncio
async def test_embeddings_keep_input_order_across_batches(index):
    pipeline = IngestPipeline(FakeEmbedder(), index, embed_concurrency=2)

    embeddings = await pipeline.generate_embeddings_batch(
        ["cat", "dog", "bird", "mammal cat"]
    )

    assert embeddings == [
        [1.0, 0.0, 0.0, 0.0],
        [0.0, 1.0, 0.0, 0.0],
        [0.0, 0.0, 0.0, 1.0],
        [1.0, 0.0, 1.0, 0.0],
    ]


@pytest.mark.asyncio
async def test_failed_embedding_cancels_the_rest_of_its_batch(index):
    embedder = StallingEmbedder()
    pipeline = IngestPipeline(embedder, index, embed_concurrency=3)

    with pytest.raises(EmbeddingUnavailable):
        await asyncio.wait_for(
            pipeline.generate_embeddings_batch(["Cats purr.", "Birds sing.", "Dogs bark."]),
            timeout=5,
        )

    assert sorted(embedder.cancelled) == ["Cats purr.", "Dogs bark."]


@pytest.mark.asyncio
async def test_failed_batch_stops_later_batches(index):
    embedder = StallingEmbedder()
    pipeline = IngestPipeline(embedder, index, embed_concurrency=1)

    with pytest.raises(EmbeddingUnavailable):
        await pipeline.generate_embeddings_batch(["Birds sing.", "Cats purr."])

    assert embedder.calls == ["Birds sing."]
