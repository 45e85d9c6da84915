"""Ingest pipeline for indexing documents.

Orchestrates:
- Text extraction
- Sentence-aligned segmentation
- Page and offset location
- Embedding generation
- One atomic batch write per document
"""
import asyncio
from pathlib import Path
from typing import List, Optional

import structlog

from docqa import config, db
from docqa.llm_client import Embedder
from docqa.models import Fragment, IngestResult
from docqa.rag.extract import ExtractedDocument, document_from_text, extract
from docqa.rag.locate import map_segments_to_locations
from docqa.rag.segmenter import TextSegmenter
from docqa.rag.vector_index import VectorIndex

logger = structlog.get_logger()


def fragment_id(source_id: str, position: int) -> str:
    return f"{source_id}:{position}"


class IngestPipeline:
    """Pipeline for ingesting documents into the vector index."""

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        segmenter: Optional[TextSegmenter] = None,
        embed_concurrency: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            embedder: Embedding capability
            index: Loaded vector index
            segmenter: Text segmenter (default settings from config)
            embed_concurrency: Number of embeddings requested in parallel
        """
        self.embedder = embedder
        self.index = index
        self.segmenter = segmenter or TextSegmenter()
        self.embed_concurrency = embed_concurrency or config.EMBED_CONCURRENCY

        logger.info(
            "ingest_pipeline_initialized",
            max_size=self.segmenter.max_size,
            overlap_units=self.segmenter.overlap_units,
            embed_concurrency=self.embed_concurrency,
        )

    async def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for texts, a bounded number at a time.

        The first failure in a batch cancels the requests still running
        alongside it.

        Returns:
            Embedding vectors in the same order as texts

        Raises:
            EmbeddingUnavailable: If any embedding fails
        """
        embeddings: List[List[float]] = []

        for i in range(0, len(texts), self.embed_concurrency):
            batch = texts[i : i + self.embed_concurrency]
            tasks = [asyncio.ensure_future(self.embedder.embed(text)) for text in batch]
            try:
                batch_embeddings = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            embeddings.extend(batch_embeddings)

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(embeddings),
            )

        return embeddings

    async def ingest_document(self, source_id: str, document: ExtractedDocument) -> IngestResult:
        """Segment, embed and index one extracted document.

        Nothing is written unless every fragment was embedded.

        Raises:
            EmbeddingUnavailable: If embedding fails (nothing is written)
            StorageUnavailable: If the batch write fails
            StorageCorruption: If embedding lengths disagree with the index
        """
        logger.info("ingesting_document", source_id=source_id, text_length=len(document.full_text))

        segments = self.segmenter.segment(document.full_text)
        if not segments:
            logger.warning("no_fragments_created", source_id=source_id)
            return IngestResult(source_id=source_id, fragment_count=0, page_count=document.num_pages)

        locations = map_segments_to_locations(segments, document)
        embeddings = await self.generate_embeddings_batch(segments)

        created_at = db.utc_now()
        fragments = [
            Fragment(
                id=fragment_id(source_id, position),
                source_id=source_id,
                text=text,
                embedding=tuple(embedding),
                location=location,
                created_at=created_at,
            )
            for position, (text, embedding, location) in enumerate(
                zip(segments, embeddings, locations)
            )
        ]

        await self.index.insert_batch(fragments)

        logger.info(
            "document_ingested",
            source_id=source_id,
            fragments_created=len(fragments),
            pages=document.num_pages,
        )

        return IngestResult(
            source_id=source_id,
            fragment_count=len(fragments),
            page_count=document.num_pages,
        )

    async def ingest_text(self, source_id: str, raw_text: str) -> IngestResult:
        return await self.ingest_document(source_id, document_from_text(raw_text))

    async def ingest_file(self, path: Path, source_id: Optional[str] = None) -> IngestResult:
        """Extract and ingest a file. The source id defaults to the file name.

        Raises:
            ValidationError: If the file type is unsupported or unreadable
        """
        path = Path(path)
        document = await asyncio.to_thread(extract, path)
        return await self.ingest_document(source_id or path.name, document)
