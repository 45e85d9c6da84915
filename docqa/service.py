"""Document question-answering service.

Wires the ingest pipeline, retriever, generation orchestrator and answer
history behind one object. The HTTP app and the CLI both talk to this
class only.
"""
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

from docqa import config
from docqa.errors import NO_GROUNDING_MESSAGE, DocQAError, NoRelevantContent, StorageUnavailable
from docqa.llm_client import Embedder, Generator, OllamaClient
from docqa.memory.history import AnswerHistory
from docqa.models import Answer, IndexStats, IngestResult, RemovalResult
from docqa.rag.formatter import format_answer_html
from docqa.rag.ingest import IngestPipeline
from docqa.rag.orchestrator import (
    CompletionEvent,
    ErrorEvent,
    GenerationOrchestrator,
    StreamDone,
    StreamEvent,
)
from docqa.rag.retriever import Retriever
from docqa.rag.segmenter import TextSegmenter
from docqa.rag.vector_index import VectorIndex

logger = structlog.get_logger()


def no_grounding_answer(strict: bool) -> Answer:
    """Answer returned when retrieval finds nothing relevant."""
    return Answer(
        display_text=format_answer_html(NO_GROUNDING_MESSAGE),
        raw_text=NO_GROUNDING_MESSAGE,
        citations=[],
        strict=strict,
        grounded=False,
    )


class DocumentQAService:
    """Ingest documents and answer questions grounded in them."""

    def __init__(
        self,
        index: VectorIndex,
        embedder: Embedder,
        generator: Generator,
        history: AnswerHistory,
        segmenter: Optional[TextSegmenter] = None,
        top_k: int = None,
        similarity_floor: float = None,
        strict: bool = None,
        max_query_length: int = None,
        embed_concurrency: int = None,
    ):
        """Initialize the service.

        Args:
            index: Vector index (call start() before use)
            embedder: Embedding capability
            generator: Generation capability
            history: Store for completed answers
            segmenter: Text segmenter for ingestion
            top_k: Default number of fragments per query
            similarity_floor: Default minimum similarity
            strict: Default strict-mode setting
            max_query_length: Longest accepted query
            embed_concurrency: Parallel embedding requests during ingestion
        """
        self.index = index
        self.embedder = embedder
        self.generator = generator
        self.history = history

        self.top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        self.similarity_floor = (
            config.SIMILARITY_FLOOR if similarity_floor is None else similarity_floor
        )
        self.strict = config.STRICT_MODE if strict is None else strict

        self.retriever = Retriever(embedder, index, max_query_length=max_query_length)
        self.orchestrator = GenerationOrchestrator(generator)
        self.ingest_pipeline = IngestPipeline(
            embedder,
            index,
            segmenter=segmenter,
            embed_concurrency=embed_concurrency,
        )

        logger.info(
            "document_qa_service_initialized",
            top_k=self.top_k,
            similarity_floor=self.similarity_floor,
            strict=self.strict,
        )

    @classmethod
    def build(
        cls,
        db_path: Path = None,
        embedder: Optional[Embedder] = None,
        generator: Optional[Generator] = None,
        **settings: Any,
    ) -> "DocumentQAService":
        """Build a service from configuration.

        Embedder and generator default to one shared OllamaClient.
        """
        db_path = Path(db_path or config.DB_PATH)
        if embedder is None or generator is None:
            client = OllamaClient()
            embedder = embedder or client
            generator = generator or client

        return cls(
            index=VectorIndex(db_path, embedding_model=getattr(embedder, "embedding_model", None)),
            embedder=embedder,
            generator=generator,
            history=AnswerHistory(db_path),
            **settings,
        )

    async def start(self) -> None:
        """Load the index from storage."""
        await self.index.load()
        logger.info("document_qa_service_started", **self.index.stats().to_dict())

    def _resolve(self, top_k, similarity_floor, strict):
        return (
            self.top_k if top_k is None else top_k,
            self.similarity_floor if similarity_floor is None else similarity_floor,
            self.strict if strict is None else strict,
        )

    async def ingest(self, source_id: str, raw_text: str) -> IngestResult:
        return await self.ingest_pipeline.ingest_text(source_id, raw_text)

    async def ingest_file(self, path: Path, source_id: Optional[str] = None) -> IngestResult:
        return await self.ingest_pipeline.ingest_file(path, source_id=source_id)

    async def query(
        self,
        text: str,
        top_k: Optional[int] = None,
        similarity_floor: Optional[float] = None,
        strict: Optional[bool] = None,
        source_filter: Optional[str] = None,
    ) -> Answer:
        """Answer a question from the indexed documents.

        Returns:
            The generated answer, or the "no grounding" answer when nothing
            relevant was found

        Raises:
            ValidationError: If the query is empty or too long
            EmbeddingUnavailable: If the query cannot be embedded
            GenerationUnavailable: If generation fails or times out
        """
        query = self.retriever.validate_query(text)
        top_k, similarity_floor, strict = self._resolve(top_k, similarity_floor, strict)

        try:
            ranked = await self.retriever.retrieve(
                query,
                top_k=top_k,
                similarity_floor=similarity_floor,
                source_filter=source_filter,
            )
        except NoRelevantContent:
            return no_grounding_answer(strict)

        answer = await self.orchestrator.answer(query, ranked, strict=strict)
        await self._record(query, answer)
        return answer

    def query_stream(
        self,
        text: str,
        top_k: Optional[int] = None,
        similarity_floor: Optional[float] = None,
        strict: Optional[bool] = None,
        source_filter: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Answer a question as a stream of events.

        The query is validated before any event is produced. Failures after
        that point arrive in-band as ErrorEvent followed by StreamDone.

        Raises:
            ValidationError: If the query is empty or too long
        """
        query = self.retriever.validate_query(text)
        top_k, similarity_floor, strict = self._resolve(top_k, similarity_floor, strict)
        return self._stream_events(query, top_k, similarity_floor, strict, source_filter)

    async def _stream_events(
        self,
        query: str,
        top_k: int,
        similarity_floor: float,
        strict: bool,
        source_filter: Optional[str],
    ) -> AsyncIterator[StreamEvent]:
        try:
            ranked = await self.retriever.retrieve(
                query,
                top_k=top_k,
                similarity_floor=similarity_floor,
                source_filter=source_filter,
            )
        except DocQAError as e:
            logger.warning("stream_retrieval_failed", **e.log_context())
            yield ErrorEvent(message=e.message, error_type=type(e).__name__)
            yield StreamDone()
            return
        except Exception as e:
            logger.exception("stream_retrieval_crashed", error=str(e))
            yield ErrorEvent(message=f"Retrieval failed: {e}", error_type=type(e).__name__)
            yield StreamDone()
            return

        async with self.orchestrator.open_stream(query, ranked, strict=strict) as stream:
            async for event in stream:
                if isinstance(event, CompletionEvent) and stream.answer is not None:
                    await self._record(query, stream.answer)
                yield event

    async def _record(self, query: str, answer: Answer) -> None:
        try:
            await self.history.record(query, answer)
        except StorageUnavailable as e:
            # A produced answer is never failed by its history write
            logger.warning("answer_history_write_failed", **e.log_context())

    async def remove_source(self, source_id: str) -> RemovalResult:
        removed = await self.index.delete_by_source(source_id)
        return RemovalResult(source_id=source_id, removed_count=removed)

    def get_stats(self) -> IndexStats:
        return self.index.stats()

    async def recent_answers(self, limit: int = 50) -> List[Dict[str, Any]]:
        return await self.history.recent(limit)

    async def clear_history(self) -> int:
        return await self.history.clear()
