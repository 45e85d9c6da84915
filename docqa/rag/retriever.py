"""Retriever for semantic search over indexed documents.

Handles:
- Query validation
- Query embedding generation
- Exact vector search with a similarity floor
- Distinguishing "nothing relevant" from capability and storage failures
"""
from typing import List, Optional

import structlog

from docqa import config
from docqa.errors import NoRelevantContent, ValidationError
from docqa.llm_client import Embedder
from docqa.models import RankedFragment
from docqa.rag.vector_index import VectorIndex

logger = structlog.get_logger()


class Retriever:
    """Semantic retriever for the RAG pipeline."""

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        max_query_length: int = None,
    ):
        """Initialize the retriever.

        Args:
            embedder: Embedding capability
            index: Loaded vector index
            max_query_length: Longest accepted query (default from config)
        """
        self.embedder = embedder
        self.index = index
        self.max_query_length = max_query_length or config.MAX_QUERY_LENGTH

        logger.info("retriever_initialized", max_query_length=self.max_query_length)

    def validate_query(self, query: str) -> str:
        """Return the trimmed query.

        Raises:
            ValidationError: If the query is empty or too long
        """
        if not isinstance(query, str) or not query.strip():
            logger.warning("empty_query_provided")
            raise ValidationError("Query cannot be empty", field="query", operation="retrieve")

        query = query.strip()
        if len(query) > self.max_query_length:
            logger.warning("query_too_long", query_length=len(query), limit=self.max_query_length)
            raise ValidationError(
                f"Query is too long (maximum {self.max_query_length} characters)",
                field="query",
                operation="retrieve",
            )
        return query

    async def retrieve(
        self,
        query: str,
        top_k: int,
        similarity_floor: float,
        source_filter: Optional[str] = None,
    ) -> List[RankedFragment]:
        """Retrieve the fragments most relevant to a query.

        Args:
            query: User query text
            top_k: Maximum number of fragments
            similarity_floor: Minimum cosine similarity
            source_filter: Restrict the search to one source

        Returns:
            Ranked fragments, best first (never empty)

        Raises:
            ValidationError: If the query is empty or too long
            EmbeddingUnavailable: If the query cannot be embedded
            NoRelevantContent: If nothing clears the similarity floor
            StorageCorruption: If the query dimension disagrees with the index
        """
        query = self.validate_query(query)

        logger.info(
            "retrieval_started",
            query_length=len(query),
            top_k=top_k,
            similarity_floor=similarity_floor,
            source_filter=source_filter,
        )

        query_embedding = await self.embedder.embed(query)

        results = self.index.search(
            query_embedding,
            top_k=top_k,
            similarity_floor=similarity_floor,
            source_filter=source_filter,
        )

        if not results:
            logger.info("no_relevant_content", query_preview=query[:100])
            raise NoRelevantContent()

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            results_returned=len(results),
            top_similarity=round(results[0].similarity, 4),
        )

        return results
