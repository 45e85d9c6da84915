"""Error taxonomy for the question-answering pipeline.

Every error carries the operation that failed and the underlying cause so
callers can log it meaningfully. HTTP status mapping lives in docqa.main.
"""
from typing import Any, Dict, Optional

NO_GROUNDING_MESSAGE = (
    "No relevant documents were found for your question. "
    "Make sure documents related to your query have been loaded."
)


class DocQAError(Exception):
    """Base class for all pipeline errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.message = message
        self.operation = operation
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        return self.message

    def log_context(self) -> Dict[str, Any]:
        """Keyword context for structlog events."""
        return {
            "error": self.message,
            "error_type": type(self).__name__,
            "operation": self.operation,
            "cause": repr(self.cause) if self.cause is not None else None,
        }


class ValidationError(DocQAError):
    """Bad caller input: empty or oversized query, unsupported file."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.field = field
        super().__init__(message, operation=operation, cause=cause)


class CapabilityUnavailable(DocQAError):
    """An external model capability failed or timed out."""


class EmbeddingUnavailable(CapabilityUnavailable):
    """The embedding capability failed or timed out."""


class GenerationUnavailable(CapabilityUnavailable):
    """The generation capability failed or timed out."""


class NoRelevantContent(DocQAError):
    """Retrieval found nothing above the similarity floor."""

    def __init__(self, message: str = NO_GROUNDING_MESSAGE, operation: Optional[str] = "retrieve"):
        super().__init__(message, operation=operation)


class StorageUnavailable(DocQAError):
    """The row store could not be read or written."""


class StorageCorruption(DocQAError):
    """Stored data violates an index invariant (e.g. embedding length)."""
