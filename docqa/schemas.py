"""Request schemas for the HTTP API."""
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from docqa.errors import ValidationError

FORBIDDEN_SOURCE_PARTS = ("..", "/", "\\")


def check_source_id(source_id: str) -> str:
    """Reject source ids that could escape the uploads directory.

    Raises:
        ValidationError: If the id is empty or contains a path component
    """
    if not source_id or not source_id.strip():
        raise ValidationError("Source id cannot be empty", field="source_id")
    if any(part in source_id for part in FORBIDDEN_SOURCE_PARTS):
        raise ValidationError(f"Invalid source id: {source_id!r}", field="source_id")
    return source_id.strip()


class QueryRequest(BaseModel):
    """Body of /api/query and /api/query-stream."""

    query: str = Field(..., description="Question to answer")
    top_k: Optional[int] = Field(default=None, ge=1, le=50, description="Fragments to retrieve")
    similarity_floor: Optional[float] = Field(
        default=None, ge=-1.0, le=1.0, description="Minimum cosine similarity"
    )
    strict: Optional[bool] = Field(default=None, description="Answer only from the documents")
    source_id: Optional[str] = Field(default=None, description="Restrict retrieval to one source")


class IngestTextRequest(BaseModel):
    """Body of /api/documents/text."""

    source_id: str = Field(..., min_length=1, max_length=255)
    text: str = Field(..., min_length=1)

    @field_validator("source_id")
    @classmethod
    def source_id_is_safe(cls, value: str) -> str:
        if any(part in value for part in FORBIDDEN_SOURCE_PARTS):
            raise ValueError("source_id must not contain '..', '/' or '\\'")
        return value.strip()
