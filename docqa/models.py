"""Record types shared across the pipeline."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class FragmentLocation:
    """Where a fragment sits in its source document (citation only)."""

    page: Optional[int] = None
    char_start: Optional[int] = None
    char_end: Optional[int] = None


@dataclass(frozen=True)
class Fragment:
    """The atomic retrievable unit of document text."""

    id: str
    source_id: str
    text: str
    embedding: Tuple[float, ...]
    location: FragmentLocation = field(default_factory=FragmentLocation)
    created_at: str = ""

    @property
    def dimension(self) -> int:
        return len(self.embedding)


@dataclass(frozen=True)
class RankedFragment:
    """A fragment scored against a query. Never persisted."""

    fragment: Fragment
    similarity: float

    @property
    def source_id(self) -> str:
        return self.fragment.source_id

    @property
    def text(self) -> str:
        return self.fragment.text

    @property
    def location(self) -> FragmentLocation:
        return self.fragment.location


@dataclass(frozen=True)
class Citation:
    """Display form of a ranked fragment."""

    rank: int
    source_id: str
    page: Optional[int]
    char_start: Optional[int]
    char_end: Optional[int]
    similarity: float
    preview: str
    link: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "source_id": self.source_id,
            "page": self.page,
            "char_start": self.char_start,
            "char_end": self.char_end,
            "similarity": self.similarity,
            "preview": self.preview,
            "link": self.link,
        }


@dataclass(frozen=True)
class Answer:
    """A complete answer, grounded or not."""

    display_text: str
    raw_text: str
    citations: List[Citation]
    strict: bool = True
    grounded: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.display_text,
            "raw_answer": self.raw_text,
            "sources": [c.to_dict() for c in self.citations],
            "strict_mode": self.strict,
            "grounded": self.grounded,
        }


@dataclass(frozen=True)
class IndexStats:
    total_fragments: int
    per_source: Dict[str, int]
    dimension: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_fragments": self.total_fragments,
            "per_source": dict(self.per_source),
            "dimension": self.dimension,
        }


@dataclass(frozen=True)
class IngestResult:
    source_id: str
    fragment_count: int
    page_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "fragment_count": self.fragment_count,
            "page_count": self.page_count,
        }


@dataclass(frozen=True)
class RemovalResult:
    source_id: str
    removed_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"source_id": self.source_id, "removed_count": self.removed_count}
