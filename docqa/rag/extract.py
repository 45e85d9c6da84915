"""Text extraction for ingestible documents.

Handles:
- PDF text per page with character spans (PyMuPDF)
- Markdown with YAML frontmatter removed
- Plain text
"""
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import fitz  # PyMuPDF
import structlog
import yaml

from docqa.errors import ValidationError

logger = structlog.get_logger()

SUPPORTED_SUFFIXES = (".pdf", ".md", ".markdown", ".txt")

# YAML frontmatter must be at the start of the file
FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)
WHITESPACE_PATTERN = re.compile(r"\s+")


@dataclass(frozen=True)
class PageSpan:
    """Character range of one page within the extracted full text."""

    page_number: int
    char_start: int
    char_end: int


@dataclass
class ExtractedDocument:
    """Full text of a document plus its page boundaries."""

    full_text: str
    pages: List[PageSpan] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def num_pages(self) -> int:
        return len(self.pages)


def document_from_text(text: str) -> ExtractedDocument:
    """Wrap raw text that carries no page information."""
    return ExtractedDocument(full_text=text.strip())


def extract(path: Path) -> ExtractedDocument:
    """Extract text and page boundaries from a file.

    Args:
        path: Path to a .pdf, .md or .txt file

    Returns:
        ExtractedDocument

    Raises:
        ValidationError: If the file type is unsupported or unreadable
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix not in SUPPORTED_SUFFIXES:
        raise ValidationError(
            f"Unsupported file type '{suffix}'. Supported: {', '.join(SUPPORTED_SUFFIXES)}",
            field="file",
            operation="extract",
        )

    if not path.exists():
        raise ValidationError(f"File not found: {path}", field="file", operation="extract")

    if suffix == ".pdf":
        document = _extract_pdf(path)
    else:
        document = _extract_text_file(path, markdown=suffix in (".md", ".markdown"))

    logger.info(
        "document_extracted",
        path=str(path),
        pages=document.num_pages,
        text_length=len(document.full_text),
    )
    return document


def _extract_pdf(path: Path) -> ExtractedDocument:
    page_texts = []
    try:
        with fitz.open(str(path)) as pdf:
            for page in pdf:
                page_texts.append(WHITESPACE_PATTERN.sub(" ", page.get_text()).strip())
    except (RuntimeError, ValueError) as e:
        # PyMuPDF reports damaged or non-PDF input as RuntimeError/FileDataError
        logger.error("pdf_extraction_failed", path=str(path), error=str(e))
        raise ValidationError(
            f"Could not read PDF '{path.name}': {e}",
            field="file",
            operation="extract",
            cause=e,
        ) from e

    pages = []
    position = 0
    for number, text in enumerate(page_texts, start=1):
        pages.append(PageSpan(page_number=number, char_start=position, char_end=position + len(text)))
        position += len(text) + 1  # pages are joined with a newline

    return ExtractedDocument(full_text="\n".join(page_texts), pages=pages)


def _extract_text_file(path: Path, markdown: bool) -> ExtractedDocument:
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.error("text_extraction_failed", path=str(path), error=str(e))
        raise ValidationError(
            f"Could not read '{path.name}': {e}",
            field="file",
            operation="extract",
            cause=e,
        ) from e

    metadata: Dict[str, Any] = {}
    if markdown:
        metadata, content = parse_frontmatter(content)

    text = content.strip()
    return ExtractedDocument(
        full_text=text,
        pages=[PageSpan(page_number=1, char_start=0, char_end=len(text))],
        metadata=metadata,
    )


def parse_frontmatter(content: str) -> Tuple[Dict[str, Any], str]:
    """Split YAML frontmatter from markdown content.

    Returns:
        Tuple of (frontmatter_dict, content_without_frontmatter)
    """
    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        return {}, content

    yaml_content = match.group(1)
    try:
        frontmatter = yaml.safe_load(yaml_content) or {}
    except yaml.YAMLError as e:
        logger.warning(
            "frontmatter_parse_error",
            error=str(e),
            yaml_preview=yaml_content[:100],
        )
        frontmatter = {}

    if not isinstance(frontmatter, dict):
        frontmatter = {}

    return frontmatter, content[match.end():]
