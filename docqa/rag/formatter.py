"""Answer formatting and citation building.

Converts raw model output with light markdown (headers, lists, bold and
emphasis) into safe HTML, and ranked fragments into citation records.
"""
import html
import re
from typing import List, Optional, Sequence
from urllib.parse import quote

from docqa.models import Citation, RankedFragment

HEADER_PATTERN = re.compile(r"^(#{1,3})\s+(.+)$")
BULLET_PATTERN = re.compile(r"^[-*]\s+(.+)$")
NUMBERED_PATTERN = re.compile(r"^\d+\.\s+(.+)$")
BOLD_PATTERN = re.compile(r"\*\*(.+?)\*\*")
# Underscores inside words (snake_case) are not emphasis
EMPHASIS_PATTERN = re.compile(r"(?<!\w)_(.+?)_(?!\w)")

PREVIEW_CHARS = 100


def _format_inline(text: str) -> str:
    text = BOLD_PATTERN.sub(r"<strong>\1</strong>", text)
    return EMPHASIS_PATTERN.sub(r"<em>\1</em>", text)


def format_answer_html(text: str) -> str:
    """Render raw answer text as HTML.

    Input is escaped before any markup is added. Block elements (headers and
    lists) are never wrapped in paragraphs.
    """
    if not text:
        return ""

    blocks: List[str] = []
    paragraph: List[str] = []
    list_tag: Optional[str] = None
    list_items: List[str] = []

    def flush_paragraph():
        if paragraph:
            blocks.append("<p>" + "<br>".join(paragraph) + "</p>")
            paragraph.clear()

    def flush_list():
        nonlocal list_tag
        if list_tag:
            items = "".join(f"<li>{item}</li>" for item in list_items)
            blocks.append(f"<{list_tag}>{items}</{list_tag}>")
            list_items.clear()
            list_tag = None

    for line in html.escape(text).split("\n"):
        stripped = line.strip()

        if not stripped:
            flush_paragraph()
            flush_list()
            continue

        header = HEADER_PATTERN.match(stripped)
        if header:
            flush_paragraph()
            flush_list()
            level = len(header.group(1))
            blocks.append(f"<h{level}>{_format_inline(header.group(2))}</h{level}>")
            continue

        bullet = BULLET_PATTERN.match(stripped)
        numbered = None if bullet else NUMBERED_PATTERN.match(stripped)
        if bullet or numbered:
            tag = "ul" if bullet else "ol"
            flush_paragraph()
            if list_tag != tag:
                flush_list()
                list_tag = tag
            list_items.append(_format_inline((bullet or numbered).group(1)))
            continue

        flush_list()
        paragraph.append(_format_inline(stripped))

    flush_paragraph()
    flush_list()

    return "".join(blocks)


def _preview(text: str, preview_chars: int) -> str:
    if len(text) <= preview_chars:
        return text
    return text[:preview_chars] + "..."


def build_link(source_id: str, page: Optional[int]) -> str:
    """Deep link to the source document, at a page when known."""
    link = f"/api/documents/{quote(source_id, safe='')}"
    if page:
        link += f"?page={page}"
    return link


def build_citations(
    ranked: Sequence[RankedFragment],
    preview_chars: int = PREVIEW_CHARS,
) -> List[Citation]:
    """Citation records for ranked fragments, in rank order."""
    citations = []
    for rank, result in enumerate(ranked, start=1):
        location = result.location
        citations.append(
            Citation(
                rank=rank,
                source_id=result.source_id,
                page=location.page,
                char_start=location.char_start,
                char_end=location.char_end,
                similarity=round(result.similarity, 4),
                preview=_preview(result.text, preview_chars),
                link=build_link(result.source_id, location.page),
            )
        )
    return citations
