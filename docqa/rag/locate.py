"""Approximate fragment locations for citations.

Offsets come from cumulative fragment lengths, not from searching the
source text, so they drift with overlap and whitespace normalization.
Page numbers fall back to a proportional estimate when an offset lands
outside every known page span.
"""
import math
from typing import List, Optional

from docqa.models import FragmentLocation
from docqa.rag.extract import ExtractedDocument, PageSpan


def find_page(
    char_start: int,
    pages: List[PageSpan],
    total_length: int,
) -> Optional[int]:
    """Page number (1-indexed) containing a character offset.

    Returns:
        Page number, or None when the document has no page information
    """
    if not pages:
        return None

    for page in pages:
        if page.char_start <= char_start < page.char_end:
            return page.page_number

    num_pages = len(pages)
    if total_length <= 0:
        return 1

    estimate = math.ceil(char_start / total_length * num_pages)
    return min(max(estimate, 1), num_pages)


def map_segments_to_locations(
    segments: List[str],
    document: ExtractedDocument,
) -> List[FragmentLocation]:
    """Assign offsets and pages to segments in order."""
    locations = []
    position = 0
    total_length = len(document.full_text)

    for text in segments:
        char_start = position
        char_end = position + len(text)
        locations.append(
            FragmentLocation(
                page=find_page(char_start, document.pages, total_length),
                char_start=char_start,
                char_end=char_end,
            )
        )
        position = char_end

    return locations
