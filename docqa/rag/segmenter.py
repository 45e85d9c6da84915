"""Sentence-aligned text segmentation for the RAG pipeline.

Fragments are built from whole sentences up to a character limit, with a
configurable number of sentences repeated across each split point.
"""
import re
from typing import List

import structlog

from docqa import config

logger = structlog.get_logger()

WHITESPACE_PATTERN = re.compile(r"\s+")
# Boundary: sentence punctuation followed by whitespace. End of text closes
# the last unit implicitly.
SENTENCE_BOUNDARY_PATTERN = re.compile(r"(?<=[.!?])\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse runs of blanks and newlines into single spaces and trim."""
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def split_units(text: str) -> List[str]:
    """Split normalized text into sentence-like units.

    Text with no sentence boundary comes back as a single unit.
    """
    return [unit.strip() for unit in SENTENCE_BOUNDARY_PATTERN.split(text) if unit.strip()]


def _joined_length(units: List[str]) -> int:
    if not units:
        return 0
    return sum(len(u) for u in units) + len(units) - 1


class TextSegmenter:
    """Sentence-based segmenter with sentence-level overlap."""

    def __init__(
        self,
        max_size: int = None,
        overlap_units: int = None,
        min_length: int = None,
    ):
        """Initialize the segmenter.

        Args:
            max_size: Maximum fragment size in characters (default from config)
            overlap_units: Sentences repeated across a split (default from config)
            min_length: Fragments shorter than this are dropped as noise
                (default from config)
        """
        self.max_size = config.FRAGMENT_MAX_SIZE if max_size is None else max_size
        self.overlap_units = (
            config.FRAGMENT_OVERLAP_UNITS if overlap_units is None else overlap_units
        )
        self.min_length = config.FRAGMENT_MIN_LENGTH if min_length is None else min_length

        if self.max_size < 1:
            raise ValueError(f"max_size must be positive, got {self.max_size}")
        if self.overlap_units < 0:
            raise ValueError(f"overlap_units must be >= 0, got {self.overlap_units}")
        if self.min_length < 0:
            raise ValueError(f"min_length must be >= 0, got {self.min_length}")

        logger.debug(
            "segmenter_initialized",
            max_size=self.max_size,
            overlap_units=self.overlap_units,
            min_length=self.min_length,
        )

    def segment(self, text: str) -> List[str]:
        """Split text into bounded, sentence-aligned fragments.

        Args:
            text: Raw extracted text

        Returns:
            Fragment texts in input order
        """
        text = normalize_whitespace(text or "")
        if not text:
            return []

        units = split_units(text)

        fragments: List[str] = []
        pending: List[str] = []
        fresh = 0  # units in pending that are not overlap carried from the previous fragment

        for unit in units:
            if len(unit) > self.max_size:
                if fresh:
                    fragments.append(" ".join(pending))
                pending, fresh = [], 0
                fragments.extend(self._split_long_unit(unit))
                continue

            if pending and _joined_length(pending + [unit]) > self.max_size:
                if fresh:
                    fragments.append(" ".join(pending))
                pending = self._overlap_seed(pending, unit)
                fresh = 0

            pending.append(unit)
            fresh += 1

        if fresh:
            fragments.append(" ".join(pending))

        result = [f.strip() for f in fragments if len(f.strip()) >= self.min_length]

        logger.info(
            "text_segmented",
            text_length=len(text),
            unit_count=len(units),
            fragment_count=len(result),
            dropped=len(fragments) - len(result),
        )

        return result

    def _overlap_seed(self, closed: List[str], next_unit: str) -> List[str]:
        """Trailing units of a closed fragment that open the next one.

        The seed loses its oldest units while it cannot fit together with
        the incoming unit, so the size bound wins over overlap.
        """
        if self.overlap_units == 0 or len(closed) < self.overlap_units:
            return []

        seed = closed[-self.overlap_units:]
        while seed and _joined_length(seed + [next_unit]) > self.max_size:
            seed = seed[1:]
        return seed

    def _split_long_unit(self, unit: str) -> List[str]:
        """Force-split an oversized sentence at word boundaries.

        A tail shorter than min_length is folded into the previous piece.
        A single word longer than max_size is kept whole.
        """
        pieces: List[str] = []
        current = ""

        for word in unit.split():
            candidate = f"{current} {word}" if current else word
            if len(candidate) > self.max_size and current:
                pieces.append(current)
                current = word
            else:
                current = candidate

        if current:
            if pieces and len(current) < self.min_length:
                pieces[-1] = f"{pieces[-1]} {current}"
            else:
                pieces.append(current)

        return pieces

    def get_segment_stats(self, segments: List[str]) -> dict:
        """Get statistics about a set of segments."""
        if not segments:
            return {
                "fragment_count": 0,
                "total_chars": 0,
                "avg_fragment_size": 0,
                "min_fragment_size": 0,
                "max_fragment_size": 0,
                "overlap_units": self.overlap_units,
            }

        sizes = [len(s) for s in segments]

        return {
            "fragment_count": len(segments),
            "total_chars": sum(sizes),
            "avg_fragment_size": sum(sizes) // len(segments),
            "min_fragment_size": min(sizes),
            "max_fragment_size": max(sizes),
            "overlap_units": self.overlap_units,
        }


def segment(
    text: str,
    max_size: int,
    overlap_units: int,
    min_length: int = None,
) -> List[str]:
    """Segment text with explicit settings (convenience function)."""
    return TextSegmenter(
        max_size=max_size,
        overlap_units=overlap_units,
        min_length=min_length,
    ).segment(text)
