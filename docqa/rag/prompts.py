"""Prompt templates for grounded answers."""
from typing import Sequence

from docqa.models import RankedFragment

RESPONSE_FORMATTING_INSTRUCTIONS = """
If the response has multiple points, use numbered formatting like this:
1. First point
2. Second point

If you need to make a list, use bullets:
- Item 1
- Item 2

Use **text** for important words and separate paragraphs with line breaks."""

STRICT_MODE_INSTRUCTIONS = """You are an assistant that ONLY responds with information EXACTLY as it appears in the provided documents.

STRICT RULES:
1. FORBIDDEN to add information, assumptions, opinions, or general knowledge that is NOT explicitly in the context.
2. FORBIDDEN to be creative, elaborate, extrapolate, or supplement the response with external information.
3. You can ONLY paraphrase or quote verbatim what is written in the provided context.
4. If the question CANNOT be answered COMPLETELY with the given context, respond ONLY: "I did not find this information in the loaded documents."
5. If you only find PARTIAL information, clearly indicate this: "The documents only mention [found information], but do not contain more details about [what is missing]."
6. DO NOT make inferences or deductions beyond what is explicitly written.
7. DO NOT use phrases like "probably", "could be", "it's possible that". Only state what is written.

Your only function is to extract and present the information exactly as it appears in the documents, without adding anything else."""


def build_context(fragments: Sequence[RankedFragment]) -> str:
    """Fragment texts in ranked order, separated by blank lines."""
    return "\n\n".join(f.text for f in fragments)


def build_grounded_prompt(
    query: str,
    fragments: Sequence[RankedFragment],
    strict: bool = True,
) -> str:
    """Build the generation prompt for a query and its ranked context.

    Args:
        query: Validated user query
        fragments: Ranked fragments, best first
        strict: Forbid answers that go beyond the context

    Returns:
        Complete prompt for the language model
    """
    strict_instructions = f"{STRICT_MODE_INSTRUCTIONS}\n\n" if strict else ""

    return (
        f"{strict_instructions}"
        "Based on the following context, answer the question clearly and in a structured manner."
        f"{RESPONSE_FORMATTING_INSTRUCTIONS}\n\n"
        f"Context:\n{build_context(fragments)}\n\n"
        f"Question: {query}\n\n"
        "Answer:"
    )
