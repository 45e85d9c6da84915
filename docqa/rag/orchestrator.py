"""Generation orchestrator for grounded answers.

Handles:
- Complete answers (one generation call)
- Streamed answers as a sequence of events with an explicit lifecycle:

    STARTED -> STREAMING -> COMPLETED | FAILED | CANCELLED

A stream always opens with a CitationsEvent. Tokens are relayed verbatim in
arrival order. A completed stream ends with CompletionEvent then StreamDone;
a failed one with ErrorEvent then StreamDone. A cancelled stream emits
nothing further and closes the underlying generation.
"""
import asyncio
import enum
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

import structlog

from docqa.errors import DocQAError
from docqa.llm_client import Generator
from docqa.models import Answer, Citation, RankedFragment
from docqa.rag.formatter import build_citations, format_answer_html
from docqa.rag.prompts import build_grounded_prompt

logger = structlog.get_logger()


class StreamState(str, enum.Enum):
    STARTED = "started"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = (StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED)


@dataclass(frozen=True)
class CitationsEvent:
    citations: List[Citation]

    def to_payload(self) -> Dict[str, Any]:
        return {"type": "citations", "sources": [c.to_dict() for c in self.citations]}


@dataclass(frozen=True)
class TokenEvent:
    text: str

    def to_payload(self) -> Dict[str, Any]:
        return {"type": "token", "content": self.text}


@dataclass(frozen=True)
class CompletionEvent:
    display_text: str
    raw_text: str

    def to_payload(self) -> Dict[str, Any]:
        return {"type": "completion", "content": self.display_text, "raw": self.raw_text}


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    error_type: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {"type": "error", "error": self.message, "error_type": self.error_type}


@dataclass(frozen=True)
class StreamDone:
    """End-of-stream marker after a completion or an error."""


StreamEvent = Union[CitationsEvent, TokenEvent, CompletionEvent, ErrorEvent, StreamDone]


class AnswerStream:
    """Async iterator over the events of one streamed answer.

    Use as an async context manager so an abandoned stream is closed:

        async with orchestrator.open_stream(query, ranked) as stream:
            async for event in stream:
                ...
    """

    def __init__(
        self,
        generator: Generator,
        query: str,
        prompt: str,
        citations: List[Citation],
        strict: bool,
    ):
        self.query = query
        self.citations = citations
        self.strict = strict
        self.state = StreamState.STARTED
        self.answer: Optional[Answer] = None

        self._generator = generator
        self._prompt = prompt
        self._events = self._run()

    def __aiter__(self) -> "AnswerStream":
        return self

    async def __anext__(self) -> StreamEvent:
        return await self._events.__anext__()

    async def __aenter__(self) -> "AnswerStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop the stream. A stream not yet finished becomes CANCELLED."""
        if self.state not in TERMINAL_STATES:
            self._mark_cancelled()
        await self._events.aclose()

    def _mark_cancelled(self) -> None:
        if self.state not in TERMINAL_STATES:
            self.state = StreamState.CANCELLED
            logger.info("answer_stream_cancelled", query_length=len(self.query))

    async def _run(self) -> AsyncIterator[StreamEvent]:
        yield CitationsEvent(self.citations)

        tokens = self._generator.generate_stream(self._prompt)
        self.state = StreamState.STREAMING
        parts: List[str] = []

        try:
            async for token in tokens:
                parts.append(token)
                yield TokenEvent(token)

        except (asyncio.CancelledError, GeneratorExit):
            self._mark_cancelled()
            raise

        except DocQAError as e:
            self.state = StreamState.FAILED
            logger.error("answer_stream_failed", tokens_received=len(parts), **e.log_context())
            yield ErrorEvent(message=e.message, error_type=type(e).__name__)
            yield StreamDone()
            return

        except Exception as e:
            self.state = StreamState.FAILED
            logger.exception("answer_stream_crashed", tokens_received=len(parts), error=str(e))
            yield ErrorEvent(message=f"Generation failed: {e}", error_type=type(e).__name__)
            yield StreamDone()
            return

        finally:
            aclose = getattr(tokens, "aclose", None)
            if aclose is not None:
                await aclose()

        raw_text = "".join(parts)
        display_text = format_answer_html(raw_text)

        self.answer = Answer(
            display_text=display_text,
            raw_text=raw_text,
            citations=self.citations,
            strict=self.strict,
        )
        self.state = StreamState.COMPLETED

        logger.info(
            "answer_stream_completed",
            tokens=len(parts),
            response_length=len(raw_text),
        )

        yield CompletionEvent(display_text=display_text, raw_text=raw_text)
        yield StreamDone()


class GenerationOrchestrator:
    """Turns ranked fragments into a grounded answer."""

    def __init__(self, generator: Generator):
        self.generator = generator

    async def answer(
        self,
        query: str,
        ranked: Sequence[RankedFragment],
        strict: bool = True,
    ) -> Answer:
        """Generate a complete answer.

        Raises:
            GenerationUnavailable: If generation fails or times out
        """
        prompt = build_grounded_prompt(query, ranked, strict=strict)

        logger.info(
            "generation_started",
            mode="complete",
            fragments=len(ranked),
            prompt_length=len(prompt),
            strict=strict,
        )

        raw_text = await self.generator.generate(prompt)

        answer = Answer(
            display_text=format_answer_html(raw_text),
            raw_text=raw_text,
            citations=build_citations(ranked),
            strict=strict,
        )

        logger.info("generation_completed", mode="complete", response_length=len(raw_text))
        return answer

    def open_stream(
        self,
        query: str,
        ranked: Sequence[RankedFragment],
        strict: bool = True,
    ) -> AnswerStream:
        """Open a streamed answer. Nothing is generated until iteration starts."""
        prompt = build_grounded_prompt(query, ranked, strict=strict)

        logger.info(
            "generation_started",
            mode="stream",
            fragments=len(ranked),
            prompt_length=len(prompt),
            strict=strict,
        )

        return AnswerStream(
            generator=self.generator,
            query=query,
            prompt=prompt,
            citations=build_citations(ranked),
            strict=strict,
        )
