"""History of completed answers.

Only answers that finished generating are recorded. The "no grounding"
answer and failed or cancelled streams never reach this store.
"""
import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Dict, List

import structlog

from docqa import config, db
from docqa.errors import StorageUnavailable
from docqa.models import Answer

logger = structlog.get_logger()


class AnswerHistory:
    """Persists completed answers in SQLite."""

    def __init__(self, db_path: Path = None):
        self.db_path = Path(db_path or config.DB_PATH)

    async def record(self, query: str, answer: Answer) -> int:
        """Store a completed answer.

        Returns:
            ID of the stored answer

        Raises:
            StorageUnavailable: If the row cannot be written
        """
        try:
            answer_id = await asyncio.to_thread(
                db.insert_answer,
                self.db_path,
                query,
                answer.raw_text,
                answer.display_text,
                [c.to_dict() for c in answer.citations],
                answer.strict,
            )
        except sqlite3.Error as e:
            raise StorageUnavailable(
                f"Failed to record answer: {e}", operation="record_answer", cause=e
            ) from e

        logger.info(
            "answer_recorded",
            answer_id=answer_id,
            sources=len(answer.citations),
            strict=answer.strict,
        )
        return answer_id

    async def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent answers first."""
        try:
            answers = await asyncio.to_thread(db.get_recent_answers, self.db_path, limit)
        except sqlite3.Error as e:
            raise StorageUnavailable(
                f"Failed to read answer history: {e}", operation="recent_answers", cause=e
            ) from e

        logger.info("answer_history_retrieved", count=len(answers))
        return answers

    async def clear(self) -> int:
        """Delete every recorded answer.

        Returns:
            Number of answers deleted
        """
        try:
            return await asyncio.to_thread(db.clear_answers, self.db_path)
        except sqlite3.Error as e:
            raise StorageUnavailable(
                f"Failed to clear answer history: {e}", operation="clear_answers", cause=e
            ) from e
