"""Answer history for completed queries."""
from docqa.memory.history import AnswerHistory

__all__ = ["AnswerHistory"]
