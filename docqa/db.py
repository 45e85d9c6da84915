"""SQLite persistence for docqa.

Stores:
- Fragment rows (text, embedding, location) keyed by fragment id
- Index settings such as the embedding dimension
- History of completed answers

Every helper opens its own connection so it can run in a worker thread.
"""
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import structlog

logger = structlog.get_logger()


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_database(db_path: Path) -> None:
    """Initialize the database schema.

    Creates tables if they don't exist:
    - fragments: retrievable text units with embeddings
    - index_metadata: key/value settings for the vector index
    - answers: completed answers
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("PRAGMA journal_mode = WAL")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS fragments (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                source_id TEXT NOT NULL,
                text TEXT NOT NULL CHECK (length(text) > 0),
                embedding_json TEXT NOT NULL,
                page INTEGER,
                char_start INTEGER,
                char_end INTEGER,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_fragments_source_id
            ON fragments(source_id)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS index_metadata (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS answers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                query TEXT NOT NULL,
                raw_answer TEXT NOT NULL,
                display_answer TEXT NOT NULL,
                sources_json TEXT,
                strict INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        conn.commit()
        logger.info("database_initialized", db_path=str(db_path))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


def insert_fragments(
    db_path: Path,
    rows: Sequence[Dict[str, Any]],
    settings: Optional[Dict[str, str]] = None,
) -> int:
    """Insert or replace fragment rows in a single transaction.

    Either every row (and every index setting) is committed or none is.

    Args:
        rows: Dicts with id, source_id, text, embedding, page, char_start,
            char_end, created_at
        settings: index_metadata entries written in the same transaction

    Returns:
        Number of rows written
    """
    conn = get_connection(db_path)

    try:
        with conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO fragments (
                    id, source_id, text, embedding_json,
                    page, char_start, char_end, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        row["id"],
                        row["source_id"],
                        row["text"],
                        json.dumps(list(row["embedding"])),
                        row.get("page"),
                        row.get("char_start"),
                        row.get("char_end"),
                        row["created_at"],
                    )
                    for row in rows
                ],
            )
            if settings:
                conn.executemany(
                    "INSERT OR REPLACE INTO index_metadata (key, value) VALUES (?, ?)",
                    list(settings.items()),
                )
        return len(rows)

    except sqlite3.Error as e:
        logger.error("fragments_insert_failed", error=str(e), count=len(rows))
        raise
    finally:
        conn.close()


def load_fragments(db_path: Path) -> List[Dict[str, Any]]:
    """Load every fragment row in insertion order."""
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            SELECT
                seq, id, source_id, text, embedding_json,
                page, char_start, char_end, created_at
            FROM fragments
            ORDER BY seq
        """)

        fragments = []
        for row in cursor.fetchall():
            fragment = dict(row)
            fragment["embedding"] = json.loads(fragment.pop("embedding_json"))
            fragments.append(fragment)

        return fragments

    except sqlite3.Error as e:
        logger.error("fragments_load_failed", error=str(e))
        raise
    finally:
        conn.close()


def delete_fragments_by_source(db_path: Path, source_id: str) -> int:
    """Delete all fragments of a source.

    Returns:
        Number of fragments deleted
    """
    conn = get_connection(db_path)

    try:
        with conn:
            cursor = conn.execute("DELETE FROM fragments WHERE source_id = ?", (source_id,))
        count = cursor.rowcount
        logger.info("fragments_deleted", source_id=source_id, count=count)
        return count

    except sqlite3.Error as e:
        logger.error("fragments_delete_failed", error=str(e), source_id=source_id)
        raise
    finally:
        conn.close()


def get_index_setting(db_path: Path, key: str) -> Optional[str]:
    conn = get_connection(db_path)
    try:
        row = conn.execute("SELECT value FROM index_metadata WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None
    finally:
        conn.close()


def insert_answer(
    db_path: Path,
    query: str,
    raw_answer: str,
    display_answer: str,
    sources: Optional[List[Dict[str, Any]]],
    strict: bool,
) -> int:
    """Record a completed answer.

    Returns:
        ID of the inserted answer row
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT INTO answers (
                query, raw_answer, display_answer, sources_json, strict, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
        """, (
            query,
            raw_answer,
            display_answer,
            json.dumps(sources) if sources else None,
            int(strict),
            utc_now(),
        ))

        conn.commit()
        return cursor.lastrowid

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("answer_insert_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_recent_answers(db_path: Path, limit: int = 50) -> List[Dict[str, Any]]:
    """Most recent answers first."""
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            SELECT id, query, raw_answer, display_answer, sources_json, strict, created_at
            FROM answers
            ORDER BY id DESC
            LIMIT ?
        """, (limit,))

        answers = []
        for row in cursor.fetchall():
            answer = dict(row)
            sources_json = answer.pop("sources_json")
            answer["sources"] = json.loads(sources_json) if sources_json else []
            answer["strict"] = bool(answer["strict"])
            answers.append(answer)

        return answers

    finally:
        conn.close()


def clear_answers(db_path: Path) -> int:
    """Delete the whole answer history.

    Returns:
        Number of answers deleted
    """
    conn = get_connection(db_path)

    try:
        with conn:
            cursor = conn.execute("DELETE FROM answers")
        logger.info("answers_cleared", count=cursor.rowcount)
        return cursor.rowcount
    finally:
        conn.close()
