"""Per-user long-term memory: a flat, owner-scoped list of (category, content) facts."""
from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional

from .db import Database, MemoryFact, utc_now
from .errors import InvalidInput, NotFoundOrForbidden

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "General"


def _row_to_fact(row: sqlite3.Row) -> MemoryFact:
    return MemoryFact(
        id=row["id"],
        user_id=row["user_id"],
        category=row["category"],
        content=row["content"],
        created_at=row["created_at"],
    )


class MemoryStore:
    """CRUD over ``user_memory``; every statement is filtered by owner.

    There is no update-in-place: a correction is an ``add`` followed by a
    ``remove`` of the stale fact.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def list(self, owner_id: int) -> List[MemoryFact]:
        """Facts for ``owner_id``, newest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT id, user_id, category, content, created_at
                FROM user_memory
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (owner_id,),
            ).fetchall()
        return [_row_to_fact(r) for r in rows]

    def add(self, owner_id: int, content: str, category: Optional[str] = None) -> MemoryFact:
        content = (content or "").strip()
        if not content:
            raise InvalidInput("memory content cannot be empty")
        category = (category or "").strip() or DEFAULT_CATEGORY

        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO user_memory (user_id, category, content, created_at)
                VALUES (?, ?, ?, ?)
                RETURNING id, user_id, category, content, created_at
                """,
                (owner_id, category, content, utc_now()),
            )
            row = cursor.fetchone()
        logger.debug("Stored memory fact %s for user %s", row["id"], owner_id)
        return _row_to_fact(row)

    def remove(self, owner_id: int, fact_id: int) -> None:
        """Delete one fact. Raises NotFoundOrForbidden if no row matches both id and owner."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM user_memory WHERE id = ? AND user_id = ?",
                (fact_id, owner_id),
            )
            removed = cursor.rowcount
        if removed == 0:
            raise NotFoundOrForbidden("Memory not found or unauthorized")

    def clear(self, owner_id: int) -> int:
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM user_memory WHERE user_id = ?", (owner_id,))
            return cursor.rowcount
