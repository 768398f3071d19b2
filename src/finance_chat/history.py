"""Per-user conversation log: append-only, role-tagged, with bulk clear."""
from __future__ import annotations

import io
from typing import List

from .db import Database, Message, utc_now
from .errors import InvalidInput

ROLES = ("user", "assistant")


class ConversationLog:
    """Ordered message history keyed by owner id.

    Messages are never edited or deleted one by one; ``clear`` drops the
    whole log. Ordering is creation time, ties broken by insertion order.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def append(self, owner_id: int, role: str, content: str) -> Message:
        """Store ``content`` verbatim under ``role`` ("user" or "assistant")."""
        if role not in ROLES:
            raise InvalidInput(f"role must be one of {ROLES}, got {role!r}")
        if content is None:
            raise InvalidInput("content is required")

        created = utc_now()
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO messages (user_id, role, content, created_at) VALUES (?, ?, ?, ?)",
                (owner_id, role, content, created),
            )
            msg_id = cursor.lastrowid
        return Message(id=msg_id, user_id=owner_id, role=role, content=content, created_at=created)

    def list(self, owner_id: int) -> List[Message]:
        """Messages for ``owner_id``, oldest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT id, user_id, role, content, created_at
                FROM messages
                WHERE user_id = ?
                ORDER BY created_at ASC, id ASC
                """,
                (owner_id,),
            ).fetchall()
        return [
            Message(
                id=r["id"],
                user_id=r["user_id"],
                role=r["role"],
                content=r["content"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def clear(self, owner_id: int) -> int:
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM messages WHERE user_id = ?", (owner_id,))
            return cursor.rowcount

    def export_text(self, owner_id: int, limit_chars: int = 8000) -> str:
        """Human-readable transcript, truncated to ``limit_chars``."""
        buf = io.StringIO()
        for m in self.list(owner_id):
            text = m.content.strip()
            if text:
                buf.write(f"{m.role}: {text}\n")
        return buf.getvalue()[:limit_chars]
