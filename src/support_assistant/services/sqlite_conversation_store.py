"""Conversation history persisted in SQLite.

Keeps conversations in a dedicated database file so the knowledge base can
be reset independently.  Blocking sqlite calls run in a worker thread and
are serialized on a single connection.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from support_assistant.application.exceptions import ConversationStoreError
from support_assistant.domain.models import ChatMessage, MessageMetadata
from support_assistant.domain.protocols import ConversationPredicate

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK(role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    user_id TEXT,
    metadata TEXT,
    created_at DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation_id ON messages(conversation_id);
CREATE INDEX IF NOT EXISTS idx_messages_user_id ON messages(user_id);
"""


def _utcnow() -> str:
    return datetime.now(UTC).isoformat()


class SqliteConversationStore:
    """Conversation store backed by a SQLite file."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None
        self._db_lock = threading.Lock()

    def connect(self) -> None:
        """Open (or create) the database and ensure the schema exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self.conn.executescript(_SCHEMA_SQL)
        self.conn.commit()
        logger.info("Conversation DB ready at {}", self.db_path)

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    async def _run(self, fn, *args):
        def _locked():
            with self._db_lock:
                if self.conn is None:
                    raise ConversationStoreError("Conversation store is not connected")
                return fn(*args)

        try:
            return await asyncio.to_thread(_locked)
        except sqlite3.Error as exc:
            logger.error("Conversation store query failed: {}", exc)
            raise ConversationStoreError(f"Conversation store failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def append(self, conversation_id: str, message: ChatMessage) -> None:
        await self._run(self._insert_messages, conversation_id, [message])

    async def append_exchange(
        self,
        conversation_id: str,
        user_message: ChatMessage,
        assistant_message: ChatMessage,
    ) -> None:
        """Append a user message and its reply in one transaction."""
        await self._run(self._insert_messages, conversation_id, [user_message, assistant_message])

    async def clear(self, conversation_id: str) -> bool:
        existed = await self._run(self._delete_conversation, conversation_id)
        if existed:
            logger.info("Cleared conversation {}", conversation_id)
        return existed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def history(self, conversation_id: str) -> list[ChatMessage]:
        return await self._run(self._select_messages, conversation_id)

    async def list_conversations(self, predicate: ConversationPredicate) -> list[str]:
        conversations = await self.snapshot()
        return [cid for cid, messages in conversations.items() if predicate(cid, messages)]

    async def list_user_conversations(self, user_id: str) -> list[str]:
        return await self._run(self._select_user_conversations, user_id)

    async def snapshot(self) -> dict[str, list[ChatMessage]]:
        return await self._run(self._select_all)

    # ------------------------------------------------------------------
    # Blocking helpers (run in worker thread, under _db_lock)
    # ------------------------------------------------------------------

    def _insert_messages(self, conversation_id: str, messages: list[ChatMessage]) -> None:
        assert self.conn
        now = _utcnow()
        with self.conn:
            self.conn.execute(
                "INSERT INTO conversations (id, created_at, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET updated_at = excluded.updated_at",
                (conversation_id, now, now),
            )
            self.conn.executemany(
                "INSERT INTO messages (id, conversation_id, role, content, user_id, metadata, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        m.id,
                        conversation_id,
                        m.role,
                        m.content,
                        m.user_id,
                        m.metadata.model_dump_json() if m.metadata else None,
                        m.timestamp.isoformat(),
                    )
                    for m in messages
                ],
            )

    def _delete_conversation(self, conversation_id: str) -> bool:
        assert self.conn
        with self.conn:
            self.conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            cursor = self.conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        return cursor.rowcount > 0

    def _select_messages(self, conversation_id: str) -> list[ChatMessage]:
        assert self.conn
        rows = self.conn.execute(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY seq ASC",
            (conversation_id,),
        ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def _select_user_conversations(self, user_id: str) -> list[str]:
        assert self.conn
        rows = self.conn.execute(
            """
            SELECT conversation_id, MIN(seq) AS first_seq
            FROM messages
            WHERE role = 'user' AND user_id = ?
            GROUP BY conversation_id
            ORDER BY first_seq
            """,
            (user_id,),
        ).fetchall()
        return [row["conversation_id"] for row in rows]

    def _select_all(self) -> dict[str, list[ChatMessage]]:
        assert self.conn
        conversations: dict[str, list[ChatMessage]] = {
            row["id"]: []
            for row in self.conn.execute("SELECT id FROM conversations ORDER BY created_at").fetchall()
        }
        for row in self.conn.execute("SELECT * FROM messages ORDER BY seq ASC").fetchall():
            conversations.setdefault(row["conversation_id"], []).append(self._row_to_message(row))
        return conversations

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> ChatMessage:
        metadata = None
        if row["metadata"]:
            try:
                metadata = MessageMetadata.model_validate_json(row["metadata"])
            except ValidationError:
                logger.warning("Ignoring unreadable metadata on message {}", row["id"])
        return ChatMessage(
            id=row["id"],
            content=row["content"],
            role=row["role"],
            timestamp=datetime.fromisoformat(row["created_at"]),
            user_id=row["user_id"],
            metadata=metadata,
        )
