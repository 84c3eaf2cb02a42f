"""Tests for the conversation stores (in-memory and SQLite)."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

import pytest

from support_assistant.application.exceptions import ConversationStoreError
from support_assistant.domain.models import ChatMessage, MessageMetadata
from support_assistant.domain.protocols import IConversationStore
from support_assistant.services.conversation_store import (
    InMemoryConversationStore,
    has_user_message_from,
)
from support_assistant.services.sqlite_conversation_store import SqliteConversationStore


def _msg(msg_id: str, role: str = "user", user_id: str | None = None, **metadata) -> ChatMessage:
    return ChatMessage(
        id=msg_id,
        content=f"content of {msg_id}",
        role=role,
        timestamp=datetime(2025, 6, 24, 10, 0, tzinfo=UTC),
        user_id=user_id,
        metadata=MessageMetadata(**metadata) if metadata else None,
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path: Path):
    """Each contract test runs against both implementations."""
    if request.param == "memory":
        yield InMemoryConversationStore()
        return
    svc = SqliteConversationStore(db_path=tmp_path / "conversations.sqlite")
    svc.connect()
    yield svc
    svc.close()


class TestContract:
    def test_implements_protocol(self, store):
        assert isinstance(store, IConversationStore)

    async def test_unknown_conversation_has_empty_history(self, store):
        assert await store.history("missing") == []

    async def test_append_preserves_order(self, store):
        await store.append("c1", _msg("m1"))
        await store.append("c1", _msg("m2", role="assistant"))
        await store.append("c1", _msg("m3"))

        history = await store.history("c1")
        assert [m.id for m in history] == ["m1", "m2", "m3"]

    async def test_append_exchange_adds_adjacent_pair(self, store):
        await store.append_exchange("c1", _msg("u1", user_id="alice"), _msg("a1", role="assistant"))
        await store.append_exchange("c1", _msg("u2", user_id="alice"), _msg("a2", role="assistant"))

        history = await store.history("c1")
        assert [(m.id, m.role) for m in history] == [
            ("u1", "user"),
            ("a1", "assistant"),
            ("u2", "user"),
            ("a2", "assistant"),
        ]

    async def test_metadata_round_trips(self, store):
        await store.append(
            "c1",
            _msg(
                "a1",
                role="assistant",
                confidence=0.8,
                sources=["Password Reset Guide"],
                category="technical",
                priority="medium",
                escalated=True,
            ),
        )
        [message] = await store.history("c1")
        assert message.metadata is not None
        assert message.metadata.sources == ["Password Reset Guide"]
        assert message.metadata.priority == "medium"
        assert message.metadata.escalated is True

    async def test_clear_existing(self, store):
        await store.append("c1", _msg("m1"))
        assert await store.clear("c1") is True
        assert await store.history("c1") == []

    async def test_clear_unknown_returns_false(self, store):
        assert await store.clear("missing") is False

    async def test_clear_leaves_other_conversations(self, store):
        await store.append("c1", _msg("m1"))
        await store.append("c2", _msg("m2"))
        await store.clear("c1")
        assert [m.id for m in await store.history("c2")] == ["m2"]

    async def test_list_user_conversations(self, store):
        await store.append_exchange("c1", _msg("u1", user_id="alice"), _msg("a1", role="assistant"))
        await store.append_exchange("c2", _msg("u2", user_id="bob"), _msg("a2", role="assistant"))
        await store.append_exchange("c3", _msg("u3", user_id="alice"), _msg("a3", role="assistant"))
        await store.append("c4", _msg("u4"))

        assert await store.list_user_conversations("alice") == ["c1", "c3"]
        assert await store.list_user_conversations("bob") == ["c2"]
        assert await store.list_user_conversations("nobody") == []

    async def test_list_conversations_with_predicate(self, store):
        await store.append("c1", _msg("m1"))
        await store.append("c2", _msg("m2"))
        await store.append("c2", _msg("m3"))

        result = await store.list_conversations(lambda _cid, messages: len(messages) > 1)
        assert result == ["c2"]

    async def test_snapshot(self, store):
        await store.append("c1", _msg("m1"))
        await store.append_exchange("c2", _msg("u1"), _msg("a1", role="assistant"))

        snapshot = await store.snapshot()
        assert set(snapshot) == {"c1", "c2"}
        assert [m.id for m in snapshot["c2"]] == ["u1", "a1"]


class TestInMemoryStore:
    async def test_history_is_a_copy(self, memory_store: InMemoryConversationStore):
        await memory_store.append("c1", _msg("m1"))
        history = await memory_store.history("c1")
        history.append(_msg("intruder"))
        assert len(await memory_store.history("c1")) == 1

    async def test_concurrent_exchanges_stay_paired(self, memory_store: InMemoryConversationStore):
        async def exchange(i: int) -> None:
            await memory_store.append_exchange(
                "c1", _msg(f"u{i}"), _msg(f"a{i}", role="assistant")
            )

        await asyncio.gather(*(exchange(i) for i in range(20)))

        history = await memory_store.history("c1")
        assert len(history) == 40
        for user, assistant in zip(history[::2], history[1::2]):
            assert user.role == "user"
            assert assistant.role == "assistant"
            assert user.id[1:] == assistant.id[1:]

    async def test_clearing_unknown_ids_allocates_no_locks(
        self, memory_store: InMemoryConversationStore
    ):
        for i in range(1000):
            assert await memory_store.clear(f"never_{i}") is False
        assert memory_store._locks == {}

    async def test_clear_releases_lock(self, memory_store: InMemoryConversationStore):
        await memory_store.append_exchange("c1", _msg("u1"), _msg("a1", role="assistant"))
        assert "c1" in memory_store._locks

        assert await memory_store.clear("c1") is True
        assert "c1" not in memory_store._locks

        await memory_store.append("c1", _msg("u2"))
        assert [m.id for m in await memory_store.history("c1")] == ["u2"]

    def test_has_user_message_from(self):
        predicate = has_user_message_from("alice")
        assert predicate("c1", [_msg("m1", user_id="alice")])
        assert not predicate("c1", [_msg("m1", role="assistant", user_id="alice")])
        assert not predicate("c1", [])


class TestSqliteStore:
    @pytest.fixture()
    def sqlite_store(self, tmp_path: Path):
        svc = SqliteConversationStore(db_path=tmp_path / "conversations.sqlite")
        svc.connect()
        yield svc
        svc.close()

    async def test_persists_across_connections(self, tmp_path: Path):
        db_path = tmp_path / "conversations.sqlite"
        first = SqliteConversationStore(db_path=db_path)
        first.connect()
        await first.append_exchange("c1", _msg("u1", user_id="alice"), _msg("a1", role="assistant"))
        first.close()

        second = SqliteConversationStore(db_path=db_path)
        second.connect()
        try:
            history = await second.history("c1")
        finally:
            second.close()
        assert [m.id for m in history] == ["u1", "a1"]
        assert history[0].user_id == "alice"

    async def test_unreadable_metadata_is_dropped(self, sqlite_store: SqliteConversationStore):
        await sqlite_store.append("c1", _msg("a1", role="assistant", confidence=0.5))
        sqlite_store.conn.execute("UPDATE messages SET metadata = '{\"confidence\": 7}'")
        sqlite_store.conn.commit()

        [message] = await sqlite_store.history("c1")
        assert message.metadata is None

    async def test_rejects_unknown_role(self, sqlite_store: SqliteConversationStore):
        with pytest.raises(sqlite3.IntegrityError):
            sqlite_store.conn.execute(
                "INSERT INTO messages (id, conversation_id, role, content, created_at) "
                "VALUES ('m1', 'c1', 'system', 'x', '2025-01-01')"
            )

    def test_creates_parent_directory(self, tmp_path: Path):
        svc = SqliteConversationStore(db_path=tmp_path / "nested" / "dir" / "chat.sqlite")
        svc.connect()
        svc.close()
        assert (tmp_path / "nested" / "dir" / "chat.sqlite").exists()

    async def test_closed_store_raises_store_error(self, sqlite_store: SqliteConversationStore):
        sqlite_store.close()
        with pytest.raises(ConversationStoreError, match="not connected"):
            await sqlite_store.history("c1")

    async def test_sqlite_errors_are_wrapped(self, sqlite_store: SqliteConversationStore):
        sqlite_store.conn.execute("DROP TABLE messages")
        with pytest.raises(ConversationStoreError, match="Conversation store failed") as excinfo:
            await sqlite_store.history("c1")
        assert isinstance(excinfo.value.__cause__, sqlite3.Error)
