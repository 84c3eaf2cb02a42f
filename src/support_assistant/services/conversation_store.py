"""In-process conversation history.

Conversations live for the lifetime of the process.  Every mutation of a
conversation runs under that conversation's ``asyncio.Lock`` so a user /
assistant exchange is always appended as an adjacent pair.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from support_assistant.domain.models import ChatMessage
from support_assistant.domain.protocols import ConversationPredicate


def has_user_message_from(user_id: str) -> ConversationPredicate:
    """Predicate matching conversations containing a message sent by *user_id*."""

    def _predicate(_conversation_id: str, messages: list[ChatMessage]) -> bool:
        return any(m.role == "user" and m.user_id == user_id for m in messages)

    return _predicate


class InMemoryConversationStore:
    """Conversation history kept in a plain dict."""

    def __init__(self) -> None:
        self._conversations: dict[str, list[ChatMessage]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def append(self, conversation_id: str, message: ChatMessage) -> None:
        async with self._lock_for(conversation_id):
            self._conversations.setdefault(conversation_id, []).append(message)

    async def append_exchange(
        self,
        conversation_id: str,
        user_message: ChatMessage,
        assistant_message: ChatMessage,
    ) -> None:
        """Append a user message immediately followed by its reply."""
        async with self._lock_for(conversation_id):
            messages = self._conversations.setdefault(conversation_id, [])
            messages.extend((user_message, assistant_message))

    async def clear(self, conversation_id: str) -> bool:
        """Delete a conversation. Returns True if it existed."""
        if conversation_id not in self._conversations:
            return False
        async with self._lock_for(conversation_id):
            existed = self._conversations.pop(conversation_id, None) is not None
            # no await between the pop and here, so no writer can hold a stale lock
            self._locks.pop(conversation_id, None)
        if existed:
            logger.info("Cleared conversation {}", conversation_id)
        return existed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def history(self, conversation_id: str) -> list[ChatMessage]:
        return list(self._conversations.get(conversation_id, ()))

    async def list_conversations(self, predicate: ConversationPredicate) -> list[str]:
        return [
            conversation_id
            for conversation_id, messages in list(self._conversations.items())
            if predicate(conversation_id, list(messages))
        ]

    async def list_user_conversations(self, user_id: str) -> list[str]:
        return await self.list_conversations(has_user_message_from(user_id))

    async def snapshot(self) -> dict[str, list[ChatMessage]]:
        """Return a point-in-time copy of every conversation."""
        return {cid: list(messages) for cid, messages in list(self._conversations.items())}
