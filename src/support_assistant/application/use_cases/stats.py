"""Conversation statistics computed by a full scan of the store."""

from __future__ import annotations

from support_assistant.domain.models import ChatMessage, ConversationStats
from support_assistant.domain.protocols import IConversationStore


def _has_escalation(messages: list[ChatMessage]) -> bool:
    return any(
        m.role == "assistant" and m.metadata is not None and m.metadata.escalated
        for m in messages
    )


class StatsAggregator:
    """Reads the conversation store on demand; nothing is cached."""

    def __init__(self, store: IConversationStore) -> None:
        self.store = store

    async def stats(self) -> ConversationStats:
        conversations = await self.store.snapshot()

        total_conversations = len(conversations)
        total_messages = sum(len(messages) for messages in conversations.values())
        escalated = sum(1 for messages in conversations.values() if _has_escalation(messages))

        if total_conversations == 0:
            return ConversationStats(
                total_conversations=0,
                total_messages=0,
                average_messages_per_conversation=0,
                escalation_rate=0,
            )

        return ConversationStats(
            total_conversations=total_conversations,
            total_messages=total_messages,
            average_messages_per_conversation=round(total_messages / total_conversations, 2),
            escalation_rate=round(escalated / total_conversations, 2),
        )
