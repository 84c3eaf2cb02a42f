"""Domain service interfaces (ports).

These protocols define the contracts that infrastructure implementations
must satisfy.  The application layer depends on these abstractions,
not on concrete classes.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from support_assistant.domain.models import (
    ChatMessage,
    KnowledgeBaseEntry,
    QueryClassification,
    RawKnowledgeHit,
    ResponseGeneration,
    SearchFilters,
)

ConversationPredicate = Callable[[str, list[ChatMessage]], bool]

# ---------------------------------------------------------------------------
# AI collaborators
# ---------------------------------------------------------------------------


@runtime_checkable
class IQueryClassifier(Protocol):
    """Interface for message classification.

    Implementations: PydanticAIQueryClassifier.
    """

    async def classify(self, message: str) -> QueryClassification: ...


@runtime_checkable
class IResponseGenerator(Protocol):
    """Interface for answer generation.

    Implementations: PydanticAIResponseGenerator.
    """

    async def generate(
        self,
        message: str,
        entries: list[KnowledgeBaseEntry],
        classification: QueryClassification,
    ) -> ResponseGeneration: ...


# ---------------------------------------------------------------------------
# Knowledge base
# ---------------------------------------------------------------------------


@runtime_checkable
class IKnowledgeEngine(Protocol):
    """Interface for the underlying semantic-search engine.

    The engine applies the relevance threshold and metadata filters and
    returns raw hits; normalization is the retriever's job.

    Implementations: SqliteKnowledgeStore (sqlite-vec).
    """

    async def search(self, query: str, filters: SearchFilters) -> list[RawKnowledgeHit]: ...


@runtime_checkable
class IKnowledgeRetriever(Protocol):
    async def search(
        self, query: str, filters: SearchFilters | None = None
    ) -> list[KnowledgeBaseEntry]: ...


# ---------------------------------------------------------------------------
# Conversation history
# ---------------------------------------------------------------------------


@runtime_checkable
class IConversationStore(Protocol):
    """Interface for conversation history.

    Implementations: InMemoryConversationStore, SqliteConversationStore.
    """

    async def append(self, conversation_id: str, message: ChatMessage) -> None: ...

    async def append_exchange(
        self,
        conversation_id: str,
        user_message: ChatMessage,
        assistant_message: ChatMessage,
    ) -> None: ...

    async def history(self, conversation_id: str) -> list[ChatMessage]: ...

    async def clear(self, conversation_id: str) -> bool: ...

    async def list_conversations(self, predicate: ConversationPredicate) -> list[str]: ...

    async def list_user_conversations(self, user_id: str) -> list[str]: ...

    async def snapshot(self) -> dict[str, list[ChatMessage]]: ...
