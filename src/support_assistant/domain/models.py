"""Domain entities and value objects.

These are the core data structures of the support assistant domain,
independent of any infrastructure or framework concerns.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant"]
Priority = Literal["low", "medium", "high"]
KnowledgeCategory = Literal["billing", "technical", "general", "shipping", "returns"]

KNOWLEDGE_CATEGORIES: tuple[str, ...] = ("billing", "technical", "general", "shipping", "returns")
PRIORITIES: tuple[str, ...] = ("low", "medium", "high")

# Catch-all bucket; classification into it does not narrow retrieval.
GENERAL_CATEGORY = "general"


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Conversation entities
# ---------------------------------------------------------------------------


class MessageMetadata(BaseModel):
    """Pipeline outcome attached to an assistant message."""

    model_config = ConfigDict(frozen=True)

    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    sources: list[str] = Field(default_factory=list)
    category: str | None = None
    priority: Priority | None = None
    escalated: bool = False


class ChatMessage(BaseModel):
    """A single message in a conversation. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    role: Role
    timestamp: datetime = Field(default_factory=_utcnow)
    user_id: str | None = None
    metadata: MessageMetadata | None = None


class ConversationStats(BaseModel):
    total_conversations: int
    total_messages: int
    average_messages_per_conversation: float
    escalation_rate: float


# ---------------------------------------------------------------------------
# Knowledge base
# ---------------------------------------------------------------------------


class KnowledgeBaseEntry(BaseModel):
    """A knowledge-base article, optionally carrying search scores."""

    id: str
    title: str
    content: str
    category: KnowledgeCategory = "general"
    priority: Priority = "medium"
    product_type: str | None = None
    tags: list[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=_utcnow)
    chunk_content: str | None = None
    relevance: float = Field(default=0.0, ge=0.0, le=1.0)
    distance: float = Field(default=1.0, ge=0.0)


class KnowledgeBaseEntryCreate(BaseModel):
    """Fields required to add an entry to the knowledge base."""

    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    category: KnowledgeCategory
    priority: Priority
    product_type: str | None = None
    tags: list[str] = Field(default_factory=list)


class KnowledgeBaseEntryUpdate(BaseModel):
    """Partial update; unset fields are left untouched."""

    title: str | None = Field(default=None, min_length=1)
    content: str | None = Field(default=None, min_length=1)
    category: KnowledgeCategory | None = None
    priority: Priority | None = None
    product_type: str | None = None
    tags: list[str] | None = None


class SearchFilters(BaseModel):
    """Metadata constraints and bounds for a knowledge-base search."""

    category: str | None = None
    priority: str | None = None
    product_type: str | None = None
    limit: int = Field(default=10, ge=1)
    relevance_threshold: float = Field(default=0.7, ge=0.0, le=1.0)


@dataclass
class RawKnowledgeHit:
    """An un-normalized hit as produced by the knowledge engine."""

    id: str | None = None
    chunk_id: str | None = None
    chunk_content: str | None = None
    metadata: Any = None
    relevance: Any = None
    distance: Any = None


# ---------------------------------------------------------------------------
# AI collaborator outputs
# ---------------------------------------------------------------------------


class ClassifiedEntity(BaseModel):
    type: str = Field(description="Entity type, e.g. 'order_id' or 'product'")
    value: str = Field(description="Entity value as it appears in the message")
    confidence: float = Field(ge=0.0, le=1.0)


class QueryClassification(BaseModel):
    """Categorization of a raw customer message."""

    category: str = Field(
        description=(
            "Support topic: billing, technical, general, shipping, returns, "
            "refund or complaint"
        )
    )
    intent: str = Field(description="Short snake_case description of what the customer wants")
    confidence: float = Field(ge=0.0, le=1.0)
    entities: list[ClassifiedEntity] = Field(default_factory=list)


class ResponseGeneration(BaseModel):
    """Answer drafted by the response generator."""

    response: str = Field(description="The reply shown to the customer")
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = Field(default="", description="Why this answer was given")
    requires_escalation: bool = Field(
        default=False,
        description="True when a human agent must take over",
    )


# ---------------------------------------------------------------------------
# Pipeline request / response
# ---------------------------------------------------------------------------


class ChatContext(BaseModel):
    previous_messages: list[ChatMessage] = Field(default_factory=list)
    user_preferences: dict[str, Any] = Field(default_factory=dict)


class ChatRequest(BaseModel):
    """An inbound customer message."""

    message: str = Field(min_length=1, description="The customer's message")
    conversation_id: str | None = Field(
        default=None,
        description="Existing conversation ID to continue. None starts a new conversation.",
    )
    user_id: str | None = None
    context: ChatContext | None = None


class ChatResponseMetadata(BaseModel):
    processing_time: int = Field(description="Wall-clock milliseconds spent on the request")
    category: str
    priority: Priority


class ChatResponse(BaseModel):
    """Outward result of processing one message."""

    message: str
    confidence: float = Field(ge=0.0, le=1.0)
    sources: list[KnowledgeBaseEntry] = Field(default_factory=list)
    suggested_actions: list[str] = Field(default_factory=list)
    requires_escalation: bool
    conversation_id: str
    metadata: ChatResponseMetadata
