"""Chat use case — the message-processing pipeline.

This module contains all business logic for handling one customer message:
classification, knowledge-base retrieval, answer generation, escalation and
priority decisions, and conversation bookkeeping.  It has **no dependency on
FastAPI** and can be invoked from any transport layer (HTTP, CLI, ...).
"""

from __future__ import annotations

import time
import uuid
from datetime import UTC, datetime

from loguru import logger

from support_assistant.application.exceptions import MessageProcessingError
from support_assistant.domain.escalation import EscalationPolicy
from support_assistant.domain.models import (
    GENERAL_CATEGORY,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatResponseMetadata,
    MessageMetadata,
    SearchFilters,
)
from support_assistant.domain.priority import PriorityResolver
from support_assistant.domain.protocols import (
    IConversationStore,
    IKnowledgeRetriever,
    IQueryClassifier,
    IResponseGenerator,
)


def generate_conversation_id() -> str:
    """Return a new id: epoch-millisecond prefix plus a random suffix."""
    return f"conv_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def generate_message_id(role: str) -> str:
    """Return a unique id that sorts in generation order."""
    return f"msg_{time.time_ns()}_{role}_{uuid.uuid4().hex[:6]}"


class ChatOrchestrator:
    """Sequences the pipeline collaborators for each incoming message.

    Parameters
    ----------
    classifier:
        Categorizes the raw message.
    retriever:
        Filtered knowledge-base search.
    generator:
        Drafts the answer from the message, retrieved entries and classification.
    store:
        Conversation history; the only shared mutable state.
    escalation_policy:
        Decides on human handoff and suggests next steps.
    priority_resolver:
        Derives message priority from classification and escalation.
    search_limit / relevance_threshold:
        Bounds for the knowledge-base lookup made for each message.
    """

    def __init__(
        self,
        classifier: IQueryClassifier,
        retriever: IKnowledgeRetriever,
        generator: IResponseGenerator,
        store: IConversationStore,
        escalation_policy: EscalationPolicy | None = None,
        priority_resolver: PriorityResolver | None = None,
        *,
        search_limit: int = 5,
        relevance_threshold: float = 0.7,
    ) -> None:
        self.classifier = classifier
        self.retriever = retriever
        self.generator = generator
        self.store = store
        self.escalation_policy = escalation_policy or EscalationPolicy()
        self.priority_resolver = priority_resolver or PriorityResolver()
        self.search_limit = search_limit
        self.relevance_threshold = relevance_threshold

    async def process_message(self, request: ChatRequest) -> ChatResponse:
        """Run the full pipeline for one message.

        Nothing is written to the conversation store unless every step
        succeeds.

        Raises:
            MessageProcessingError: If any collaborator or the store fails.
                The original exception is chained as ``__cause__``.
        """
        t0 = time.perf_counter()
        conversation_id = request.conversation_id or generate_conversation_id()

        try:
            classification = await self.classifier.classify(request.message)

            filters = SearchFilters(
                category=(
                    classification.category
                    if classification.category != GENERAL_CATEGORY
                    else None
                ),
                limit=self.search_limit,
                relevance_threshold=self.relevance_threshold,
            )
            entries = await self.retriever.search(request.message, filters)

            generation = await self.generator.generate(request.message, entries, classification)

            escalated = self.escalation_policy.should_escalate(
                request.message, classification, generation
            )
            actions = self.escalation_policy.suggested_actions(
                classification, generation, escalated
            )
            priority = self.priority_resolver.resolve(classification, escalated)

            response = ChatResponse(
                message=generation.response,
                confidence=generation.confidence,
                sources=entries,
                suggested_actions=actions,
                requires_escalation=escalated,
                conversation_id=conversation_id,
                metadata=ChatResponseMetadata(
                    processing_time=int((time.perf_counter() - t0) * 1000),
                    category=classification.category,
                    priority=priority,
                ),
            )

            user_message = ChatMessage(
                id=generate_message_id("user"),
                content=request.message,
                role="user",
                timestamp=datetime.now(UTC),
                user_id=request.user_id,
            )
            assistant_message = ChatMessage(
                id=generate_message_id("assistant"),
                content=response.message,
                role="assistant",
                timestamp=datetime.now(UTC),
                metadata=MessageMetadata(
                    confidence=response.confidence,
                    sources=[entry.title for entry in entries],
                    category=classification.category,
                    priority=priority,
                    escalated=escalated,
                ),
            )
            await self.store.append_exchange(conversation_id, user_message, assistant_message)

        except Exception as exc:
            logger.opt(exception=exc).error(
                "Chat processing failed | conversation={}", conversation_id
            )
            raise MessageProcessingError(f"Failed to process message: {exc}") from exc

        logger.info(
            "Message processed | conversation={} | category={} | priority={} | "
            "sources={} | escalated={} | latency={}ms",
            conversation_id,
            classification.category,
            priority,
            len(entries),
            escalated,
            response.metadata.processing_time,
        )
        return response
