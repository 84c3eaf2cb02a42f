"""Chat routes: message processing, history, stats and health endpoints."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Request
from loguru import logger

from support_assistant.application.exceptions import ConversationStoreError, MessageProcessingError
from support_assistant.application.use_cases.chat import ChatOrchestrator
from support_assistant.application.use_cases.stats import StatsAggregator
from support_assistant.domain.models import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ConversationStats,
)
from support_assistant.domain.protocols import IConversationStore
from support_assistant.presentation.schemas import Envelope, MessageBody, error_response

router = APIRouter(prefix="/api/chat", tags=["chat"])


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.post("/message", response_model=Envelope[ChatResponse])
async def process_message(request: ChatRequest, raw_request: Request):
    """Process a customer message and return the assistant's response."""
    uc: ChatOrchestrator = raw_request.app.state.orchestrator

    logger.info(
        "POST /api/chat/message | conversation={} user={} msg={}",
        request.conversation_id,
        request.user_id,
        request.message[:60],
    )

    try:
        response = await uc.process_message(request)
    except MessageProcessingError as exc:
        return error_response(500, "Internal server error", exc)

    return Envelope[ChatResponse](data=response)


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


@router.get(
    "/conversations/{conversation_id}/history",
    response_model=Envelope[list[ChatMessage]],
)
async def get_conversation_history(conversation_id: str, raw_request: Request):
    """Return all messages of a conversation in append order (empty if unknown)."""
    store: IConversationStore = raw_request.app.state.store
    try:
        messages = await store.history(conversation_id)
    except ConversationStoreError as exc:
        return error_response(500, "Failed to load conversation history", exc)
    return Envelope[list[ChatMessage]](data=messages)


@router.get("/users/{user_id}/conversations", response_model=Envelope[list[str]])
async def get_user_conversations(user_id: str, raw_request: Request):
    """Return ids of conversations where *user_id* sent at least one message."""
    store: IConversationStore = raw_request.app.state.store
    try:
        conversation_ids = await store.list_user_conversations(user_id)
    except ConversationStoreError as exc:
        return error_response(500, "Failed to load user conversations", exc)
    return Envelope[list[str]](data=conversation_ids)


@router.delete("/conversation/{conversation_id}", response_model=MessageBody)
async def clear_conversation(conversation_id: str, raw_request: Request):
    store: IConversationStore = raw_request.app.state.store
    try:
        cleared = await store.clear(conversation_id)
    except ConversationStoreError as exc:
        return error_response(500, "Failed to clear conversation", exc)
    if not cleared:
        return error_response(404, "Conversation not found")
    return MessageBody(message="Conversation cleared successfully")


# ---------------------------------------------------------------------------
# Stats & health
# ---------------------------------------------------------------------------


@router.get("/stats", response_model=Envelope[ConversationStats])
async def get_stats(raw_request: Request):
    aggregator: StatsAggregator = raw_request.app.state.stats
    try:
        stats = await aggregator.stats()
    except ConversationStoreError as exc:
        return error_response(500, "Failed to compute conversation stats", exc)
    return Envelope[ConversationStats](data=stats)


@router.get("/health")
async def health():
    return {
        "status": "healthy",
        "service": "chat",
        "timestamp": datetime.now(UTC).isoformat(),
    }
