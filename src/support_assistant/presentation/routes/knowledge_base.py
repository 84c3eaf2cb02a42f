"""Knowledge-base routes: search and article management."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Query, Request
from loguru import logger

from support_assistant.application.exceptions import KnowledgeBaseError, RetrievalError
from support_assistant.domain.models import (
    KnowledgeBaseEntry,
    KnowledgeBaseEntryCreate,
    KnowledgeBaseEntryUpdate,
    SearchFilters,
)
from support_assistant.presentation.schemas import (
    Envelope,
    MessageBody,
    SearchResults,
    error_response,
)
from support_assistant.services.knowledge_retriever import KnowledgeRetriever
from support_assistant.services.knowledge_store import SqliteKnowledgeStore

router = APIRouter(prefix="/api/kb", tags=["knowledge-base"])


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@router.get("/search", response_model=Envelope[SearchResults[KnowledgeBaseEntry]])
async def search_knowledge_base(
    raw_request: Request,
    q: str = Query(min_length=1, description="Search query"),
    category: str | None = None,
    priority: str | None = None,
    product_type: str | None = None,
    limit: int = Query(default=10, ge=1, le=100),
    relevance_threshold: float = Query(default=0.7, ge=0.0, le=1.0),
):
    """Semantic search with optional metadata filters."""
    retriever: KnowledgeRetriever = raw_request.app.state.retriever
    filters = SearchFilters(
        category=category,
        priority=priority,
        product_type=product_type,
        limit=limit,
        relevance_threshold=relevance_threshold,
    )

    try:
        results = await retriever.search(q, filters)
    except RetrievalError as exc:
        return error_response(500, "Failed to search knowledge base", exc)

    return Envelope[SearchResults[KnowledgeBaseEntry]](
        data=SearchResults[KnowledgeBaseEntry](results=results, total=len(results))
    )


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


@router.post("/entries", status_code=201, response_model=Envelope[KnowledgeBaseEntry])
async def add_entry(entry: KnowledgeBaseEntryCreate, raw_request: Request):
    kb: SqliteKnowledgeStore = raw_request.app.state.knowledge_store
    try:
        created = await kb.add_entry(entry)
    except KnowledgeBaseError as exc:
        return error_response(500, "Failed to add knowledge base entry", exc)
    return Envelope[KnowledgeBaseEntry](data=created)


@router.put("/entries/{entry_id}", response_model=Envelope[KnowledgeBaseEntry])
async def update_entry(entry_id: str, updates: KnowledgeBaseEntryUpdate, raw_request: Request):
    kb: SqliteKnowledgeStore = raw_request.app.state.knowledge_store
    try:
        updated = await kb.update_entry(entry_id, updates)
        entry = await kb.get_entry(entry_id) if updated else None
    except KnowledgeBaseError as exc:
        return error_response(500, "Failed to update knowledge base entry", exc)

    if entry is None:
        return error_response(404, "Knowledge base entry not found")

    return Envelope[KnowledgeBaseEntry](data=entry)


@router.delete("/entries/{entry_id}", response_model=MessageBody)
async def delete_entry(entry_id: str, raw_request: Request):
    kb: SqliteKnowledgeStore = raw_request.app.state.knowledge_store
    try:
        deleted = await kb.delete_entry(entry_id)
    except KnowledgeBaseError as exc:
        return error_response(500, "Failed to delete knowledge base entry", exc)

    if not deleted:
        return error_response(404, "Knowledge base entry not found")

    logger.info("DELETE /api/kb/entries/{}", entry_id)
    return MessageBody(message="Knowledge base entry deleted successfully")


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@router.get("/categories", response_model=Envelope[list[str]])
async def get_categories(raw_request: Request):
    kb: SqliteKnowledgeStore = raw_request.app.state.knowledge_store
    try:
        categories = await kb.get_categories()
    except KnowledgeBaseError as exc:
        return error_response(500, "Failed to list categories", exc)
    return Envelope[list[str]](data=categories)


@router.get("/stats", response_model=Envelope[dict])
async def get_stats(raw_request: Request):
    kb: SqliteKnowledgeStore = raw_request.app.state.knowledge_store
    try:
        stats = await kb.get_stats()
    except KnowledgeBaseError as exc:
        return error_response(500, "Failed to load knowledge base stats", exc)
    return Envelope[dict](data=stats)


@router.get("/health")
async def health():
    return {
        "status": "healthy",
        "service": "knowledge-base",
        "timestamp": datetime.now(UTC).isoformat(),
    }
