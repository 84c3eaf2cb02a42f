"""Knowledge-base retrieval: filtered semantic search plus result normalization."""

from __future__ import annotations

import json
import time
import uuid
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from support_assistant.application.exceptions import RetrievalError
from support_assistant.domain.models import (
    KNOWLEDGE_CATEGORIES,
    PRIORITIES,
    KnowledgeBaseEntry,
    RawKnowledgeHit,
    SearchFilters,
)
from support_assistant.domain.protocols import IKnowledgeEngine

TITLE_PREVIEW_CHARS = 50


class KnowledgeRetriever:
    """Runs filtered searches against a knowledge engine.

    The engine enforces the relevance threshold and metadata filters; this
    class turns whatever it returns into well-formed ``KnowledgeBaseEntry``
    objects, ordered by relevance and capped at the requested limit.
    """

    def __init__(self, engine: IKnowledgeEngine, default_limit: int = 10) -> None:
        self.engine = engine
        self.default_limit = default_limit

    async def search(
        self, query: str, filters: SearchFilters | None = None
    ) -> list[KnowledgeBaseEntry]:
        """Search the knowledge base.

        Args:
            query: Free-text customer query.
            filters: Optional metadata filters, limit and relevance floor.
                     Defaults to ``limit=default_limit`` and threshold 0.7.

        Returns:
            Entries ordered by descending relevance.

        Raises:
            RetrievalError: If the underlying engine fails.
        """
        filters = filters or SearchFilters(limit=self.default_limit)

        try:
            hits = await self.engine.search(query, filters)
        except Exception as exc:
            logger.error("Knowledge base search failed: {}", exc)
            raise RetrievalError(f"Failed to search knowledge base: {exc}") from exc

        entries = [self.normalize_hit(hit) for hit in hits]
        # stable sort keeps engine order on ties
        entries.sort(key=lambda e: e.relevance, reverse=True)
        entries = entries[: filters.limit]

        logger.debug(
            "KB search | category={} results={} threshold={}",
            filters.category,
            len(entries),
            filters.relevance_threshold,
        )
        return entries

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    @classmethod
    def normalize_hit(cls, hit: RawKnowledgeHit) -> KnowledgeBaseEntry:
        """Build an entry from a raw hit. Never raises on bad metadata."""
        metadata = cls._parse_metadata(hit.metadata)
        chunk = hit.chunk_content if isinstance(hit.chunk_content, str) else None

        content = _str_or_none(metadata.get("content")) or chunk or ""
        title = _str_or_none(metadata.get("title"))
        if not title:
            title = f"{chunk[:TITLE_PREVIEW_CHARS]}..." if chunk else "Untitled"

        category = metadata.get("category")
        priority = metadata.get("priority")

        return KnowledgeBaseEntry(
            id=str(hit.id or hit.chunk_id or _generated_id()),
            title=title,
            content=content,
            category=category if category in KNOWLEDGE_CATEGORIES else "general",
            priority=priority if priority in PRIORITIES else "medium",
            product_type=_str_or_none(metadata.get("product_type")),
            tags=cls._parse_tags(metadata.get("tags")),
            last_updated=_parse_timestamp(metadata.get("last_updated")),
            chunk_content=chunk,
            relevance=min(max(_float_or(hit.relevance, 0.0), 0.0), 1.0),
            distance=max(_float_or(hit.distance, 1.0), 0.0),
        )

    @staticmethod
    def _parse_metadata(raw: Any) -> dict:
        if isinstance(raw, dict):
            return raw
        if isinstance(raw, (str, bytes)):
            try:
                parsed = json.loads(raw)
            except (json.JSONDecodeError, TypeError, ValueError):
                return {}
            return parsed if isinstance(parsed, dict) else {}
        return {}

    @staticmethod
    def _parse_tags(raw: Any) -> list[str]:
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                return [t.strip() for t in raw.split(",") if t.strip()]
        if isinstance(raw, (list, tuple)):
            return [str(t) for t in raw if t is not None]
        return []


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _float_or(value: Any, default: float) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return default if result != result else result  # NaN


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(UTC)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.now(UTC)


def _generated_id() -> str:
    return f"kb_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
