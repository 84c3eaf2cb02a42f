"""Tests for the FastAPI presentation layer (routes, envelopes, status codes)."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from support_assistant.application.exceptions import (
    ConversationStoreError,
    KnowledgeBaseError,
    MessageProcessingError,
    RetrievalError,
)
from support_assistant.application.use_cases.stats import StatsAggregator
from support_assistant.domain.models import (
    ChatMessage,
    ChatResponse,
    ChatResponseMetadata,
    MessageMetadata,
)
from support_assistant.main import AppServices
from support_assistant.services.conversation_store import InMemoryConversationStore
from tests.factories import make_entry, make_settings


@pytest.fixture()
def services() -> AppServices:
    store = InMemoryConversationStore()
    return AppServices(
        orchestrator=AsyncMock(),
        store=store,
        retriever=AsyncMock(),
        knowledge_store=AsyncMock(),
        stats=StatsAggregator(store),
    )


@pytest.fixture()
def client(tmp_path: Path, services: AppServices):
    settings = make_settings(tmp_path)
    with (
        patch("support_assistant.main.get_settings", return_value=settings),
        patch("support_assistant.main.build_services", return_value=services),
    ):
        from support_assistant.main import app

        with TestClient(app) as c:
            yield c


def _chat_response(conversation_id: str = "conv_1") -> ChatResponse:
    return ChatResponse(
        message="Click Forgot Password.",
        confidence=0.8,
        sources=[make_entry()],
        suggested_actions=["Follow the troubleshooting steps above"],
        requires_escalation=False,
        conversation_id=conversation_id,
        metadata=ChatResponseMetadata(processing_time=12, category="technical", priority="medium"),
    )


class TestHealth:
    def test_root_health(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.parametrize(("path", "service"), [("/api/chat/health", "chat"), ("/api/kb/health", "knowledge-base")])
    def test_router_health(self, client: TestClient, path: str, service: str):
        body = client.get(path).json()
        assert body["status"] == "healthy"
        assert body["service"] == service
        assert body["timestamp"]


class TestMessageEndpoint:
    def test_rejects_missing_message(self, client: TestClient):
        assert client.post("/api/chat/message", json={}).status_code == 422

    def test_rejects_empty_message(self, client: TestClient):
        assert client.post("/api/chat/message", json={"message": ""}).status_code == 422

    def test_returns_envelope(self, client: TestClient, services: AppServices):
        services.orchestrator.process_message.return_value = _chat_response()

        response = client.post(
            "/api/chat/message",
            json={"message": "How do I reset my password?", "user_id": "user_1"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["message"] == "Click Forgot Password."
        assert body["data"]["conversation_id"] == "conv_1"
        assert body["data"]["metadata"]["priority"] == "medium"
        assert body["data"]["sources"][0]["title"] == "Password Reset Guide"

        request = services.orchestrator.process_message.call_args[0][0]
        assert request.message == "How do I reset my password?"
        assert request.user_id == "user_1"

    def test_processing_failure_returns_500(self, client: TestClient, services: AppServices):
        services.orchestrator.process_message.side_effect = MessageProcessingError(
            "Failed to process message: boom"
        )

        response = client.post("/api/chat/message", json={"message": "hello"})

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "Internal server error",
            "message": "Failed to process message: boom",
        }


class TestConversationEndpoints:
    @pytest.fixture()
    def seeded(self, services: AppServices):
        exchange = services.store.append_exchange(
            "conv_1",
            ChatMessage(id="u1", content="hi", role="user", user_id="alice"),
            ChatMessage(
                id="a1",
                content="hello",
                role="assistant",
                metadata=MessageMetadata(confidence=0.9, escalated=True),
            ),
        )
        asyncio.run(exchange)

    def test_history(self, client: TestClient, seeded):
        body = client.get("/api/chat/conversations/conv_1/history").json()
        assert body["success"] is True
        assert [m["id"] for m in body["data"]] == ["u1", "a1"]
        assert body["data"][1]["metadata"]["escalated"] is True

    def test_history_unknown_is_empty(self, client: TestClient):
        body = client.get("/api/chat/conversations/nope/history").json()
        assert body == {"success": True, "data": []}

    def test_user_conversations(self, client: TestClient, seeded):
        assert client.get("/api/chat/users/alice/conversations").json()["data"] == ["conv_1"]
        assert client.get("/api/chat/users/bob/conversations").json()["data"] == []

    def test_clear(self, client: TestClient, seeded):
        response = client.delete("/api/chat/conversation/conv_1")
        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Conversation cleared successfully"}
        assert client.get("/api/chat/conversations/conv_1/history").json()["data"] == []

    def test_clear_unknown_returns_404(self, client: TestClient):
        response = client.delete("/api/chat/conversation/nope")
        assert response.status_code == 404
        assert response.json()["error"] == "Conversation not found"

    def test_stats(self, client: TestClient, seeded):
        body = client.get("/api/chat/stats").json()
        assert body["data"] == {
            "total_conversations": 1,
            "total_messages": 2,
            "average_messages_per_conversation": 2.0,
            "escalation_rate": 1.0,
        }


class TestKnowledgeBaseEndpoints:
    def test_search(self, client: TestClient, services: AppServices):
        services.retriever.search.return_value = [make_entry()]

        response = client.get("/api/kb/search", params={"q": "password", "category": "technical", "limit": 3})

        assert response.status_code == 200
        body = response.json()
        assert body["data"]["total"] == 1
        assert body["data"]["results"][0]["id"] == "kb_1"

        query, filters = services.retriever.search.call_args[0]
        assert query == "password"
        assert filters.category == "technical"
        assert filters.limit == 3
        assert filters.relevance_threshold == 0.7

    def test_search_requires_query(self, client: TestClient):
        assert client.get("/api/kb/search").status_code == 422

    def test_search_failure(self, client: TestClient, services: AppServices):
        services.retriever.search.side_effect = RetrievalError("Failed to search knowledge base: down")
        response = client.get("/api/kb/search", params={"q": "password"})
        assert response.status_code == 500
        assert response.json()["error"] == "Failed to search knowledge base"

    def test_add_entry(self, client: TestClient, services: AppServices):
        services.knowledge_store.add_entry.return_value = make_entry("kb_new", "New Article")

        response = client.post(
            "/api/kb/entries",
            json={
                "title": "New Article",
                "content": "Body",
                "category": "technical",
                "priority": "low",
            },
        )

        assert response.status_code == 201
        assert response.json()["data"]["id"] == "kb_new"

    def test_add_entry_validates_category(self, client: TestClient):
        response = client.post(
            "/api/kb/entries",
            json={"title": "t", "content": "c", "category": "astrology", "priority": "low"},
        )
        assert response.status_code == 422

    def test_add_entry_failure(self, client: TestClient, services: AppServices):
        services.knowledge_store.add_entry.side_effect = KnowledgeBaseError("disk full")
        response = client.post(
            "/api/kb/entries",
            json={"title": "t", "content": "c", "category": "general", "priority": "low"},
        )
        assert response.status_code == 500

    def test_update_entry(self, client: TestClient, services: AppServices):
        services.knowledge_store.update_entry.return_value = True
        services.knowledge_store.get_entry.return_value = make_entry(title="Renamed")

        response = client.put("/api/kb/entries/kb_1", json={"title": "Renamed"})

        assert response.status_code == 200
        assert response.json()["data"]["title"] == "Renamed"
        entry_id, updates = services.knowledge_store.update_entry.call_args[0]
        assert entry_id == "kb_1"
        assert updates.title == "Renamed"

    def test_update_unknown_returns_404(self, client: TestClient, services: AppServices):
        services.knowledge_store.update_entry.return_value = False
        response = client.put("/api/kb/entries/nope", json={"title": "x"})
        assert response.status_code == 404
        assert response.json()["error"] == "Knowledge base entry not found"

    def test_delete_entry(self, client: TestClient, services: AppServices):
        services.knowledge_store.delete_entry.return_value = True
        response = client.delete("/api/kb/entries/kb_1")
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_delete_unknown_returns_404(self, client: TestClient, services: AppServices):
        services.knowledge_store.delete_entry.return_value = False
        assert client.delete("/api/kb/entries/nope").status_code == 404

    def test_categories_and_stats(self, client: TestClient, services: AppServices):
        services.knowledge_store.get_categories.return_value = ["billing", "technical"]
        services.knowledge_store.get_stats.return_value = {
            "total_entries": 2,
            "by_category": {"billing": 1, "technical": 1},
            "by_priority": {"high": 2},
        }

        assert client.get("/api/kb/categories").json()["data"] == ["billing", "technical"]
        assert client.get("/api/kb/stats").json()["data"]["total_entries"] == 2


class TestStorageFailures:
    @pytest.mark.parametrize(
        ("method", "path", "error"),
        [
            ("history", "/api/chat/conversations/conv_1/history", "Failed to load conversation history"),
            ("list_user_conversations", "/api/chat/users/alice/conversations", "Failed to load user conversations"),
            ("snapshot", "/api/chat/stats", "Failed to compute conversation stats"),
        ],
    )
    def test_conversation_reads_return_500(
        self,
        client: TestClient,
        services: AppServices,
        monkeypatch: pytest.MonkeyPatch,
        method: str,
        path: str,
        error: str,
    ):
        failing = AsyncMock(side_effect=ConversationStoreError("database is locked"))
        monkeypatch.setattr(services.store, method, failing)

        response = client.get(path)

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"] == error
        assert body["message"] == "database is locked"

    def test_clear_returns_500(
        self, client: TestClient, services: AppServices, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setattr(
            services.store, "clear", AsyncMock(side_effect=ConversationStoreError("disk I/O error"))
        )
        response = client.delete("/api/chat/conversation/conv_1")
        assert response.status_code == 500
        assert response.json()["error"] == "Failed to clear conversation"

    @pytest.mark.parametrize(
        ("method", "path", "error"),
        [
            ("get_categories", "/api/kb/categories", "Failed to list categories"),
            ("get_stats", "/api/kb/stats", "Failed to load knowledge base stats"),
        ],
    )
    def test_knowledge_base_reads_return_500(
        self, client: TestClient, services: AppServices, method: str, path: str, error: str
    ):
        getattr(services.knowledge_store, method).side_effect = KnowledgeBaseError("disk I/O error")

        response = client.get(path)

        assert response.status_code == 500
        assert response.json()["error"] == error

    def test_update_reload_failure_returns_500(self, client: TestClient, services: AppServices):
        services.knowledge_store.update_entry.return_value = True
        services.knowledge_store.get_entry.side_effect = KnowledgeBaseError("disk I/O error")

        response = client.put("/api/kb/entries/kb_1", json={"title": "Renamed"})

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to update knowledge base entry"
