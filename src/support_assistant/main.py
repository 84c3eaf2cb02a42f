"""FastAPI backend for the customer-support assistant.

This module is a thin **presentation layer**.  All business logic lives in
the ``application`` package so it can be tested and reused independently of
any HTTP framework.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from support_assistant import __version__
from support_assistant.application.use_cases.chat import ChatOrchestrator
from support_assistant.application.use_cases.stats import StatsAggregator
from support_assistant.config import Settings, get_settings
from support_assistant.domain.escalation import EscalationPolicy
from support_assistant.domain.priority import PriorityResolver
from support_assistant.domain.protocols import IConversationStore
from support_assistant.logging_config import setup_logging
from support_assistant.presentation.routes import chat, knowledge_base
from support_assistant.services.ai_service import (
    PydanticAIQueryClassifier,
    PydanticAIResponseGenerator,
    create_classifier_agent,
    create_generator_agent,
)
from support_assistant.services.conversation_store import InMemoryConversationStore
from support_assistant.services.knowledge_retriever import KnowledgeRetriever
from support_assistant.services.knowledge_store import SqliteKnowledgeStore, create_knowledge_store
from support_assistant.services.sqlite_conversation_store import SqliteConversationStore
from support_assistant.telemetry import is_observability_active, setup_telemetry

# Configure loguru before anything else
setup_logging()


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


@dataclass
class AppServices:
    """Everything the routes need, built once per application lifetime."""

    orchestrator: ChatOrchestrator
    store: IConversationStore
    retriever: KnowledgeRetriever
    knowledge_store: SqliteKnowledgeStore
    stats: StatsAggregator
    closers: list[Callable[[], None]] = field(default_factory=list)


def build_services(settings: Settings) -> AppServices:
    """Create and connect all collaborators from settings."""
    knowledge_store = create_knowledge_store(settings)
    knowledge_store.connect()
    closers: list[Callable[[], None]] = [knowledge_store.close]

    store: IConversationStore
    if settings.conversation_backend == "sqlite":
        sqlite_store = SqliteConversationStore(db_path=settings.chat_db_path)
        sqlite_store.connect()
        closers.append(sqlite_store.close)
        store = sqlite_store
    else:
        store = InMemoryConversationStore()

    retriever = KnowledgeRetriever(knowledge_store, default_limit=settings.search_limit)

    instrument = is_observability_active(settings)
    orchestrator = ChatOrchestrator(
        classifier=PydanticAIQueryClassifier(create_classifier_agent(settings, instrument=instrument)),
        retriever=retriever,
        generator=PydanticAIResponseGenerator(create_generator_agent(settings, instrument=instrument)),
        store=store,
        escalation_policy=EscalationPolicy(
            classification_threshold=settings.escalation_classification_threshold,
            generation_threshold=settings.escalation_generation_threshold,
            handoff_phrases=settings.escalation_handoff_phrases,
        ),
        priority_resolver=PriorityResolver(),
        search_limit=settings.chat_search_limit,
        relevance_threshold=settings.relevance_threshold,
    )

    return AppServices(
        orchestrator=orchestrator,
        store=store,
        retriever=retriever,
        knowledge_store=knowledge_store,
        stats=StatsAggregator(store),
        closers=closers,
    )


# ---------------------------------------------------------------------------
# Lifespan: initialise shared resources once at startup
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Set up and tear down services around the application lifetime."""
    settings = get_settings()
    settings.validate_runtime()
    setup_logging(level=settings.log_level, json=settings.log_json, log_file=settings.log_file)

    services = build_services(settings)

    app.state.settings = settings
    app.state.orchestrator = services.orchestrator
    app.state.store = services.store
    app.state.retriever = services.retriever
    app.state.knowledge_store = services.knowledge_store
    app.state.stats = services.stats

    logger.info(
        "Application startup complete | conversations={}", settings.conversation_backend
    )
    yield

    for close in services.closers:
        close()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Customer Support Assistant",
    description="Knowledge-base grounded answers with escalation to human agents.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Instrument FastAPI with observability (no-op when OBSERVABILITY=off)
setup_telemetry(app, get_settings())

app.include_router(chat.router)
app.include_router(knowledge_base.router)


@app.get("/health")
async def health():
    """Simple liveness / readiness check."""
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("support_assistant.main:app", host="0.0.0.0", port=8000, reload=True)
