"""Configuration for the support assistant using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from support_assistant.domain.escalation import DEFAULT_HANDOFF_PHRASES

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent  # src/support_assistant/ → project root


class Settings(BaseSettings):
    """All application settings, loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Azure OpenAI: Chat model (classification + response generation)
    # ------------------------------------------------------------------
    azure_openai_api_key: str = ""
    azure_openai_endpoint: str = ""
    azure_openai_api_version: str = "2025-01-01-preview"
    azure_openai_chat_deployment: str = "gpt-4o-mini"

    # ------------------------------------------------------------------
    # Azure OpenAI: Embedding model
    # Falls back to the chat-model values when not set explicitly.
    # ------------------------------------------------------------------
    azure_openai_embedding_endpoint: str | None = None
    azure_openai_embedding_api_version: str | None = None
    azure_openai_embedding_deployment: str = "text-embedding-3-small"
    azure_openai_embedding_api_key: str | None = None
    embedding_dimensions: int = 1536

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------
    search_limit: int = 10
    chat_search_limit: int = 5
    relevance_threshold: float = 0.7

    # ------------------------------------------------------------------
    # Escalation policy
    # ------------------------------------------------------------------
    escalation_classification_threshold: float = 0.5
    escalation_generation_threshold: float = 0.5
    escalation_handoff_phrases: list[str] = list(DEFAULT_HANDOFF_PHRASES)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    kb_db_path: Path = _PROJECT_ROOT / "database" / "knowledge_base.sqlite"
    chat_db_path: Path = _PROJECT_ROOT / "database" / "conversations.sqlite"
    conversation_backend: Literal["memory", "sqlite"] = "memory"

    # ------------------------------------------------------------------
    # Logging & observability
    # ------------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Path | None = None
    observability: str = "off"
    otel_service_name: str = "support-assistant-backend"
    otel_exporter_otlp_endpoint: str = "http://localhost:4318"
    otel_console_exporter: bool = False

    # ------------------------------------------------------------------
    # Computed defaults (embedding falls back to chat values)
    # ------------------------------------------------------------------
    @model_validator(mode="after")
    def _apply_embedding_fallbacks(self) -> "Settings":
        if not self.azure_openai_embedding_endpoint:
            self.azure_openai_embedding_endpoint = self.azure_openai_endpoint
        if not self.azure_openai_embedding_api_version:
            self.azure_openai_embedding_api_version = self.azure_openai_api_version
        if not self.azure_openai_embedding_api_key:
            self.azure_openai_embedding_api_key = self.azure_openai_api_key
        return self

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------
    def validate_runtime(self) -> None:
        """Check that all required values are present.

        Call this at application startup (not at import time) so that
        tests can override settings before validation runs.
        """
        if not self.azure_openai_api_key:
            raise ValueError("AZURE_OPENAI_API_KEY not set. Add it to .env")
        if not self.azure_openai_endpoint:
            raise ValueError("AZURE_OPENAI_ENDPOINT not set. Add it to .env")
        if not self.azure_openai_embedding_endpoint:
            raise ValueError(
                "No embedding endpoint. Set AZURE_OPENAI_EMBEDDING_ENDPOINT or AZURE_OPENAI_ENDPOINT."
            )
        if not 0.0 <= self.relevance_threshold <= 1.0:
            raise ValueError("RELEVANCE_THRESHOLD must be between 0 and 1.")


@lru_cache
def get_settings() -> Settings:
    """Return the cached Settings singleton."""
    return Settings()
