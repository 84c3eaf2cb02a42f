"""Shared fixtures for support assistant tests."""

from __future__ import annotations

import pytest

from support_assistant.services.conversation_store import InMemoryConversationStore


def pytest_configure(config):
    """Set pytest-asyncio mode to auto so async test functions work without markers."""
    config.option.asyncio_mode = "auto"


@pytest.fixture()
def memory_store() -> InMemoryConversationStore:
    return InMemoryConversationStore()
