"""Use-case layer — business logic decoupled from the HTTP transport."""

from support_assistant.application.use_cases.chat import ChatOrchestrator
from support_assistant.application.use_cases.stats import StatsAggregator

__all__ = ["ChatOrchestrator", "StatsAggregator"]
