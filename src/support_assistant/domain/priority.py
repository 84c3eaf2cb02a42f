"""Message priority derived from classification and escalation outcome."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from support_assistant.domain.models import Priority, QueryClassification

DEFAULT_PRIORITY_TABLE: Mapping[str, Priority] = MappingProxyType(
    {
        "billing": "high",
        "refund": "high",
        "complaint": "high",
        "technical": "medium",
        "shipping": "medium",
        "returns": "medium",
    }
)

FALLBACK_PRIORITY: Priority = "low"


class PriorityResolver:
    """Table-driven priority lookup.

    Escalated messages are always ``high``; otherwise the category decides,
    with unknown categories falling back to ``low``.
    """

    def __init__(self, table: Mapping[str, Priority] = DEFAULT_PRIORITY_TABLE) -> None:
        self.table = MappingProxyType(dict(table))

    def resolve(self, classification: QueryClassification, escalated: bool) -> Priority:
        if escalated:
            return "high"
        return self.table.get(classification.category, FALLBACK_PRIORITY)


_DEFAULT_RESOLVER = PriorityResolver()


def resolve_priority(classification: QueryClassification, escalated: bool) -> Priority:
    """Resolve priority with the default table."""
    return _DEFAULT_RESOLVER.resolve(classification, escalated)

