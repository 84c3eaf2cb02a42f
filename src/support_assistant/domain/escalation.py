"""Escalation policy: when a human agent must take over, and what to suggest."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from support_assistant.domain.models import QueryClassification, ResponseGeneration

HANDOFF_ACTION = "Contact support"
REPHRASE_ACTION = "Try rephrasing your question"
FALLBACK_ACTION = "Browse the help center"

DEFAULT_HANDOFF_PHRASES: tuple[str, ...] = (
    "speak to a human",
    "talk to a human",
    "real person",
    "live agent",
    "customer service representative",
    "speak to a manager",
)

CATEGORY_ACTIONS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "billing": ("Review your billing history", "Update your payment method"),
        "refund": ("Check your refund status",),
        "complaint": ("Share your order number so we can look into it",),
        "technical": ("Follow the troubleshooting steps above",),
        "shipping": ("Track your order status",),
        "returns": ("Start a return request",),
    }
)


class EscalationPolicy:
    """Decides whether a request needs a human, and suggests next steps.

    Parameters
    ----------
    classification_threshold:
        Classifier confidence below which the query counts as poorly understood.
    generation_threshold:
        Generator confidence below which the answer counts as unreliable.
    handoff_phrases:
        Case-insensitive phrases that signal the customer is asking for a person.
    """

    def __init__(
        self,
        classification_threshold: float = 0.5,
        generation_threshold: float = 0.5,
        handoff_phrases: Iterable[str] = DEFAULT_HANDOFF_PHRASES,
        category_actions: Mapping[str, tuple[str, ...]] = CATEGORY_ACTIONS,
    ) -> None:
        self.classification_threshold = classification_threshold
        self.generation_threshold = generation_threshold
        self.handoff_phrases = tuple(p.lower() for p in handoff_phrases if p)
        self.category_actions = category_actions

    def should_escalate(
        self,
        message: str,
        classification: QueryClassification,
        generation: ResponseGeneration,
    ) -> bool:
        """Return True if a human must handle this request.

        The generator's own flag is the primary signal.  The policy also
        escalates when neither the classifier nor the generator is confident,
        or when the customer explicitly asks for a person.
        """
        if generation.requires_escalation:
            return True

        if (
            classification.confidence < self.classification_threshold
            and generation.confidence < self.generation_threshold
        ):
            return True

        lowered = message.lower()
        return any(phrase in lowered for phrase in self.handoff_phrases)

    def suggested_actions(
        self,
        classification: QueryClassification,
        generation: ResponseGeneration,
        escalated: bool,
    ) -> list[str]:
        """Return an ordered, non-empty list of next-step hints."""
        actions: list[str] = []
        if escalated:
            actions.append(HANDOFF_ACTION)
        elif generation.confidence < self.generation_threshold:
            actions.append(REPHRASE_ACTION)

        actions.extend(self.category_actions.get(classification.category, ()))

        if not actions:
            actions.append(FALLBACK_ACTION)

        # de-duplicate, keep first occurrence
        return list(dict.fromkeys(actions))
