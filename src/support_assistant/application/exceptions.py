"""Application-level exceptions.

These are business-logic errors, not HTTP errors. The presentation layer
(e.g. FastAPI routes) translates them into appropriate HTTP responses.
"""


class SupportAssistantError(Exception):
    """Base class for all support assistant errors."""


class RetrievalError(SupportAssistantError):
    """Raised when the knowledge engine fails to answer a search."""


class KnowledgeBaseError(SupportAssistantError):
    """Raised when a knowledge-base management operation fails."""


class MessageProcessingError(SupportAssistantError):
    """Raised when any step of the message pipeline fails.

    The original exception is always available as ``__cause__``.
    """


class ConversationStoreError(SupportAssistantError):
    """Raised when conversation history cannot be read or written."""
