"""Customer-support assistant: knowledge-base retrieval, AI answers, escalation."""

__version__ = "0.1.0"
