"""Persisted tool-output store with keyword relevance retrieval."""

from taskpilot.context.manager import ContextManager, ContextPointer

__all__ = ["ContextManager", "ContextPointer"]
