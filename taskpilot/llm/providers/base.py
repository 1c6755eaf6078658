"""Provider adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional

from taskpilot.llm.types import Completion, StreamChunk


class ChatModel(ABC):
    """A constructed, ready-to-call model client for one provider.

    Implementations raise :class:`~taskpilot.llm.types.ProviderError` on
    failure.  ``open_stream`` must establish the connection before it
    returns, so establishment errors surface from the call itself and only
    mid-stream errors surface from iteration.
    """

    provider: str = ""
    model: str = ""

    @abstractmethod
    def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Completion:
        """Send a blocking chat request and return the assembled reply."""

    @abstractmethod
    def open_stream(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Iterator[StreamChunk]:
        """Open a streaming chat request and return its chunk iterator."""

    def close(self) -> None:
        """Release network resources."""
