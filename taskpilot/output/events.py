"""Event types emitted by the agent orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class EventType(str, Enum):
    """Types of events that can be emitted."""

    AGENT_START = "agent.start"
    AGENT_END = "agent.end"
    AGENT_CANCELED = "agent.canceled"

    LLM_START = "llm.start"
    LLM_STREAM = "llm.stream"
    LLM_END = "llm.end"
    RETRY = "retry"

    TOOL_START = "tool.start"
    TOOL_PROGRESS = "tool.progress"
    TOOL_END = "tool.end"

    STATE_CHANGED = "state.changed"
    ERROR = "error"


@dataclass
class Event:
    """An event from the agent.  ``data`` is always JSON-serializable."""

    type: EventType
    timestamp: datetime = field(default_factory=datetime.now)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            **self.data,
        }

    @classmethod
    def agent_start(cls, query: str, session_id: str) -> "Event":
        return cls(type=EventType.AGENT_START, data={"query": query, "session_id": session_id})

    @classmethod
    def agent_end(cls, answer: str, usage: Optional[Dict[str, int]] = None) -> "Event":
        return cls(type=EventType.AGENT_END, data={"answer": answer, "usage": usage or {}})

    @classmethod
    def agent_canceled(cls, reason: str) -> "Event":
        return cls(type=EventType.AGENT_CANCELED, data={"reason": reason})

    @classmethod
    def llm_start(cls, model: str, messages: List[Dict[str, Any]]) -> "Event":
        return cls(type=EventType.LLM_START, data={"model": model, "messages": messages})

    @classmethod
    def llm_stream(cls, chunk: str) -> "Event":
        return cls(type=EventType.LLM_STREAM, data={"chunk": chunk})

    @classmethod
    def llm_end(cls, response: Dict[str, Any], usage: Optional[Dict[str, int]]) -> "Event":
        return cls(type=EventType.LLM_END, data={"response": response, "usage": usage})

    @classmethod
    def retry(cls, attempt: int, max_retries: int, delay_ms: int, error: str, message: str) -> "Event":
        return cls(
            type=EventType.RETRY,
            data={
                "attempt": attempt,
                "max_retries": max_retries,
                "delay_ms": delay_ms,
                "error": error,
                "message": message,
            },
        )

    @classmethod
    def tool_start(cls, name: str, args: Dict[str, Any], call_id: str) -> "Event":
        return cls(type=EventType.TOOL_START, data={"name": name, "args": args, "call_id": call_id})

    @classmethod
    def tool_progress(
        cls,
        call_id: str,
        title: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "Event":
        return cls(
            type=EventType.TOOL_PROGRESS,
            data={"call_id": call_id, "title": title, "metadata": metadata or {}},
        )

    @classmethod
    def tool_end(cls, name: str, result: Dict[str, Any], call_id: str) -> "Event":
        return cls(type=EventType.TOOL_END, data={"name": name, "result": result, "call_id": call_id})

    @classmethod
    def state_changed(cls, old: str, new: str) -> "Event":
        return cls(type=EventType.STATE_CHANGED, data={"from": old, "to": new})

    @classmethod
    def error(cls, code: str, message: str) -> "Event":
        return cls(type=EventType.ERROR, data={"code": code, "message": message})
