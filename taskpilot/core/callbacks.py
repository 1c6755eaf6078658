"""Observer interface for agent lifecycle events.

Subclass :class:`AgentCallbacks` and override the ``on_*`` hooks you care
about; the orchestrator calls :meth:`AgentCallbacks.handle` with each
:class:`~taskpilot.output.events.Event`, always from the thread running
``Agent.run``.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from taskpilot.output.events import Event, EventType


class AgentCallbacks:
    """No-op base observer."""

    def handle(self, event: Event) -> None:
        dispatch = _DISPATCH.get(event.type)
        if dispatch is not None:
            dispatch(self, event.data)

    def on_agent_start(self, query: str) -> None:
        pass

    def on_llm_start(self, model: str, messages: List[Dict[str, Any]]) -> None:
        pass

    def on_llm_stream(self, chunk: str) -> None:
        pass

    def on_llm_end(self, response: Dict[str, Any], usage: Optional[Dict[str, int]]) -> None:
        pass

    def on_retry(self, attempt: int, max_retries: int, delay_ms: int, error: str, message: str) -> None:
        pass

    def on_tool_start(self, name: str, args: Dict[str, Any]) -> None:
        pass

    def on_tool_progress(self, call_id: str, title: Optional[str], metadata: Dict[str, Any]) -> None:
        pass

    def on_tool_end(self, name: str, result: Dict[str, Any]) -> None:
        pass

    def on_state_change(self, old: str, new: str) -> None:
        pass

    def on_error(self, error: Dict[str, str]) -> None:
        pass

    def on_agent_end(self, answer: str) -> None:
        pass

    def on_agent_canceled(self, reason: str) -> None:
        pass


_DISPATCH: Dict[EventType, Callable[[AgentCallbacks, Dict[str, Any]], None]] = {
    EventType.AGENT_START: lambda cb, d: cb.on_agent_start(d["query"]),
    EventType.LLM_START: lambda cb, d: cb.on_llm_start(d["model"], d["messages"]),
    EventType.LLM_STREAM: lambda cb, d: cb.on_llm_stream(d["chunk"]),
    EventType.LLM_END: lambda cb, d: cb.on_llm_end(d["response"], d["usage"]),
    EventType.RETRY: lambda cb, d: cb.on_retry(
        d["attempt"], d["max_retries"], d["delay_ms"], d["error"], d["message"]
    ),
    EventType.TOOL_START: lambda cb, d: cb.on_tool_start(d["name"], d["args"]),
    EventType.TOOL_PROGRESS: lambda cb, d: cb.on_tool_progress(d["call_id"], d["title"], d["metadata"]),
    EventType.TOOL_END: lambda cb, d: cb.on_tool_end(d["name"], d["result"]),
    EventType.STATE_CHANGED: lambda cb, d: cb.on_state_change(d["from"], d["to"]),
    EventType.ERROR: lambda cb, d: cb.on_error({"code": d["code"], "message": d["message"]}),
    EventType.AGENT_END: lambda cb, d: cb.on_agent_end(d["answer"]),
    EventType.AGENT_CANCELED: lambda cb, d: cb.on_agent_canceled(d["reason"]),
}
