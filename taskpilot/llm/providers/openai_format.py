"""Helpers for the OpenAI chat-completions wire format.

Shared by the ``openai``/``azure`` SDK adapters and the httpx-based
OpenAI-compatible adapter (``chutes``, ``local``).
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Optional

from taskpilot.llm.types import Completion, FunctionCall, StreamChunk, parse_arguments
from taskpilot.llm.usage import extract_token_usage


def build_tools(tools: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
    """Build tools in OpenAI format."""
    if not tools:
        return None

    result = []
    for tool in tools:
        result.append(
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "parameters": tool.get("parameters", {"type": "object", "properties": {}}),
                },
            }
        )
    return result


def prepare_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop keys the chat-completions API rejects (e.g. internal bookkeeping)."""
    allowed = {"role", "content", "name", "tool_calls", "tool_call_id"}
    prepared = []
    for msg in messages:
        new_msg = {k: v for k, v in msg.items() if k in allowed}
        if new_msg.get("role") == "assistant" and new_msg.get("tool_calls") and not new_msg.get("content"):
            new_msg["content"] = None
        prepared.append(new_msg)
    return prepared


def parse_completion(data: Dict[str, Any], fallback_model: str) -> Completion:
    """Parse a chat-completions response body into a Completion."""
    result = Completion(model=data.get("model") or fallback_model)
    result.usage = extract_token_usage(data.get("usage"))

    choices = data.get("choices") or []
    if not choices:
        raise ValueError("response has no choices")

    choice = choices[0]
    message = choice.get("message") or {}
    result.finish_reason = choice.get("finish_reason", "") or ""
    result.content = message.get("content", "") or ""

    for call in message.get("tool_calls") or []:
        result.tool_calls.append(FunctionCall.from_openai(call))
    return result


class ToolCallAccumulator:
    """Reassembles tool calls whose arguments arrive as JSON fragments."""

    def __init__(self) -> None:
        self._calls: Dict[int, Dict[str, Any]] = {}

    def add(self, delta: Dict[str, Any]) -> None:
        idx = delta.get("index", 0) or 0
        acc = self._calls.setdefault(idx, {"id": "", "name": "", "arguments_parts": []})
        if delta.get("id"):
            acc["id"] = delta["id"]
        fn = delta.get("function") or {}
        if fn.get("name"):
            acc["name"] = fn["name"]
        if fn.get("arguments"):
            acc["arguments_parts"].append(fn["arguments"])

    def finish(self) -> List[FunctionCall]:
        calls = []
        for idx in sorted(self._calls):
            acc = self._calls[idx]
            args = parse_arguments("".join(acc["arguments_parts"]))
            calls.append(FunctionCall(id=acc["id"], name=acc["name"], arguments=args))
        self._calls.clear()
        return calls


def iter_chunk_dicts(chunks: Iterable[Dict[str, Any]]) -> Iterator[StreamChunk]:
    """Turn decoded chat-completion chunk dicts into StreamChunks.

    Text deltas are yielded as they arrive; tool calls are yielded once the
    stream ends and their arguments are complete.
    """
    tool_calls = ToolCallAccumulator()
    finish_reason = ""
    usage: Optional[Dict[str, Any]] = None

    for chunk in chunks:
        if chunk.get("usage"):
            usage = chunk["usage"]

        choices = chunk.get("choices") or []
        if not choices:
            continue
        delta = choices[0].get("delta") or {}
        if choices[0].get("finish_reason"):
            finish_reason = choices[0]["finish_reason"]

        content = delta.get("content")
        if content:
            yield StreamChunk(text_delta=content)

        for tcd in delta.get("tool_calls") or []:
            tool_calls.add(tcd)

    for call in tool_calls.finish():
        yield StreamChunk(tool_call=call)
    yield StreamChunk(usage=usage, finish_reason=finish_reason)
