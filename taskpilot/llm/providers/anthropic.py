"""Anthropic Messages API adapter over httpx.

Conversation history is kept in OpenAI chat format everywhere else in
taskpilot; this module converts to and from Anthropic content blocks.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, List, Optional, Tuple

import httpx

from taskpilot.llm.errors import classify_exception, error_from_status, provider_error
from taskpilot.llm.providers.base import ChatModel
from taskpilot.llm.types import (
    Completion,
    ErrorCode,
    FunctionCall,
    ProviderError,
    StreamChunk,
    parse_arguments,
)
from taskpilot.llm.usage import extract_token_usage

ANTHROPIC_VERSION = "2023-06-01"


def convert_messages(messages: List[Dict[str, Any]]) -> Tuple[str, List[Dict[str, Any]]]:
    """Split OpenAI-format history into (system prompt, Anthropic messages).

    Consecutive ``tool`` messages are merged into one user turn of
    ``tool_result`` blocks, as the Messages API requires.
    """
    system_parts: List[str] = []
    converted: List[Dict[str, Any]] = []

    for msg in messages:
        role = msg.get("role")
        content = msg.get("content") or ""

        if role == "system":
            system_parts.append(content)
            continue

        if role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.get("tool_call_id", ""),
                "content": content,
            }
            prev = converted[-1] if converted else None
            if prev and prev["role"] == "user" and isinstance(prev["content"], list) and all(
                b.get("type") == "tool_result" for b in prev["content"]
            ):
                prev["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        if role == "assistant" and msg.get("tool_calls"):
            blocks: List[Dict[str, Any]] = []
            if content:
                blocks.append({"type": "text", "text": content})
            for call in msg["tool_calls"]:
                fn = call.get("function") or {}
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.get("id", ""),
                        "name": fn.get("name", ""),
                        "input": parse_arguments(fn.get("arguments")),
                    }
                )
            converted.append({"role": "assistant", "content": blocks})
            continue

        converted.append({"role": "user" if role == "user" else "assistant", "content": content})

    return "\n\n".join(p for p in system_parts if p), converted


def build_tools(tools: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
    """Build tools in Anthropic format."""
    if not tools:
        return None
    return [
        {
            "name": tool["name"],
            "description": tool.get("description", ""),
            "input_schema": tool.get("parameters", {"type": "object", "properties": {}}),
        }
        for tool in tools
    ]


class AnthropicModel(ChatModel):
    """Chat model for the Anthropic Messages API."""

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str = "https://api.anthropic.com/v1",
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
        max_tokens: int = 4096,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.provider = "anthropic"
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout=timeout, connect=30.0),
            transport=transport,
        )

    def _payload(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        stream: bool,
    ) -> Dict[str, Any]:
        system, converted = convert_messages(messages)
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": converted,
            "max_tokens": self.max_tokens,
        }
        if system:
            payload["system"] = system
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if tools:
            payload["tools"] = build_tools(tools)
        if stream:
            payload["stream"] = True
        return payload

    def _raise_for_status(self, resp: httpx.Response, body: str) -> None:
        try:
            err = json.loads(body).get("error", {})
            message = err.get("message", body) if isinstance(err, dict) else body
        except (json.JSONDecodeError, AttributeError):
            message = body
        raise error_from_status(self.provider, resp.status_code, message, resp.headers)

    def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Completion:
        try:
            resp = self._client.post("/messages", json=self._payload(messages, tools, stream=False))
            if resp.status_code != 200:
                self._raise_for_status(resp, resp.text)
            data = resp.json()
        except ProviderError:
            raise
        except (httpx.HTTPError, ValueError) as e:
            raise classify_exception(self.provider, e) from e

        result = Completion(
            model=data.get("model") or self.model,
            finish_reason=data.get("stop_reason") or "",
            usage=extract_token_usage(data.get("usage")),
        )
        text_parts = []
        for block in data.get("content") or []:
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                result.tool_calls.append(
                    FunctionCall(
                        id=block.get("id", ""),
                        name=block.get("name", ""),
                        arguments=block.get("input") or {},
                    )
                )
        result.content = "".join(text_parts)
        return result

    def open_stream(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Iterator[StreamChunk]:
        request = self._client.build_request(
            "POST", "/messages", json=self._payload(messages, tools, stream=True)
        )
        try:
            resp = self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise classify_exception(self.provider, e) from e

        if resp.status_code != 200:
            try:
                body = resp.read().decode("utf-8", errors="replace")
            finally:
                resp.close()
            self._raise_for_status(resp, body)

        return self._iter_stream(resp)

    def _iter_stream(self, resp: httpx.Response) -> Iterator[StreamChunk]:
        try:
            yield from self._iter_events(resp)
        except httpx.HTTPError as e:
            raise classify_exception(self.provider, e) from e
        finally:
            resp.close()

    def _iter_events(self, resp: httpx.Response) -> Iterator[StreamChunk]:
        usage: Dict[str, Any] = {}
        stop_reason = ""
        # index -> {"id", "name", "parts"} for tool_use blocks still streaming
        pending: Dict[int, Dict[str, Any]] = {}

        for raw_line in resp.iter_lines():
            line = raw_line.strip()
            if not line.startswith("data:"):
                continue
            try:
                event = json.loads(line[5:].strip())
            except json.JSONDecodeError:
                continue

            etype = event.get("type")
            if etype == "message_start":
                usage.update((event.get("message") or {}).get("usage") or {})
            elif etype == "content_block_start":
                block = event.get("content_block") or {}
                if block.get("type") == "tool_use":
                    pending[event.get("index", 0)] = {
                        "id": block.get("id", ""),
                        "name": block.get("name", ""),
                        "parts": [],
                    }
            elif etype == "content_block_delta":
                delta = event.get("delta") or {}
                if delta.get("type") == "text_delta" and delta.get("text"):
                    yield StreamChunk(text_delta=delta["text"])
                elif delta.get("type") == "input_json_delta":
                    acc = pending.get(event.get("index", 0))
                    if acc is not None:
                        acc["parts"].append(delta.get("partial_json", ""))
            elif etype == "content_block_stop":
                acc = pending.pop(event.get("index", 0), None)
                if acc is not None:
                    yield StreamChunk(
                        tool_call=FunctionCall(
                            id=acc["id"],
                            name=acc["name"],
                            arguments=parse_arguments("".join(acc["parts"])),
                        )
                    )
            elif etype == "message_delta":
                stop_reason = (event.get("delta") or {}).get("stop_reason") or stop_reason
                usage.update(event.get("usage") or {})
            elif etype == "error":
                raise provider_error(
                    self.provider, ErrorCode.INVALID_RESPONSE, json.dumps(event.get("error"))
                )
            elif etype == "message_stop":
                break

        yield StreamChunk(usage=usage or None, finish_reason=stop_reason)

    def close(self) -> None:
        self._client.close()
