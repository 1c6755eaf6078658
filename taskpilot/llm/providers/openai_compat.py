"""OpenAI-compatible chat client over httpx (Chutes, Ollama, vLLM, ...).

Supports both blocking and streaming modes.  The streaming path parses
SSE ``data:`` lines as they arrive.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, List, Optional

import httpx

from taskpilot.llm.errors import classify_exception, error_from_status, provider_error
from taskpilot.llm.providers.base import ChatModel
from taskpilot.llm.providers.openai_format import (
    build_tools,
    iter_chunk_dicts,
    parse_completion,
    prepare_messages,
)
from taskpilot.llm.types import Completion, ErrorCode, ProviderError, StreamChunk


def _error_message(body: str) -> str:
    """Extract ``error.message`` from a JSON error body, else the raw body."""
    try:
        error_json = json.loads(body)
    except json.JSONDecodeError:
        return body
    if isinstance(error_json, dict):
        err = error_json.get("error")
        if isinstance(err, dict):
            return str(err.get("message", body))
        if isinstance(err, str):
            return err
    return body


def _supports_temperature(model: str) -> bool:
    """Reasoning models don't accept a temperature parameter."""
    model_lower = model.lower()
    return not any(x in model_lower for x in ["o1", "o3", "deepseek-r1"])


class OpenAICompatibleModel(ChatModel):
    """Chat-completions client for any OpenAI-compatible HTTP endpoint."""

    def __init__(
        self,
        provider: str,
        model: str,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.provider = provider
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout=timeout, connect=30.0),
            transport=transport,
        )

    def _payload(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        stream: bool,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": prepare_messages(messages),
        }
        if self.max_tokens:
            payload["max_tokens"] = self.max_tokens
        if self.temperature is not None and _supports_temperature(self.model):
            payload["temperature"] = self.temperature
        if tools:
            payload["tools"] = build_tools(tools)
            payload["tool_choice"] = "auto"
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Completion:
        """Send a chat request and parse the full response."""
        try:
            response = self._client.post(
                "/chat/completions", json=self._payload(messages, tools, stream=False)
            )
            if response.status_code != 200:
                raise error_from_status(
                    self.provider,
                    response.status_code,
                    _error_message(response.text),
                    response.headers,
                )
            data = response.json()
            return parse_completion(data, self.model)
        except ProviderError:
            raise
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise classify_exception(self.provider, e) from e

    def open_stream(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Iterator[StreamChunk]:
        """Open an SSE stream; raises ProviderError if it cannot be established."""
        request = self._client.build_request(
            "POST", "/chat/completions", json=self._payload(messages, tools, stream=True)
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
            raise error_from_status(
                self.provider, resp.status_code, _error_message(body), resp.headers
            )

        return self._iter_stream(resp)

    def _iter_stream(self, resp: httpx.Response) -> Iterator[StreamChunk]:
        try:
            yield from iter_chunk_dicts(self._iter_sse(resp))
        except httpx.HTTPError as e:
            raise classify_exception(self.provider, e) from e
        finally:
            resp.close()

    def _iter_sse(self, resp: httpx.Response) -> Iterator[Dict[str, Any]]:
        for raw_line in resp.iter_lines():
            line = raw_line.strip()
            if not line or not line.startswith("data:"):
                continue
            data_str = line[5:].strip()
            if data_str == "[DONE]":
                return
            try:
                chunk = json.loads(data_str)
            except json.JSONDecodeError:
                continue
            if isinstance(chunk, dict):
                if chunk.get("error"):
                    raise provider_error(
                        self.provider, ErrorCode.INVALID_RESPONSE, json.dumps(chunk["error"])
                    )
                yield chunk

    def close(self) -> None:
        self._client.close()
