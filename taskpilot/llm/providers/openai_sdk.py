"""OpenAI and Azure OpenAI adapters built on the official ``openai`` SDK."""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional

import openai

from taskpilot.llm.errors import classify_exception
from taskpilot.llm.providers.base import ChatModel
from taskpilot.llm.providers.openai_format import (
    build_tools,
    iter_chunk_dicts,
    parse_completion,
    prepare_messages,
)
from taskpilot.llm.types import Completion, ProviderError, StreamChunk


class OpenAISDKModel(ChatModel):
    """Chat model backed by an ``openai.OpenAI``-compatible SDK client.

    The SDK's own retry loop is disabled (``max_retries=0``) by the
    factories; retries are owned by :func:`taskpilot.llm.retry.with_retry`.
    """

    def __init__(
        self,
        provider: str,
        model: str,
        client: openai.OpenAI,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self.provider = provider
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client

    def _kwargs(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": prepare_messages(messages),
        }
        if self.max_tokens:
            kwargs["max_completion_tokens"] = self.max_tokens
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if tools:
            kwargs["tools"] = build_tools(tools)
            kwargs["tool_choice"] = "auto"
        return kwargs

    def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Completion:
        try:
            response = self._client.chat.completions.create(**self._kwargs(messages, tools))
            return parse_completion(response.model_dump(), self.model)
        except ProviderError:
            raise
        except (openai.OpenAIError, ValueError, KeyError, TypeError) as e:
            raise classify_exception(self.provider, e) from e

    def open_stream(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Iterator[StreamChunk]:
        try:
            stream = self._client.chat.completions.create(
                stream=True,
                stream_options={"include_usage": True},
                **self._kwargs(messages, tools),
            )
        except openai.OpenAIError as e:
            raise classify_exception(self.provider, e) from e
        return self._iter_stream(stream)

    def _iter_stream(self, stream: Any) -> Iterator[StreamChunk]:
        try:
            yield from iter_chunk_dicts(chunk.model_dump() for chunk in stream)
        except openai.OpenAIError as e:
            raise classify_exception(self.provider, e) from e
        finally:
            stream.close()

    def close(self) -> None:
        self._client.close()
