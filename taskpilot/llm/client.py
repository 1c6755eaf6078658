"""Model invocation client.

Holds the selected provider name and a lazily-built, cached
:class:`ChatModel`.  The cache belongs to the client instance and is
invalidated only when the provider name changes.

Supports both blocking (``invoke``) and streaming (``stream``) modes; both
run under :func:`taskpilot.llm.retry.with_retry` and return
:class:`ModelResponse` values instead of raising.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

from taskpilot.config.models import AgentConfig
from taskpilot.llm.errors import classify_exception
from taskpilot.llm.providers.base import ChatModel
from taskpilot.llm.providers.registry import ProviderFactory, create_provider, resolve_model_name
from taskpilot.llm.retry import with_retry
from taskpilot.llm.types import (
    Completion,
    ErrorCode,
    FunctionCall,
    ModelResponse,
    ProviderError,
    RetryContext,
    StreamChunk,
    TokenUsage,
)
from taskpilot.llm.usage import extract_token_usage
from taskpilot.utils.cancellation import CancellationToken
from taskpilot.utils.log import log

Messages = List[Dict[str, Any]]
ToolSpecs = Optional[List[Dict[str, Any]]]


def _log(msg: str) -> None:
    log("llm", msg)


class ModelStream:
    """Iterable of text chunks over an established provider stream.

    Tool calls, usage and the finish reason are collected while iterating
    and are available once iteration ends.  ``on_end`` fires exactly once,
    when the underlying stream is exhausted cleanly.  A mid-stream provider
    failure stops iteration and is recorded on :attr:`error` (mid-stream
    failures are not retried).
    """

    def __init__(
        self,
        chunks: Iterator[StreamChunk],
        model: str,
        on_end: Optional[Callable[["ModelStream"], None]] = None,
        provider: str = "",
    ):
        self.model = model
        self.provider = provider
        self.text_parts: List[str] = []
        self.tool_calls: List[FunctionCall] = []
        self.usage: Optional[TokenUsage] = None
        self.finish_reason = ""
        self.error: Optional[ModelResponse[Completion]] = None
        self.done = False
        self._chunks = chunks
        self._on_end = on_end
        self._started = False

    def __iter__(self) -> Iterator[str]:
        if self._started:
            raise RuntimeError("ModelStream can only be iterated once")
        self._started = True
        try:
            for chunk in self._chunks:
                if chunk.text_delta:
                    self.text_parts.append(chunk.text_delta)
                    yield chunk.text_delta
                if chunk.tool_call is not None:
                    self.tool_calls.append(chunk.tool_call)
                if chunk.usage is not None:
                    self.usage = extract_token_usage(chunk.usage)
                if chunk.finish_reason:
                    self.finish_reason = chunk.finish_reason
        except ProviderError as e:
            _log(f"Stream interrupted: {e.message}")
            self.error = ModelResponse.fail(e.code, e.message)
            return
        except Exception as e:
            err = classify_exception(self.provider or "stream", e)
            _log(f"Stream interrupted: {err.message}")
            self.error = ModelResponse.fail(err.code, err.message)
            return

        self.done = True
        if self._on_end is not None:
            self._on_end(self)

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    def close(self) -> None:
        """Abandon the stream early (e.g. on cancellation)."""
        close = getattr(self._chunks, "close", None)
        if close is not None:
            close()

    def to_completion(self) -> Completion:
        return Completion(
            content=self.text,
            tool_calls=list(self.tool_calls),
            usage=self.usage,
            model=self.model,
            finish_reason=self.finish_reason,
        )


class LLMClient:
    """Provider-agnostic model client with lazy, cached construction."""

    def __init__(
        self,
        config: AgentConfig,
        providers: Optional[Dict[str, ProviderFactory]] = None,
    ):
        self.config = config
        self._providers = providers
        self._provider_name = config.provider
        self._model: Optional[ChatModel] = None
        self._model_provider: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def provider(self) -> str:
        return self._provider_name

    def set_provider(self, name: str) -> None:
        """Switch providers; the cached client is dropped only on a real change."""
        name = name.strip().lower()
        with self._lock:
            if name == self._provider_name:
                return
            self._provider_name = name
            self._invalidate_locked()

    def _invalidate_locked(self) -> None:
        if self._model is not None:
            self._model.close()
        self._model = None
        self._model_provider = None

    def _get_model(self) -> ModelResponse[ChatModel]:
        with self._lock:
            if self._model is not None and self._model_provider == self._provider_name:
                return ModelResponse.ok(self._model)

            self._invalidate_locked()
            created = create_provider(self._provider_name, self.config, self._providers)
            if created.success and created.result is not None:
                self._model = created.result
                self._model_provider = self._provider_name
                _log(created.message)
            return created

    @property
    def model_name(self) -> str:
        """Model name of the cached client, else the configured one."""
        if self._model is not None and self._model_provider == self._provider_name:
            return self._model.model
        cfg = self.config.provider_config(self._provider_name)
        if cfg is None:
            return ""
        return resolve_model_name(self._provider_name, cfg) or ""

    def invoke(
        self,
        messages: Messages,
        tools: ToolSpecs = None,
        on_retry: Optional[Callable[[RetryContext], None]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ModelResponse[Completion]:
        """Single-shot chat call, retried end-to-end."""

        def attempt() -> ModelResponse[Completion]:
            created = self._get_model()
            if not created.success or created.result is None:
                return ModelResponse.fail(created.error or ErrorCode.UNKNOWN, created.message)
            model = created.result
            try:
                completion = model.complete(messages, tools)
            except ProviderError as e:
                return ModelResponse.fail(e.code, e.message, e.retry_after_ms)
            except Exception as e:
                err = classify_exception(self._provider_name, e)
                return ModelResponse.fail(err.code, err.message, err.retry_after_ms)

            if completion.is_empty:
                return ModelResponse.fail(
                    ErrorCode.INVALID_RESPONSE,
                    f"{self._provider_name}: model produced no text and no tool calls",
                )
            return ModelResponse.ok(completion)

        return with_retry(attempt, self.config.retry, on_retry=on_retry, cancel=cancel)

    def stream(
        self,
        messages: Messages,
        tools: ToolSpecs = None,
        on_start: Optional[Callable[[str], None]] = None,
        on_end: Optional[Callable[[ModelStream], None]] = None,
        on_retry: Optional[Callable[[RetryContext], None]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ModelResponse[ModelStream]:
        """Open a streaming call.

        ``on_start`` fires once before the first attempt.  Only stream
        establishment is retried; iteration failures end up on
        ``ModelStream.error``.
        """
        if on_start is not None:
            on_start(self.model_name)

        def attempt() -> ModelResponse[ModelStream]:
            created = self._get_model()
            if not created.success or created.result is None:
                return ModelResponse.fail(created.error or ErrorCode.UNKNOWN, created.message)
            model = created.result
            try:
                chunks = model.open_stream(messages, tools)
            except ProviderError as e:
                return ModelResponse.fail(e.code, e.message, e.retry_after_ms)
            except Exception as e:
                err = classify_exception(self._provider_name, e)
                return ModelResponse.fail(err.code, err.message, err.retry_after_ms)
            return ModelResponse.ok(
                ModelStream(chunks, model.model, on_end=on_end, provider=self._provider_name)
            )

        return with_retry(attempt, self.config.retry, on_retry=on_retry, cancel=cancel)

    def close(self) -> None:
        with self._lock:
            self._invalidate_locked()
