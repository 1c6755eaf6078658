"""Value types shared by the model-invocation layer.

Every public model call returns a :class:`ModelResponse` instead of
raising.  Providers raise :class:`ProviderError` internally; the client
converts it to a failed response at the boundary.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Closed set of model-invocation failure codes."""

    PROVIDER_NOT_CONFIGURED = "PROVIDER_NOT_CONFIGURED"
    PROVIDER_NOT_SUPPORTED = "PROVIDER_NOT_SUPPORTED"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    CONTEXT_LENGTH_EXCEEDED = "CONTEXT_LENGTH_EXCEEDED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    UNKNOWN = "UNKNOWN"


RETRYABLE_ERROR_CODES = frozenset(
    {ErrorCode.RATE_LIMITED, ErrorCode.NETWORK_ERROR, ErrorCode.TIMEOUT}
)


@dataclass(frozen=True)
class ModelResponse(Generic[T]):
    """Success-or-failure result of a model operation.

    Exactly one of ``result`` (on success) or ``error`` (on failure) is
    meaningful.  ``retry_after_ms`` is only set when the provider sent an
    explicit retry hint.
    """

    success: bool
    message: str
    result: Optional[T] = None
    error: Optional[ErrorCode] = None
    retry_after_ms: Optional[int] = None

    @classmethod
    def ok(cls, result: T, message: str = "ok") -> "ModelResponse[T]":
        """Create a successful response."""
        return cls(success=True, message=message, result=result)

    @classmethod
    def fail(
        cls,
        error: ErrorCode,
        message: str,
        retry_after_ms: Optional[int] = None,
    ) -> "ModelResponse[T]":
        """Create a failed response."""
        return cls(success=False, message=message, error=error, retry_after_ms=retry_after_ms)


class ProviderError(Exception):
    """Raised inside provider adapters; never crosses the client boundary."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        retry_after_ms: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retry_after_ms = retry_after_ms


@dataclass(frozen=True)
class TokenUsage:
    """Token usage for one model call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class RetryContext:
    """Passed to ``on_retry`` observers before each backoff sleep."""

    attempt: int
    max_retries: int
    delay_ms: int
    error: ErrorCode
    message: str


@dataclass
class FunctionCall:
    """Represents a function/tool call from the LLM."""

    id: str
    name: str
    arguments: Dict[str, Any]

    @classmethod
    def from_openai(cls, call: Dict[str, Any]) -> "FunctionCall":
        """Parse from OpenAI tool_calls format."""
        func = call.get("function") or {}
        args_raw = func.get("arguments") or "{}"
        return cls(
            id=call.get("id", "") or "",
            name=func.get("name", "") or "",
            arguments=parse_arguments(args_raw),
        )

    def to_openai(self) -> Dict[str, Any]:
        """Serialize back to the assistant ``tool_calls`` entry format."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments)},
        }


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """Decode tool-call arguments, keeping undecodable input under ``raw``."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        args = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {"raw": raw}
    return args if isinstance(args, dict) else {"raw": raw}


@dataclass
class Completion:
    """A fully-assembled model reply."""

    content: str = ""
    tool_calls: List[FunctionCall] = field(default_factory=list)
    usage: Optional[TokenUsage] = None
    model: str = ""
    finish_reason: str = ""

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def is_empty(self) -> bool:
        """True when the model produced no text and no tool calls."""
        return not (self.content and self.content.strip()) and not self.tool_calls


@dataclass
class StreamChunk:
    """A single chunk from a streaming provider response.

    At most one content field is set per chunk; ``usage`` and
    ``finish_reason`` usually arrive on the last one.
    """

    text_delta: Optional[str] = None
    tool_call: Optional[FunctionCall] = None
    usage: Optional[Dict[str, Any]] = None
    finish_reason: Optional[str] = None
