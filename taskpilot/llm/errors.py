"""Map transport, HTTP and SDK failures to :class:`ErrorCode`.

Raw provider text never reaches the user directly: every mapped error
carries a short, stable message prefixed with the provider name.  The
original text is kept only in debug logs.
"""

from __future__ import annotations

from typing import Mapping, Optional

import httpx
import openai

from taskpilot.llm.retry import extract_retry_after_ms
from taskpilot.llm.types import ErrorCode, ProviderError
from taskpilot.utils.log import debug

_CONTEXT_WINDOW_KEYWORDS = (
    "context_length_exceeded",
    "context window",
    "maximum context length",
    "token limit",
    "context length",
    "too many tokens",
    "input is too long",
    "prompt is too long",
)

_MESSAGES = {
    ErrorCode.AUTHENTICATION_ERROR: "authentication failed; check the API key",
    ErrorCode.RATE_LIMITED: "rate limit exceeded",
    ErrorCode.MODEL_NOT_FOUND: "model not found or not deployed",
    ErrorCode.CONTEXT_LENGTH_EXCEEDED: "request exceeds the model context window",
    ErrorCode.NETWORK_ERROR: "network error talking to the provider",
    ErrorCode.TIMEOUT: "request timed out",
    ErrorCode.INVALID_RESPONSE: "provider returned an invalid response",
    ErrorCode.UNKNOWN: "unexpected provider error",
}


def is_context_window_error(status_code: Optional[int], error_msg: str) -> bool:
    """Detect context-window-exceeded errors from status code and message."""
    lowered = (error_msg or "").lower()
    if status_code not in (None, 400, 413):
        return False
    return any(kw in lowered for kw in _CONTEXT_WINDOW_KEYWORDS)


def provider_error(
    provider: str,
    code: ErrorCode,
    detail: str = "",
    retry_after_ms: Optional[int] = None,
) -> ProviderError:
    """Build a ProviderError with a sanitized, user-safe message."""
    if detail:
        debug("llm", f"{provider}: {code.value}: {detail[:500]}")
    message = f"{provider}: {_MESSAGES.get(code, _MESSAGES[ErrorCode.UNKNOWN])}"
    status = _status_suffix(detail)
    if status:
        message = f"{message} ({status})"
    return ProviderError(code, message, retry_after_ms=retry_after_ms)


def _status_suffix(detail: str) -> str:
    if detail.startswith("HTTP "):
        return detail.split(":", 1)[0]
    return ""


def error_from_status(
    provider: str,
    status_code: int,
    error_msg: str,
    headers: Optional[Mapping[str, str]] = None,
) -> ProviderError:
    """Map an HTTP status to the appropriate ErrorCode."""
    detail = f"HTTP {status_code}: {error_msg}"
    retry_after = extract_retry_after_ms(headers)

    if is_context_window_error(status_code, error_msg):
        code = ErrorCode.CONTEXT_LENGTH_EXCEEDED
    elif status_code in (401, 403):
        code = ErrorCode.AUTHENTICATION_ERROR
    elif status_code == 404:
        code = ErrorCode.MODEL_NOT_FOUND
    elif status_code == 429:
        code = ErrorCode.RATE_LIMITED
    elif status_code in (408, 504):
        code = ErrorCode.TIMEOUT
    elif status_code >= 500:
        code = ErrorCode.NETWORK_ERROR
    else:
        code = ErrorCode.UNKNOWN
    return provider_error(provider, code, detail, retry_after_ms=retry_after)


def classify_exception(provider: str, exc: BaseException) -> ProviderError:
    """Map an arbitrary exception raised by a provider call to a ProviderError."""
    if isinstance(exc, ProviderError):
        return exc

    # openai SDK (status errors first: they subclass APIError too)
    if isinstance(exc, openai.APIStatusError):
        return error_from_status(
            provider, exc.status_code, str(exc.message), exc.response.headers
        )
    if isinstance(exc, openai.APITimeoutError):
        return provider_error(provider, ErrorCode.TIMEOUT, str(exc))
    if isinstance(exc, openai.APIConnectionError):
        return provider_error(provider, ErrorCode.NETWORK_ERROR, str(exc))
    if isinstance(exc, openai.APIResponseValidationError):
        return provider_error(provider, ErrorCode.INVALID_RESPONSE, str(exc))

    # httpx transport
    if isinstance(exc, httpx.TimeoutException):
        return provider_error(provider, ErrorCode.TIMEOUT, str(exc))
    if isinstance(exc, httpx.HTTPStatusError):
        return error_from_status(
            provider, exc.response.status_code, exc.response.text, exc.response.headers
        )
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return provider_error(provider, ErrorCode.NETWORK_ERROR, str(exc))
    if isinstance(exc, TimeoutError):
        return provider_error(provider, ErrorCode.TIMEOUT, str(exc))
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return provider_error(provider, ErrorCode.INVALID_RESPONSE, f"{type(exc).__name__}: {exc}")

    return provider_error(provider, ErrorCode.UNKNOWN, f"{type(exc).__name__}: {exc}")
