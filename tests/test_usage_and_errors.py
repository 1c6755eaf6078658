from types import SimpleNamespace

import httpx
import pytest

from taskpilot.llm.errors import classify_exception, error_from_status, is_context_window_error
from taskpilot.llm.types import ErrorCode, ProviderError, TokenUsage
from taskpilot.llm.usage import extract_token_usage


@pytest.mark.parametrize(
    "raw",
    [
        {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
        {"input_tokens": 12, "output_tokens": 3},
        {"promptTokens": 12, "completionTokens": 3, "totalTokens": 15},
        {"inputTokens": 12, "outputTokens": 3},
        {"usage": {"prompt_tokens": 12, "completion_tokens": 3}},
        {"response_metadata": {"token_usage": {"prompt_tokens": 12, "completion_tokens": 3}}},
        {"usage_metadata": {"input_tokens": 12, "output_tokens": 3}},
        SimpleNamespace(prompt_tokens=12, completion_tokens=3, total_tokens=15),
    ],
)
def test_usage_shapes(raw):
    assert extract_token_usage(raw) == TokenUsage(12, 3, 15)


def test_usage_total_preferred_when_present():
    usage = extract_token_usage({"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 10})
    assert usage.total_tokens == 10


@pytest.mark.parametrize("raw", [None, {}, "text", 42, {"foo": 1}, {"usage": None}])
def test_usage_absent_returns_none(raw):
    assert extract_token_usage(raw) is None


def test_usage_from_pydantic_like_object():
    class Dumpable:
        def model_dump(self):
            return {"prompt_tokens": 4, "completion_tokens": 6}

    assert extract_token_usage(Dumpable()) == TokenUsage(4, 6, 10)


@pytest.mark.parametrize(
    "status,code",
    [
        (401, ErrorCode.AUTHENTICATION_ERROR),
        (403, ErrorCode.AUTHENTICATION_ERROR),
        (404, ErrorCode.MODEL_NOT_FOUND),
        (429, ErrorCode.RATE_LIMITED),
        (408, ErrorCode.TIMEOUT),
        (504, ErrorCode.TIMEOUT),
        (500, ErrorCode.NETWORK_ERROR),
        (503, ErrorCode.NETWORK_ERROR),
        (418, ErrorCode.UNKNOWN),
    ],
)
def test_status_mapping(status, code):
    err = error_from_status("openai", status, "detail")
    assert err.code == code
    assert err.message.startswith("openai: ")
    assert f"HTTP {status}" in err.message


def test_context_window_detected_from_message():
    err = error_from_status("openai", 400, "This model's maximum context length is 8192 tokens")
    assert err.code == ErrorCode.CONTEXT_LENGTH_EXCEEDED
    assert not is_context_window_error(500, "context length")


def test_raw_provider_text_is_not_exposed():
    err = error_from_status("chutes", 401, "invalid key sk-live-abcdef")
    assert "sk-live" not in err.message


def test_retry_after_header_is_kept():
    err = error_from_status("openai", 429, "slow", {"retry-after": "3"})
    assert err.retry_after_ms == 3000


def test_classify_transport_errors():
    request = httpx.Request("POST", "http://x/chat/completions")
    assert classify_exception("p", httpx.ReadTimeout("t", request=request)).code == ErrorCode.TIMEOUT
    assert classify_exception("p", httpx.ConnectError("c", request=request)).code == ErrorCode.NETWORK_ERROR
    assert classify_exception("p", ConnectionResetError()).code == ErrorCode.NETWORK_ERROR
    assert classify_exception("p", TimeoutError()).code == ErrorCode.TIMEOUT
    assert classify_exception("p", ValueError("bad json")).code == ErrorCode.INVALID_RESPONSE
    assert classify_exception("p", RuntimeError("?")).code == ErrorCode.UNKNOWN


def test_classify_http_status_error():
    request = httpx.Request("POST", "http://x")
    response = httpx.Response(429, request=request, headers={"retry-after-ms": "50"}, text="busy")
    err = classify_exception("p", httpx.HTTPStatusError("busy", request=request, response=response))
    assert err.code == ErrorCode.RATE_LIMITED
    assert err.retry_after_ms == 50


def test_classify_passes_provider_errors_through():
    original = ProviderError(ErrorCode.MODEL_NOT_FOUND, "p: gone")
    assert classify_exception("p", original) is original
