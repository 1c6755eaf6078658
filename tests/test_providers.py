import json

import httpx
import openai
import pytest

from taskpilot.llm.providers.anthropic import AnthropicModel, convert_messages
from taskpilot.llm.providers.openai_compat import OpenAICompatibleModel
from taskpilot.llm.providers.openai_format import prepare_messages
from taskpilot.llm.providers.openai_sdk import OpenAISDKModel
from taskpilot.llm.types import ErrorCode, FunctionCall, ProviderError, TokenUsage

TOOLS = [{"name": "read_file", "description": "Read", "parameters": {"type": "object", "properties": {}}}]


def sse(*events):
    lines = [f"data: {json.dumps(e)}" for e in events]
    return ("\n\n".join(lines) + "\n\ndata: [DONE]\n\n").encode()


def compat_model(handler, **kwargs):
    return OpenAICompatibleModel(
        provider="chutes",
        model="glm",
        base_url="https://llm.example/v1/",
        api_key="secret",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_compat_complete_sends_tools_and_parses_calls():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "glm",
                "choices": [
                    {
                        "finish_reason": "tool_calls",
                        "message": {
                            "content": None,
                            "tool_calls": [
                                {
                                    "id": "c1",
                                    "type": "function",
                                    "function": {"name": "read_file", "arguments": '{"path": "a"}'},
                                }
                            ],
                        },
                    }
                ],
                "usage": {"prompt_tokens": 7, "completion_tokens": 3},
            },
        )

    model = compat_model(handler, temperature=0.2)
    completion = model.complete([{"role": "user", "content": "hi"}], TOOLS)

    assert seen["url"] == "https://llm.example/v1/chat/completions"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["tools"][0]["function"]["name"] == "read_file"
    assert seen["body"]["tool_choice"] == "auto"
    assert seen["body"]["temperature"] == 0.2
    assert completion.tool_calls == [FunctionCall(id="c1", name="read_file", arguments={"path": "a"})]
    assert completion.content == ""
    assert completion.usage == TokenUsage(7, 3, 10)


def test_compat_reasoning_models_skip_temperature():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    model = OpenAICompatibleModel(
        provider="local",
        model="deepseek-r1:7b",
        base_url="http://localhost:11434/v1",
        temperature=0.5,
        transport=httpx.MockTransport(handler),
    )
    model.complete([{"role": "user", "content": "hi"}])
    assert "temperature" not in bodies[0]


def test_compat_http_errors_are_classified():
    def handler(request):
        return httpx.Response(
            429,
            headers={"retry-after": "2"},
            json={"error": {"message": "slow down, key sk-123"}},
        )

    with pytest.raises(ProviderError) as info:
        compat_model(handler).complete([{"role": "user", "content": "hi"}])
    assert info.value.code == ErrorCode.RATE_LIMITED
    assert info.value.retry_after_ms == 2000
    assert "sk-123" not in info.value.message


def test_compat_stream_yields_text_then_tool_calls():
    body = sse(
        {"choices": [{"delta": {"content": "Hel"}}]},
        {"choices": [{"delta": {"content": "lo"}}]},
        {
            "choices": [
                {
                    "delta": {
                        "tool_calls": [
                            {"index": 0, "id": "c1", "function": {"name": "grep_files", "arguments": '{"pat'}}
                        ]
                    }
                }
            ]
        },
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": 'tern": "x"}'}}]}}]},
        {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
        {"choices": [], "usage": {"prompt_tokens": 4, "completion_tokens": 2, "total_tokens": 6}},
    )

    def handler(request):
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    chunks = list(compat_model(handler).open_stream([{"role": "user", "content": "hi"}]))
    text = "".join(c.text_delta for c in chunks if c.text_delta)
    calls = [c.tool_call for c in chunks if c.tool_call]
    last = chunks[-1]

    assert text == "Hello"
    assert calls == [FunctionCall(id="c1", name="grep_files", arguments={"pattern": "x"})]
    assert last.finish_reason == "tool_calls"
    assert last.usage["total_tokens"] == 6


def test_compat_stream_establishment_error_raises_immediately():
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "bad key"}})

    with pytest.raises(ProviderError) as info:
        compat_model(handler).open_stream([{"role": "user", "content": "hi"}])
    assert info.value.code == ErrorCode.AUTHENTICATION_ERROR


def test_compat_stream_error_event_raises_during_iteration():
    body = sse({"choices": [{"delta": {"content": "a"}}]}, {"error": {"message": "overloaded"}})

    def handler(request):
        return httpx.Response(200, content=body)

    stream = compat_model(handler).open_stream([{"role": "user", "content": "hi"}])
    assert next(stream).text_delta == "a"
    with pytest.raises(ProviderError) as info:
        next(stream)
    assert info.value.code == ErrorCode.INVALID_RESPONSE


def test_prepare_messages_drops_bookkeeping_keys():
    prepared = prepare_messages(
        [
            {"role": "assistant", "content": "", "tool_calls": [{"id": "c"}], "context_file": "x.json"},
            {"role": "tool", "content": "out", "tool_call_id": "c", "name": "read_file"},
        ]
    )
    assert prepared[0] == {"role": "assistant", "content": None, "tool_calls": [{"id": "c"}]}
    assert prepared[1]["tool_call_id"] == "c"


def test_convert_messages_for_anthropic():
    call = FunctionCall(id="c1", name="read_file", arguments={"path": "a"})
    call2 = FunctionCall(id="c2", name="list_dir", arguments={})
    system, converted = convert_messages(
        [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "looking", "tool_calls": [call.to_openai(), call2.to_openai()]},
            {"role": "tool", "tool_call_id": "c1", "content": "A"},
            {"role": "tool", "tool_call_id": "c2", "content": "B"},
            {"role": "assistant", "content": "done"},
        ]
    )

    assert system == "be brief"
    assert [m["role"] for m in converted] == ["user", "assistant", "user", "assistant"]
    assert converted[1]["content"][0] == {"type": "text", "text": "looking"}
    assert converted[1]["content"][1]["input"] == {"path": "a"}
    assert [b["tool_use_id"] for b in converted[2]["content"]] == ["c1", "c2"]


def test_anthropic_complete_parses_blocks():
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "claude",
                "stop_reason": "tool_use",
                "content": [
                    {"type": "text", "text": "Reading"},
                    {"type": "tool_use", "id": "tu1", "name": "read_file", "input": {"path": "a"}},
                ],
                "usage": {"input_tokens": 12, "output_tokens": 4},
            },
        )

    model = AnthropicModel(model="claude", api_key="k", transport=httpx.MockTransport(handler))
    completion = model.complete(
        [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}], TOOLS
    )

    assert seen["headers"]["x-api-key"] == "k"
    assert seen["body"]["system"] == "sys"
    assert seen["body"]["tools"][0]["input_schema"] == TOOLS[0]["parameters"]
    assert completion.content == "Reading"
    assert completion.tool_calls[0].id == "tu1"
    assert completion.usage == TokenUsage(12, 4, 16)
    assert completion.finish_reason == "tool_use"


def test_anthropic_stream_events():
    body = sse(
        {"type": "message_start", "message": {"usage": {"input_tokens": 9}}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}},
        {"type": "content_block_start", "index": 1, "content_block": {"type": "tool_use", "id": "t", "name": "todo_read"}},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": "{}"}},
        {"type": "content_block_stop", "index": 1},
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 3}},
        {"type": "message_stop"},
    )

    def handler(request):
        return httpx.Response(200, content=body)

    model = AnthropicModel(model="claude", api_key="k", transport=httpx.MockTransport(handler))
    chunks = list(model.open_stream([{"role": "user", "content": "hi"}]))

    assert chunks[0].text_delta == "Hi"
    assert chunks[1].tool_call == FunctionCall(id="t", name="todo_read", arguments={})
    assert chunks[-1].finish_reason == "tool_use"
    assert chunks[-1].usage == {"input_tokens": 9, "output_tokens": 3}


def test_openai_sdk_adapter_over_mock_transport():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-1",
                "object": "chat.completion",
                "created": 0,
                "model": "gpt-4o-mini",
                "choices": [
                    {
                        "index": 0,
                        "finish_reason": "stop",
                        "message": {"role": "assistant", "content": "hi there"},
                    }
                ],
                "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
            },
        )

    client = openai.OpenAI(
        api_key="k",
        base_url="https://api.example/v1",
        max_retries=0,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    model = OpenAISDKModel("openai", "gpt-4o-mini", client, max_tokens=100)
    completion = model.complete([{"role": "user", "content": "hi"}], TOOLS)

    assert completion.content == "hi there"
    assert completion.usage == TokenUsage(3, 2, 5)
    assert bodies[0]["max_completion_tokens"] == 100
    assert bodies[0]["tools"][0]["function"]["name"] == "read_file"
    model.close()


def test_openai_sdk_status_errors_are_classified():
    def handler(request):
        return httpx.Response(404, json={"error": {"message": "no such model", "type": "invalid_request_error"}})

    client = openai.OpenAI(
        api_key="k",
        base_url="https://api.example/v1",
        max_retries=0,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    with pytest.raises(ProviderError) as info:
        OpenAISDKModel("openai", "nope", client).complete([{"role": "user", "content": "hi"}])
    assert info.value.code == ErrorCode.MODEL_NOT_FOUND
