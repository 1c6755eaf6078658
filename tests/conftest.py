from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import pytest

from taskpilot.config.models import (
    AgentConfig,
    ContextConfig,
    ProviderConfig,
    RetryConfig,
    ToolsConfig,
    WorkspaceConfig,
)
from taskpilot.core.callbacks import AgentCallbacks
from taskpilot.llm.providers.base import ChatModel
from taskpilot.llm.types import Completion, FunctionCall, ProviderError, StreamChunk, TokenUsage
from taskpilot.output.events import Event
from taskpilot.prompts.environment import EnvironmentInfo
from taskpilot.tools.base import ToolContext
from taskpilot.utils.cancellation import CancellationToken

Reply = Union[Completion, Exception]


def text_reply(text: str, prompt_tokens: int = 10, completion_tokens: int = 5) -> Completion:
    return Completion(
        content=text,
        usage=TokenUsage(prompt_tokens, completion_tokens, prompt_tokens + completion_tokens),
        model="fake-model",
        finish_reason="stop",
    )


def tool_reply(*calls: FunctionCall, text: str = "") -> Completion:
    return Completion(
        content=text,
        tool_calls=list(calls),
        usage=TokenUsage(10, 5, 15),
        model="fake-model",
        finish_reason="tool_calls",
    )


class FakeChatModel(ChatModel):
    """Scripted ChatModel: each call pops the next reply (or raises it)."""

    def __init__(self, replies: Optional[List[Reply]] = None, model: str = "fake-model"):
        self.provider = "fake"
        self.model = model
        self.replies: List[Reply] = list(replies or [])
        self.requests: List[List[Dict[str, Any]]] = []
        self.tools_seen: List[Optional[List[Dict[str, Any]]]] = []
        self.closed = False

    def _next(self, messages, tools) -> Completion:
        self.requests.append([dict(m) for m in messages])
        self.tools_seen.append(tools)
        if not self.replies:
            raise AssertionError("FakeChatModel ran out of scripted replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def complete(self, messages, tools=None) -> Completion:
        return self._next(messages, tools)

    def open_stream(self, messages, tools=None) -> Iterator[StreamChunk]:
        reply = self._next(messages, tools)
        return self._chunks(reply)

    def _chunks(self, reply: Completion) -> Iterator[StreamChunk]:
        words = reply.content.split(" ") if reply.content else []
        for i, word in enumerate(words):
            yield StreamChunk(text_delta=word if i == 0 else " " + word)
        for call in reply.tool_calls:
            yield StreamChunk(tool_call=call)
        usage = reply.usage.to_dict() if reply.usage else None
        yield StreamChunk(usage=usage, finish_reason=reply.finish_reason)

    def close(self) -> None:
        self.closed = True


class RecordingCallbacks(AgentCallbacks):
    """Records every event and the thread it arrived on."""

    def __init__(self) -> None:
        self.events: List[Event] = []
        self.threads: List[int] = []
        self.chunks: List[str] = []
        self.answers: List[str] = []
        self.errors: List[Dict[str, str]] = []
        self.tool_starts: List[str] = []
        self.tool_ends: List[Dict[str, Any]] = []
        self.canceled: List[str] = []

    def handle(self, event: Event) -> None:
        self.events.append(event)
        self.threads.append(threading.get_ident())
        super().handle(event)

    @property
    def types(self) -> List[str]:
        return [e.type.value for e in self.events]

    def on_llm_stream(self, chunk: str) -> None:
        self.chunks.append(chunk)

    def on_tool_start(self, name: str, args: Dict[str, Any]) -> None:
        self.tool_starts.append(name)

    def on_tool_end(self, name: str, result: Dict[str, Any]) -> None:
        self.tool_ends.append(dict(result, name=name))

    def on_error(self, error: Dict[str, str]) -> None:
        self.errors.append(error)

    def on_agent_end(self, answer: str) -> None:
        self.answers.append(answer)

    def on_agent_canceled(self, reason: str) -> None:
        self.canceled.append(reason)


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture()
def config(tmp_path: Path, workspace: Path, monkeypatch: pytest.MonkeyPatch) -> AgentConfig:
    monkeypatch.delenv("TASKPILOT_DEBUG", raising=False)
    return AgentConfig(
        provider="fake",
        providers={"fake": ProviderConfig(model="fake-model")},
        streaming=False,
        retry=RetryConfig(max_retries=2, base_delay_ms=1, max_delay_ms=5, enable_jitter=False),
        tools=ToolsConfig(poll_interval_s=0.01),
        workspace=WorkspaceConfig(root=str(workspace), writes_enabled=True),
        context=ContextConfig(dir=str(tmp_path / "context")),
    )


@pytest.fixture()
def fake_model() -> FakeChatModel:
    return FakeChatModel()


@pytest.fixture()
def fake_providers(fake_model: FakeChatModel):
    """Provider table whose only entry hands out ``fake_model``."""
    return {"fake": lambda name, cfg, config: fake_model}


@pytest.fixture()
def recorder() -> RecordingCallbacks:
    return RecordingCallbacks()


@pytest.fixture()
def environment(workspace: Path) -> EnvironmentInfo:
    return EnvironmentInfo(
        cwd=str(workspace),
        is_git_repo=False,
        platform="linux",
        os_version="Linux test",
        shell="/bin/sh",
        today="2026-01-01",
    )


@pytest.fixture()
def tool_ctx():
    def _make(cancel: Optional[CancellationToken] = None, on_metadata=None, agent: str = "default"):
        return ToolContext(
            session_id="s1",
            message_id="m1",
            agent=agent,
            call_id="call_1",
            cancel=cancel or CancellationToken(),
            on_metadata=on_metadata,
        )

    return _make


@pytest.fixture()
def make_agent(config, fake_providers, recorder, environment):
    from taskpilot.core.agent import Agent
    from taskpilot.llm.client import LLMClient

    def _make(**kwargs):
        cfg = kwargs.pop("config", config)
        return Agent(
            config=cfg,
            client=LLMClient(cfg, providers=kwargs.pop("providers", fake_providers)),
            callbacks=[recorder],
            environment=environment,
            **kwargs,
        )

    return _make


def provider_error(code, message: str = "boom", retry_after_ms=None) -> ProviderError:
    return ProviderError(code, message, retry_after_ms=retry_after_ms)
