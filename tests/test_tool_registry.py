import threading
import time
from typing import List

import pytest
from pydantic import BaseModel, Field

from taskpilot.config.models import AgentConfig, AgentToolsConfig, ToolsConfig
from taskpilot.tools.base import (
    ToolError,
    ToolErrorCode,
    ToolResult,
    ToolSpec,
    ToolValidationError,
    define,
)
from taskpilot.tools.policy import ToolPolicy
from taskpilot.tools.registry import ToolRegistry, create_registry
from taskpilot.tools.workspace import WorkspaceGuard


class EchoParams(BaseModel):
    text: str = Field(description="Text to echo")
    times: int = Field(default=1, ge=1, le=3)


def echo_definition(calls: List[str], tool_id: str = "echo", mutating: bool = False, delay: float = 0.0):
    """A trivial tool whose init records each call."""

    def _init(init):
        calls.append(tool_id)
        if delay:
            time.sleep(delay)

        def execute(params: EchoParams, ctx) -> ToolResult:
            return ToolResult(title="echo", output=" ".join([params.text] * params.times))

        return ToolSpec(description="Echo text back", parameters=EchoParams, execute=execute)

    return define(tool_id, _init, mutating=mutating)


@pytest.fixture()
def registry(config, workspace):
    return ToolRegistry(config, WorkspaceGuard(root=workspace, writes_enabled=True))


def test_execute_validates_then_runs(registry, tool_ctx):
    registry.register(echo_definition([]))
    result = registry.execute("echo", {"text": "hi", "times": 2}, tool_ctx())
    assert result.output == "hi hi"
    assert registry.stats()["echo"].successes == 1


def test_validation_error_names_the_field(registry, tool_ctx):
    registry.register(echo_definition([]))
    with pytest.raises(ToolValidationError) as info:
        registry.execute("echo", {"text": "hi", "times": 9}, tool_ctx())
    assert info.value.code == ToolErrorCode.VALIDATION_ERROR
    assert info.value.message.startswith("Invalid arguments for echo: times:")


def test_missing_required_argument(registry, tool_ctx):
    registry.register(echo_definition([]))
    with pytest.raises(ToolValidationError, match="text"):
        registry.execute("echo", {}, tool_ctx())
    assert registry.stats()["echo"].executions == 1
    assert registry.stats()["echo"].successes == 0


def test_unknown_tool_is_not_found(registry, tool_ctx):
    with pytest.raises(ToolError) as info:
        registry.execute("nope", {}, tool_ctx())
    assert info.value.code == ToolErrorCode.NOT_FOUND


def test_duplicate_registration_is_rejected(registry):
    registry.register(echo_definition([]))
    with pytest.raises(ValueError):
        registry.register(echo_definition([]))


def test_init_is_memoized(registry):
    calls: List[str] = []
    registry.register(echo_definition(calls))
    first = registry.initialize("echo")
    second = registry.initialize("echo")
    assert first is second
    assert calls == ["echo"]


def test_init_runs_once_under_concurrent_first_use(registry):
    calls: List[str] = []
    registry.register(echo_definition(calls, delay=0.05))
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(registry.initialize("echo"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert calls == ["echo"]
    assert all(r is results[0] for r in results)


def test_different_tools_initialize_independently(registry):
    calls: List[str] = []
    registry.register(echo_definition(calls, "a"))
    registry.register(echo_definition(calls, "b"))
    registry.initialize("b")
    assert calls == ["b"]


def test_schema_has_json_schema_parameters(registry):
    registry.register(echo_definition([]))
    schema = registry.initialize("echo").schema()
    assert schema["name"] == "echo"
    assert schema["description"] == "Echo text back"
    assert schema["parameters"]["type"] == "object"
    assert schema["parameters"]["required"] == ["text"]
    assert "title" not in schema["parameters"]


def test_cancelled_context_never_executes(registry, tool_ctx):
    registry.register(echo_definition([]))
    ctx = tool_ctx()
    ctx.cancel.cancel()
    with pytest.raises(ToolError) as info:
        registry.execute("echo", {"text": "x"}, ctx)
    assert info.value.code == ToolErrorCode.CANCELLED


def test_policy_globally_disabled():
    policy = ToolPolicy(disabled=frozenset({"shell_command"}))
    assert not policy.enabled("default", "shell_command")
    assert policy.enabled("default", "read_file")


def test_policy_readonly_blocks_mutating_only():
    policy = ToolPolicy(readonly=True, mutating=frozenset({"write_file"}))
    assert not policy.enabled(None, "write_file")
    assert policy.enabled(None, "read_file")


def test_policy_agent_deny_and_allow():
    policy = ToolPolicy(
        agents={
            "reviewer": AgentToolsConfig(allow=["read_file", "grep_files"], deny=["grep_files"]),
            "builder": AgentToolsConfig(deny=["web_fetch"]),
        }
    )
    assert policy.enabled("reviewer", "read_file")
    assert not policy.enabled("reviewer", "grep_files")
    assert not policy.enabled("reviewer", "list_dir")
    assert not policy.enabled("builder", "web_fetch")
    assert policy.enabled("builder", "shell_command")
    assert policy.enabled("someone_else", "web_fetch")


def test_disabled_tool_is_permission_denied(config, workspace, tool_ctx):
    config.agents["reviewer"] = AgentToolsConfig(deny=["echo"])
    registry = ToolRegistry(config, WorkspaceGuard(root=workspace))
    registry.register(echo_definition([]))
    with pytest.raises(ToolError) as info:
        registry.execute("echo", {"text": "x"}, tool_ctx(agent="reviewer"))
    assert info.value.code == ToolErrorCode.PERMISSION_DENIED
    assert registry.execute("echo", {"text": "x"}, tool_ctx()).output == "x"


def test_registering_mutating_tool_extends_readonly_policy(workspace):
    config = AgentConfig(tools=ToolsConfig(readonly=True))
    registry = ToolRegistry(config, WorkspaceGuard(root=workspace))
    registry.register(echo_definition([], "scribble", mutating=True))
    registry.register(echo_definition([], "peek"))
    assert [d.id for d in registry.enabled("default")] == ["peek"]
    assert not registry.is_enabled("default", "scribble")


def test_builtin_registry_schemas_follow_policy(workspace):
    config = AgentConfig(
        workspace={"root": str(workspace), "writes_enabled": False},
        tools=ToolsConfig(readonly=True, disabled=["web_fetch"]),
    )
    registry = create_registry(config)
    names = [s["name"] for s in registry.schemas()]
    assert "read_file" in names
    assert "grep_files" in names
    assert "todo_read" in names
    assert "write_file" not in names
    assert "shell_command" not in names
    assert "web_fetch" not in names
