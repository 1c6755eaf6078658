"""Tool registry for taskpilot - holds definitions, initializes and dispatches tools."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from taskpilot.config.models import AgentConfig
from taskpilot.tools.base import (
    Tool,
    ToolContext,
    ToolDefinition,
    ToolError,
    ToolErrorCode,
    ToolInitContext,
    ToolResult,
)
from taskpilot.tools.policy import ToolPolicy
from taskpilot.tools.workspace import WorkspaceGuard
from taskpilot.utils.log import debug


@dataclass
class ToolStats:
    """Per-tool execution statistics."""

    executions: int = 0
    successes: int = 0
    total_ms: int = 0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.executions if self.executions else 0.0


class ToolRegistry:
    """Registry of tool definitions with memoized initialization.

    ``init`` for each tool id runs at most once per registry, even when
    several threads ask for the same tool at the same time.  Different
    tools initialize independently.
    """

    def __init__(
        self,
        config: AgentConfig,
        workspace: WorkspaceGuard,
        policy: Optional[ToolPolicy] = None,
    ):
        self.config = config
        self.workspace = workspace
        self._policy = policy or ToolPolicy.from_config(config)
        self._definitions: Dict[str, ToolDefinition] = {}
        self._initialized: Dict[str, Tool] = {}
        self._init_locks: Dict[str, threading.Lock] = {}
        self._stats: Dict[str, ToolStats] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def register(self, definition: ToolDefinition) -> None:
        with self._lock:
            if definition.id in self._definitions:
                raise ValueError(f"Tool already registered: {definition.id}")
            self._definitions[definition.id] = definition
            self._init_locks[definition.id] = threading.Lock()
            self._stats[definition.id] = ToolStats()
            if definition.mutating:
                self._policy = self._policy.with_mutating([definition.id])

    def all(self) -> List[ToolDefinition]:
        """Every registered definition, in registration order."""
        with self._lock:
            return list(self._definitions.values())

    def get(self, tool_id: str) -> Optional[ToolDefinition]:
        with self._lock:
            return self._definitions.get(tool_id)

    @property
    def policy(self) -> ToolPolicy:
        return self._policy

    def is_enabled(self, agent_name: Optional[str], tool_id: str) -> bool:
        return tool_id in self._definitions and self._policy.enabled(agent_name, tool_id)

    def enabled(self, agent_name: Optional[str]) -> List[ToolDefinition]:
        """Definitions the permission policy allows for *agent_name*."""
        return [d for d in self.all() if self._policy.enabled(agent_name, d.id)]

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize(self, tool_id: str, agent_name: Optional[str] = None) -> Tool:
        """Return the initialized tool, running its ``init`` on first use.

        Raises:
            ToolError: NOT_FOUND for unknown ids
        """
        tool = self._initialized.get(tool_id)
        if tool is not None:
            return tool

        definition = self.get(tool_id)
        if definition is None:
            raise ToolError(f"Unknown tool: {tool_id}", ToolErrorCode.NOT_FOUND)

        with self._init_locks[tool_id]:
            tool = self._initialized.get(tool_id)
            if tool is not None:
                return tool
            start = time.time()
            tool = definition.init(
                ToolInitContext(
                    workspace=self.workspace,
                    config=self.config,
                    agent=agent_name or self.config.agent_name,
                )
            )
            self._initialized[tool_id] = tool
            debug("tools", f"initialized {tool_id} in {int((time.time() - start) * 1000)}ms")
            return tool

    def schemas(self, agent_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """LLM tool specs for every tool enabled for *agent_name*."""
        return [self.initialize(d.id, agent_name).schema() for d in self.enabled(agent_name)]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, tool_id: str, args: Optional[Dict[str, Any]], ctx: ToolContext) -> ToolResult:
        """Validate and run one tool call.

        Raises:
            ToolError: unknown or disabled tool, invalid arguments,
                cancellation, or any failure raised by the tool itself
        """
        if tool_id not in self._definitions:
            raise ToolError(f"Unknown tool: {tool_id}", ToolErrorCode.NOT_FOUND)
        if not self._policy.enabled(ctx.agent, tool_id):
            raise ToolError(
                f"Tool '{tool_id}' is not enabled for agent '{ctx.agent}'",
                ToolErrorCode.PERMISSION_DENIED,
            )

        tool = self.initialize(tool_id, ctx.agent)
        stats = self._stats[tool_id]
        start = time.time()
        success = False
        try:
            result = tool.run(args, ctx)
            success = True
            return result
        finally:
            elapsed = int((time.time() - start) * 1000)
            with self._lock:
                stats.executions += 1
                stats.total_ms += elapsed
                if success:
                    stats.successes += 1

    def stats(self) -> Dict[str, ToolStats]:
        with self._lock:
            return {k: ToolStats(v.executions, v.successes, v.total_ms) for k, v in self._stats.items()}


def create_registry(
    config: AgentConfig,
    workspace: Optional[WorkspaceGuard] = None,
    policy: Optional[ToolPolicy] = None,
) -> ToolRegistry:
    """Build a registry with every built-in tool registered."""
    from taskpilot.tools.builtin import builtin_tools

    workspace = workspace or WorkspaceGuard.from_config(
        config.workspace.root or None, config.workspace.writes_enabled
    )
    registry = ToolRegistry(config, workspace, policy)
    for definition in builtin_tools():
        registry.register(definition)
    return registry
