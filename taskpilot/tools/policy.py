"""Permission policy: the single predicate deciding which tools an agent sees."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional

from taskpilot.config.models import AgentConfig, AgentToolsConfig


@dataclass
class ToolPolicy:
    """Decides ``enabled(agent_name, tool_id)``.

    A tool is disabled when it is globally disabled, denied for the agent,
    missing from the agent's allowlist (if one is set), or mutating while
    the policy is readonly.  Everything else is enabled.
    """

    disabled: FrozenSet[str] = frozenset()
    readonly: bool = False
    agents: Dict[str, AgentToolsConfig] = field(default_factory=dict)
    mutating: FrozenSet[str] = frozenset()

    @classmethod
    def from_config(cls, config: AgentConfig, mutating: Iterable[str] = ()) -> "ToolPolicy":
        return cls(
            disabled=frozenset(config.tools.disabled),
            readonly=config.tools.readonly,
            agents=dict(config.agents),
            mutating=frozenset(mutating),
        )

    def with_mutating(self, tool_ids: Iterable[str]) -> "ToolPolicy":
        return ToolPolicy(
            disabled=self.disabled,
            readonly=self.readonly,
            agents=self.agents,
            mutating=self.mutating | frozenset(tool_ids),
        )

    def enabled(self, agent_name: Optional[str], tool_id: str) -> bool:
        if tool_id in self.disabled:
            return False
        if self.readonly and tool_id in self.mutating:
            return False

        rules = self.agents.get(agent_name or "")
        if rules is None:
            return True
        if tool_id in rules.deny:
            return False
        if rules.allow is not None and tool_id not in rules.allow:
            return False
        return True
