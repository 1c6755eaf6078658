"""Orchestrator state machine."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, List, Tuple


class AgentState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    TOOL_CALLS_REQUESTED = "tool_calls_requested"
    EXECUTING_TOOLS = "executing_tools"
    ANSWERED = "answered"
    CANCELED = "canceled"
    FAILED = "failed"


TERMINAL_STATES: FrozenSet[AgentState] = frozenset(
    {AgentState.ANSWERED, AgentState.CANCELED, AgentState.FAILED}
)

# CANCELED is reachable from every non-terminal state
TRANSITIONS: Dict[AgentState, FrozenSet[AgentState]] = {
    AgentState.IDLE: frozenset({AgentState.AWAITING_MODEL, AgentState.CANCELED, AgentState.FAILED}),
    AgentState.AWAITING_MODEL: frozenset(
        {
            AgentState.TOOL_CALLS_REQUESTED,
            AgentState.ANSWERED,
            AgentState.CANCELED,
            AgentState.FAILED,
        }
    ),
    AgentState.TOOL_CALLS_REQUESTED: frozenset({AgentState.EXECUTING_TOOLS, AgentState.CANCELED}),
    AgentState.EXECUTING_TOOLS: frozenset(
        {AgentState.AWAITING_MODEL, AgentState.CANCELED, AgentState.FAILED}
    ),
    AgentState.ANSWERED: frozenset(),
    AgentState.CANCELED: frozenset(),
    AgentState.FAILED: frozenset(),
}


class InvalidTransition(RuntimeError):
    """Raised on a transition the state table does not allow."""

    def __init__(self, old: AgentState, new: AgentState):
        super().__init__(f"Invalid transition {old.value} -> {new.value}")
        self.old = old
        self.new = new


class StateMachine:
    """Tracks the current state and the full path taken during one run."""

    def __init__(self) -> None:
        self.state = AgentState.IDLE
        self.history: List[AgentState] = [AgentState.IDLE]

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can_transition(self, new: AgentState) -> bool:
        return new in TRANSITIONS[self.state]

    def transition(self, new: AgentState) -> Tuple[AgentState, AgentState]:
        old = self.state
        if not self.can_transition(new):
            raise InvalidTransition(old, new)
        self.state = new
        self.history.append(new)
        return old, new
