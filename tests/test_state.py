import pytest

from taskpilot.core.state import TERMINAL_STATES, AgentState, InvalidTransition, StateMachine


def test_happy_path_with_tools():
    machine = StateMachine()
    for state in (
        AgentState.AWAITING_MODEL,
        AgentState.TOOL_CALLS_REQUESTED,
        AgentState.EXECUTING_TOOLS,
        AgentState.AWAITING_MODEL,
        AgentState.ANSWERED,
    ):
        machine.transition(state)
    assert machine.is_terminal
    assert machine.history[0] == AgentState.IDLE
    assert len(machine.history) == 6


@pytest.mark.parametrize(
    "state",
    [AgentState.IDLE, AgentState.AWAITING_MODEL, AgentState.TOOL_CALLS_REQUESTED, AgentState.EXECUTING_TOOLS],
)
def test_cancel_is_reachable_from_every_live_state(state):
    machine = StateMachine()
    path = {
        AgentState.IDLE: [],
        AgentState.AWAITING_MODEL: [AgentState.AWAITING_MODEL],
        AgentState.TOOL_CALLS_REQUESTED: [AgentState.AWAITING_MODEL, AgentState.TOOL_CALLS_REQUESTED],
        AgentState.EXECUTING_TOOLS: [
            AgentState.AWAITING_MODEL,
            AgentState.TOOL_CALLS_REQUESTED,
            AgentState.EXECUTING_TOOLS,
        ],
    }[state]
    for step in path:
        machine.transition(step)
    assert machine.transition(AgentState.CANCELED) == (state, AgentState.CANCELED)


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
def test_terminal_states_are_final(terminal):
    machine = StateMachine()
    machine.transition(AgentState.AWAITING_MODEL)
    machine.transition(terminal)
    with pytest.raises(InvalidTransition):
        machine.transition(AgentState.AWAITING_MODEL)


def test_invalid_transition_keeps_state():
    machine = StateMachine()
    with pytest.raises(InvalidTransition) as info:
        machine.transition(AgentState.EXECUTING_TOOLS)
    assert info.value.old == AgentState.IDLE
    assert info.value.new == AgentState.EXECUTING_TOOLS
    assert machine.state == AgentState.IDLE
    assert machine.history == [AgentState.IDLE]
