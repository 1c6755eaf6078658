"""Core module - agent orchestrator, state machine and callbacks.

``taskpilot.core.agent`` pulls in the LLM and tool layers; import it
directly::

    from taskpilot.core.agent import Agent
"""

from taskpilot.core.callbacks import AgentCallbacks
from taskpilot.core.state import AgentState, InvalidTransition, StateMachine

__all__ = ["AgentCallbacks", "AgentState", "InvalidTransition", "StateMachine"]
