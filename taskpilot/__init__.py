"""
taskpilot - a tool-augmented LLM agent runtime for the command line.

Usage:
    taskpilot run "Summarize the README"

Heavy modules (core.agent, llm.client, tools.registry) are NOT re-exported
here to keep imports cheap.  Import them directly::

    from taskpilot.core.agent import Agent
    from taskpilot.llm.client import LLMClient
    from taskpilot.tools.registry import ToolRegistry
"""

__version__ = "0.3.0"

from taskpilot.llm.types import ErrorCode, ModelResponse

__all__ = [
    "ErrorCode",
    "ModelResponse",
    "__version__",
]
