"""LLM module - provider-abstracted model invocation with retries.

Only the dependency-free value types are re-exported here.  Import the
client directly::

    from taskpilot.llm.client import LLMClient
"""

from taskpilot.llm.types import (
    Completion,
    ErrorCode,
    FunctionCall,
    ModelResponse,
    RetryContext,
    TokenUsage,
)

__all__ = [
    "Completion",
    "ErrorCode",
    "FunctionCall",
    "ModelResponse",
    "RetryContext",
    "TokenUsage",
]
