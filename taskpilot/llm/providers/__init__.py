"""Provider adapters and the name -> factory registry."""

from taskpilot.llm.providers.base import ChatModel
from taskpilot.llm.providers.registry import PROVIDERS, create_provider, resolve_model_name

__all__ = [
    "ChatModel",
    "PROVIDERS",
    "create_provider",
    "resolve_model_name",
]
