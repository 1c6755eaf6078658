"""Configuration models and TOML loading."""

from taskpilot.config.loader import find_config_file, load_config
from taskpilot.config.models import AgentConfig, ProviderConfig, RetryConfig

__all__ = [
    "AgentConfig",
    "ProviderConfig",
    "RetryConfig",
    "find_config_file",
    "load_config",
]
