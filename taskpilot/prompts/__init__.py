"""System prompt construction."""

from taskpilot.prompts.environment import (
    SYSTEM_PROMPT,
    EnvironmentInfo,
    build_system_prompt,
    detect_environment,
)

__all__ = ["SYSTEM_PROMPT", "EnvironmentInfo", "build_system_prompt", "detect_environment"]
