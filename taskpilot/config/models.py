"""Pydantic models for taskpilot configuration."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from taskpilot.config import defaults


class OutputMode(str, Enum):
    """Output mode for the CLI."""

    HUMAN = "human"
    JSON = "json"


class ProviderConfig(BaseModel):
    """Credentials, endpoint and model for one provider."""

    api_key: Optional[str] = Field(default=None, description="Inline API key (prefer api_key_env)")
    api_key_env: List[str] = Field(default=[], description="Env vars checked for the API key")
    base_url: Optional[str] = Field(default=None, description="Endpoint override")
    model: Optional[str] = Field(default=None, description="Model name")
    deployment: Optional[str] = Field(default=None, description="Azure deployment name")
    api_version: Optional[str] = Field(default=None, description="Azure API version")
    model_alias: Optional[str] = Field(default=None, description="Foundry-style model alias")

    def get_api_key(self) -> Optional[str]:
        """Return the inline key or the first non-empty env var, else None."""
        if self.api_key:
            return self.api_key
        for var in self.api_key_env:
            key = os.environ.get(var)
            if key:
                return key
        return None


def _default_providers() -> Dict[str, ProviderConfig]:
    return {
        "openai": ProviderConfig(
            api_key_env=["OPENAI_API_KEY"],
            model="gpt-4o-mini",
        ),
        "azure": ProviderConfig(
            api_key_env=["AZURE_OPENAI_API_KEY"],
            base_url=os.environ.get("AZURE_OPENAI_ENDPOINT"),
            deployment=os.environ.get("AZURE_OPENAI_DEPLOYMENT"),
            api_version="2024-10-21",
        ),
        "anthropic": ProviderConfig(
            api_key_env=["ANTHROPIC_API_KEY"],
            base_url="https://api.anthropic.com/v1",
            model="claude-sonnet-4-5",
        ),
        "chutes": ProviderConfig(
            api_key_env=["CHUTES_API_TOKEN", "CHUTES_API_KEY"],
            base_url="https://llm.chutes.ai/v1",
            model="zai-org/GLM-4.7-TEE",
        ),
        "local": ProviderConfig(
            base_url="http://localhost:11434/v1",
            model="qwen3:8b",
        ),
    }


class RetryConfig(BaseModel):
    """Configuration for model-call retries."""

    max_retries: int = Field(default=defaults.DEFAULT_MAX_RETRIES, ge=0, description="Retries after the first attempt")
    base_delay_ms: int = Field(default=defaults.DEFAULT_BASE_DELAY_MS, ge=0, description="Base backoff delay in ms")
    max_delay_ms: int = Field(default=defaults.DEFAULT_MAX_DELAY_MS, ge=0, description="Backoff cap in ms")
    enable_jitter: bool = Field(default=True, description="Randomize delays by +/- jitter_factor")
    jitter_factor: float = Field(default=defaults.DEFAULT_JITTER_FACTOR, ge=0.0, le=1.0)


class ToolsConfig(BaseModel):
    """Configuration for available tools."""

    disabled: List[str] = Field(default=[], description="Tool ids disabled for every agent")
    readonly: bool = Field(default=False, description="Deny all mutating tools")
    max_parallel_calls: int = Field(default=4, ge=1, description="Concurrent tool calls per turn")
    shell_timeout_ms: int = Field(default=defaults.SHELL_TIMEOUT_MS, description="Default shell timeout")
    fetch_timeout_s: float = Field(default=30.0, description="web_fetch request timeout")
    poll_interval_s: float = Field(default=0.1, gt=0, description="Cancellation poll interval")


class AgentToolsConfig(BaseModel):
    """Per-agent tool permissions."""

    allow: Optional[List[str]] = Field(default=None, description="If set, only these tools")
    deny: List[str] = Field(default=[], description="Tools denied to this agent")


class WorkspaceConfig(BaseModel):
    """Configuration for the file-system sandbox."""

    root: str = Field(default="", description="Workspace root (empty = env or cwd)")
    writes_enabled: bool = Field(
        default=None, validate_default=True, description="Allow file-writing tools"
    )

    @field_validator("writes_enabled", mode="before")
    @classmethod
    def default_from_env(cls, v):
        """Fall back to AGENT_FILESYSTEM_WRITES_ENABLED when unset."""
        if v is None:
            return os.environ.get(defaults.WRITES_ENABLED_ENV_VAR, "").lower() in ("1", "true", "yes")
        return v


class ContextConfig(BaseModel):
    """Configuration for persisted tool outputs."""

    dir: str = Field(default="", description="Context directory (empty = <workspace>/.taskpilot/context)")
    inline_limit: int = Field(default=defaults.CONTEXT_INLINE_LIMIT, description="Chars kept inline in history")
    max_context_chars: int = Field(default=defaults.CONTEXT_MAX_CHARS, description="Budget for recalled context")
    clear_on_exit: bool = Field(default=True, description="Delete context files at session end")


class OutputConfig(BaseModel):
    """Configuration for output formatting."""

    mode: OutputMode = Field(default=OutputMode.HUMAN, description="Output mode")
    colors: bool = Field(default=True, description="Enable colored output")


class AgentConfig(BaseModel):
    """Main configuration for taskpilot."""

    # Model settings
    provider: str = Field(default="openai", description="Selected provider name")
    providers: Dict[str, ProviderConfig] = Field(default_factory=_default_providers)
    agent_name: str = Field(default="default", description="Agent name used for tool permissions")
    max_iterations: int = Field(default=25, ge=1, description="Maximum model turns per query")
    timeout: float = Field(default=120.0, description="Timeout per LLM call in seconds")
    temperature: Optional[float] = Field(default=None, description="Generation temperature")
    max_tokens: int = Field(default=4096, description="Maximum tokens for response")
    streaming: bool = Field(default=True, description="Stream model output")
    system_prompt: Optional[str] = Field(default=None, description="Override the system prompt")

    # Sub-configurations
    retry: RetryConfig = Field(default_factory=RetryConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    agents: Dict[str, AgentToolsConfig] = Field(default_factory=dict)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @field_validator("provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return str(v).strip().lower()

    def provider_config(self, name: Optional[str] = None) -> Optional[ProviderConfig]:
        """Return the config block for *name* (default: the selected provider)."""
        return self.providers.get(name or self.provider)

    @property
    def workspace_root(self) -> Path:
        """Resolved workspace root (config, then AGENT_WORKSPACE_ROOT, then cwd)."""
        from taskpilot.tools.workspace import get_workspace_root

        return get_workspace_root(self.workspace.root or None)

    @property
    def context_dir(self) -> Path:
        if self.context.dir:
            return Path(self.context.dir).expanduser().resolve()
        return self.workspace_root / defaults.CONTEXT_DIR_NAME
