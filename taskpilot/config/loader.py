"""Configuration loader for taskpilot."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from taskpilot.config.models import AgentConfig

# Top-level TOML tables copied straight into the config model
_SECTIONS = ("retry", "tools", "workspace", "context", "output", "agents")


def _merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *extra* into *base* (in place) and return it."""
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _read_toml(path: Path) -> dict[str, Any]:
    """Translate the TOML layout into AgentConfig keyword arguments.

    TOML structure: ``[agent]`` holds top-level scalars, ``[providers.<name>]``
    holds per-provider settings, and the other tables map 1:1.
    """
    with open(path, "rb") as f:
        raw_config = tomllib.load(f)

    config_dict: dict[str, Any] = {}
    for key, value in raw_config.get("agent", {}).items():
        config_dict[key] = value

    for section in _SECTIONS:
        if section in raw_config:
            config_dict[section] = raw_config[section]

    if "providers" in raw_config:
        # Merge over the built-in provider table so partial overrides keep defaults
        providers = {
            name: cfg.model_dump(exclude_none=True)
            for name, cfg in AgentConfig().providers.items()
        }
        config_dict["providers"] = _merge(providers, raw_config["providers"])

    return config_dict


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[dict[str, Any]] = None,
) -> AgentConfig:
    """Load configuration with optional overrides.

    Args:
        config_path: Optional path to a TOML config file.
        overrides: Optional dictionary of configuration overrides. Keys may be
            dotted (``"retry.max_retries"``) to reach nested sections.

    Returns:
        AgentConfig instance.

    Raises:
        FileNotFoundError: If ``config_path`` is given but missing.
        pydantic.ValidationError: If the merged values are invalid.
    """
    config_dict: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        config_dict = _read_toml(config_path)

    if overrides:
        for key, value in overrides.items():
            if "." in key:
                parts = key.split(".")
                current = config_dict
                for part in parts[:-1]:
                    if part not in current:
                        current[part] = {}
                    current = current[part]
                current[parts[-1]] = value
            else:
                config_dict[key] = value

    return AgentConfig(**config_dict)


def find_config_file() -> Optional[Path]:
    """Find the configuration file in standard locations.

    Searches in order:
    1. ./taskpilot.toml
    2. ./.taskpilot/config.toml
    3. ~/.config/taskpilot/config.toml

    Returns:
        Path to the config file if found, None otherwise.
    """
    search_paths = [
        Path.cwd() / "taskpilot.toml",
        Path.cwd() / ".taskpilot" / "config.toml",
        Path.home() / ".config" / "taskpilot" / "config.toml",
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None
