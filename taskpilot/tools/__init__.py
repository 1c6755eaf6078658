"""Tools module - definitions, sandbox and registry.

Only the base types are re-exported here.  Import heavier modules
directly::

    from taskpilot.tools.registry import ToolRegistry, create_registry
    from taskpilot.tools.workspace import resolve_workspace_path_safe
"""

from taskpilot.tools.base import (
    ToolCancelledError,
    ToolContext,
    ToolDefinition,
    ToolError,
    ToolErrorCode,
    ToolResult,
    ToolSpec,
    ToolValidationError,
    define,
)

__all__ = [
    "ToolCancelledError",
    "ToolContext",
    "ToolDefinition",
    "ToolError",
    "ToolErrorCode",
    "ToolResult",
    "ToolSpec",
    "ToolValidationError",
    "define",
]
