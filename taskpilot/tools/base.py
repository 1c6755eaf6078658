"""Tool definition, execution context and result types.

A tool is declared with :func:`define`, which takes an id and an ``init``
function.  ``init`` runs lazily (at most once per registry) and returns a
:class:`ToolSpec`: description, a pydantic parameter model and the
execute function.  The wrapper returned by :func:`define` validates
arguments against the parameter model before ``execute`` ever runs.

Errors are signaled by raising (usually a :class:`ToolError`), never by
a field on :class:`ToolResult`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from taskpilot.utils.cancellation import CancellationToken
from taskpilot.utils.log import debug

if TYPE_CHECKING:
    from taskpilot.config.models import AgentConfig
    from taskpilot.tools.workspace import WorkspaceGuard


class ToolErrorCode(str, Enum):
    """Failure codes for a single tool call."""

    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    IO_ERROR = "IO_ERROR"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    UNKNOWN = "UNKNOWN"


class ToolError(Exception):
    """Raised by tools; converted to a failed tool result by the orchestrator."""

    def __init__(self, message: str, code: ToolErrorCode = ToolErrorCode.UNKNOWN):
        super().__init__(message)
        self.message = message
        self.code = code


class ToolValidationError(ToolError):
    """Raised when tool arguments do not match the parameter schema."""

    def __init__(self, message: str):
        super().__init__(message, code=ToolErrorCode.VALIDATION_ERROR)


class ToolCancelledError(ToolError):
    """Raised when a tool observes its cancellation token."""

    def __init__(self, message: str = "Tool execution cancelled"):
        super().__init__(message, code=ToolErrorCode.CANCELLED)


@dataclass
class ToolResult:
    """Result of a tool execution."""

    title: str
    output: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    attachments: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "title": self.title,
            "output": self.output,
            "metadata": self.metadata,
        }
        if self.attachments:
            data["attachments"] = self.attachments
        return data


@dataclass
class ToolProgress:
    """A progress update pushed from inside a running tool."""

    call_id: str
    title: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolContext:
    """Per-invocation context handed to ``execute``.

    ``metadata()`` is fire-and-forget: it hands the update to the
    orchestrator's queue and returns immediately.
    """

    session_id: str
    message_id: str
    agent: str
    call_id: str
    cancel: CancellationToken = field(default_factory=CancellationToken)
    on_metadata: Optional[Callable[[ToolProgress], None]] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel.cancelled

    def check_cancelled(self) -> None:
        """Raise ToolCancelledError if cancellation has been requested."""
        if self.cancel.cancelled:
            raise ToolCancelledError()

    def metadata(self, title: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> None:
        if self.on_metadata is None:
            return
        try:
            self.on_metadata(ToolProgress(self.call_id, title, dict(metadata or {})))
        except Exception as e:
            debug("tools", f"metadata update dropped for {self.call_id}: {e}")


@dataclass
class ToolInitContext:
    """What a tool's ``init`` may look at: the sandbox, config and agent."""

    workspace: "WorkspaceGuard"
    config: "AgentConfig"
    agent: str = "default"


ExecuteFn = Callable[[Any, ToolContext], ToolResult]


@dataclass
class ToolSpec:
    """What a tool's ``init`` returns."""

    description: str
    parameters: Type[BaseModel]
    execute: ExecuteFn


def format_validation_error(tool_id: str, error: ValidationError) -> str:
    """Render a pydantic error as ``Invalid arguments for <tool>: field: msg``."""
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "(arguments)"
        parts.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return f"Invalid arguments for {tool_id}: " + "; ".join(parts)


def _json_schema(model: Type[BaseModel]) -> Dict[str, Any]:
    schema = model.model_json_schema()
    schema.pop("title", None)
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    return schema


@dataclass
class Tool:
    """An initialized tool: validated entry point plus its schema."""

    id: str
    description: str
    parameters: Type[BaseModel]
    _execute: ExecuteFn

    def validate(self, args: Optional[Dict[str, Any]]) -> BaseModel:
        try:
            return self.parameters.model_validate(args or {})
        except ValidationError as e:
            raise ToolValidationError(format_validation_error(self.id, e)) from e

    def run(self, args: Optional[Dict[str, Any]], ctx: ToolContext) -> ToolResult:
        """Check cancellation, validate *args*, then execute."""
        ctx.check_cancelled()
        params = self.validate(args)
        return self._execute(params, ctx)

    def schema(self) -> Dict[str, Any]:
        """Tool spec for the LLM (name/description/JSON-schema parameters)."""
        return {
            "name": self.id,
            "description": self.description,
            "parameters": _json_schema(self.parameters),
        }


@dataclass
class ToolDefinition:
    """A declared tool: id plus its lazy ``init``."""

    id: str
    init: Callable[[ToolInitContext], Tool]
    mutating: bool = False


def define(
    tool_id: str,
    init: Callable[[ToolInitContext], ToolSpec],
    *,
    mutating: bool = False,
) -> ToolDefinition:
    """Declare a tool whose arguments are validated before execution.

    Args:
        tool_id: Unique tool name exposed to the model
        init: Returns the ToolSpec; may do I/O, runs once per registry
        mutating: True if the tool changes the workspace or runs commands

    Returns:
        ToolDefinition for :meth:`ToolRegistry.register`
    """

    def _init(ctx: ToolInitContext) -> Tool:
        spec = init(ctx)
        return Tool(
            id=tool_id,
            description=spec.description,
            parameters=spec.parameters,
            _execute=spec.execute,
        )

    return ToolDefinition(id=tool_id, init=_init, mutating=mutating)
