"""Session-scoped todo list tools (todo_write / todo_read)."""

from __future__ import annotations

import threading
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from taskpilot.tools.base import (
    ToolContext,
    ToolDefinition,
    ToolInitContext,
    ToolResult,
    ToolSpec,
    define,
)

TodoStatus = Literal["pending", "in_progress", "completed"]

STATUS_ICONS: Dict[str, str] = {
    "pending": "○",
    "in_progress": "●",
    "completed": "✓",
}


class TodoItem(BaseModel):
    content: str = Field(min_length=1, description="What needs to be done")
    status: TodoStatus = Field(default="pending", description="pending | in_progress | completed")


class TodoStore:
    """Todo lists keyed by session id."""

    def __init__(self) -> None:
        self._lists: Dict[str, List[TodoItem]] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> List[TodoItem]:
        with self._lock:
            return list(self._lists.get(session_id, []))

    def set(self, session_id: str, items: List[TodoItem]) -> None:
        with self._lock:
            self._lists[session_id] = list(items)

    def clear(self, session_id: Optional[str] = None) -> None:
        with self._lock:
            if session_id is None:
                self._lists.clear()
            else:
                self._lists.pop(session_id, None)


def format_todos(items: List[TodoItem]) -> str:
    if not items:
        return "(no todos)"
    done = sum(1 for item in items if item.status == "completed")
    lines = [f"{STATUS_ICONS[item.status]} {item.content}" for item in items]
    lines.append(f"\n{done}/{len(items)} completed")
    return "\n".join(lines)


class TodoWriteParams(BaseModel):
    todos: List[TodoItem] = Field(description="The complete, updated todo list")


class TodoReadParams(BaseModel):
    pass


def make_todo_tools(store: Optional[TodoStore] = None) -> Tuple[ToolDefinition, ToolDefinition]:
    """Build todo_write/todo_read sharing one store."""
    store = store or TodoStore()

    def _init_write(init: ToolInitContext) -> ToolSpec:
        def execute(params: TodoWriteParams, ctx: ToolContext) -> ToolResult:
            store.set(ctx.session_id, params.todos)
            pending = sum(1 for t in params.todos if t.status != "completed")
            return ToolResult(
                title=f"{pending} todos",
                output=format_todos(params.todos),
                metadata={"todos": [t.model_dump() for t in params.todos]},
            )

        return ToolSpec(
            description=(
                "Replace this session's todo list. Use it to plan multi-step work "
                "and mark items in_progress/completed as you go."
            ),
            parameters=TodoWriteParams,
            execute=execute,
        )

    def _init_read(init: ToolInitContext) -> ToolSpec:
        def execute(params: TodoReadParams, ctx: ToolContext) -> ToolResult:
            items = store.get(ctx.session_id)
            return ToolResult(
                title=f"{len(items)} todos",
                output=format_todos(items),
                metadata={"todos": [t.model_dump() for t in items]},
            )

        return ToolSpec(
            description="Show this session's todo list.",
            parameters=TodoReadParams,
            execute=execute,
        )

    return define("todo_write", _init_write), define("todo_read", _init_read)
