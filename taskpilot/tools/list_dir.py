"""List directory tool for taskpilot."""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Tuple

from pydantic import BaseModel, Field

from taskpilot.config import defaults
from taskpilot.tools.base import (
    ToolContext,
    ToolError,
    ToolErrorCode,
    ToolInitContext,
    ToolResult,
    ToolSpec,
    define,
)
from taskpilot.tools.workspace import map_os_error

SKIP_DIRS = frozenset({
    ".git", "__pycache__", "node_modules", ".venv", ".mypy_cache",
    ".pytest_cache", ".ruff_cache", ".tox", ".eggs", ".cache", ".taskpilot",
})


class ListDirParams(BaseModel):
    path: str = Field(default=".", description="Directory relative to the workspace root")
    recursive: bool = Field(default=False, description="List subdirectories too")
    include_hidden: bool = Field(default=False, description="Include dotfiles")
    max_depth: int = Field(default=3, ge=1, le=10, description="Depth limit when recursive")


def _list(
    base: Path,
    recursive: bool,
    include_hidden: bool,
    max_depth: int,
    ctx: ToolContext,
) -> List[Tuple[str, str, int]]:
    """Return (relative path, "dir"|"file", size) entries under *base*."""
    entries: List[Tuple[str, str, int]] = []
    for dirpath, dirnames, filenames in os.walk(base):
        ctx.check_cancelled()
        rel_dir = Path(dirpath).relative_to(base)
        depth = 0 if str(rel_dir) == "." else len(rel_dir.parts)

        dirnames[:] = sorted(
            d for d in dirnames
            if d not in SKIP_DIRS and (include_hidden or not d.startswith("."))
        )
        for d in dirnames:
            entries.append(((rel_dir / d).as_posix(), "dir", 0))
        for name in sorted(filenames):
            if not include_hidden and name.startswith("."):
                continue
            full = Path(dirpath) / name
            try:
                size = full.stat().st_size
            except OSError:
                size = 0
            entries.append(((rel_dir / name).as_posix(), "file", size))

        if len(entries) >= defaults.MAX_LIST_ENTRIES:
            break
        if not recursive or depth + 1 >= max_depth:
            dirnames[:] = []
    return entries


def _init(init: ToolInitContext) -> ToolSpec:
    workspace = init.workspace

    def execute(params: ListDirParams, ctx: ToolContext) -> ToolResult:
        resolved = workspace.require_read(params.path)
        if not resolved.is_dir():
            raise ToolError(f"Not a directory: {params.path}", ToolErrorCode.VALIDATION_ERROR)

        try:
            entries = _list(resolved, params.recursive, params.include_hidden, params.max_depth, ctx)
        except OSError as e:
            raise map_os_error(e, params.path) from e

        truncated = len(entries) > defaults.MAX_LIST_ENTRIES
        entries = entries[: defaults.MAX_LIST_ENTRIES]
        lines = []
        for rel, kind, size in entries:
            lines.append(f"{rel}/" if kind == "dir" else f"{rel} ({size} bytes)")
        output = "\n".join(lines) if lines else "(empty directory)"
        if truncated:
            output += f"\n\n(truncated at {defaults.MAX_LIST_ENTRIES} entries)"

        return ToolResult(
            title=params.path,
            output=output,
            metadata={"path": params.path, "count": len(entries), "truncated": truncated},
        )

    return ToolSpec(
        description="List files and directories in the workspace (dirs end with '/').",
        parameters=ListDirParams,
        execute=execute,
    )


LIST_DIR = define("list_dir", _init)
