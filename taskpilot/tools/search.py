"""File search tools for taskpilot: glob by name, grep by content."""

from __future__ import annotations

import fnmatch
import os
import re
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

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
from taskpilot.tools.list_dir import SKIP_DIRS
from taskpilot.tools.workspace import WorkspaceGuard


def _is_hidden(rel: Path) -> bool:
    return any(part.startswith(".") for part in rel.parts)


def _inside(path: Path, real_root: str) -> bool:
    real = os.path.realpath(path)
    return real == real_root or real.startswith(real_root.rstrip(os.sep) + os.sep)


class GlobParams(BaseModel):
    pattern: str = Field(min_length=1, description="Glob pattern, e.g. '**/*.py'")
    path: str = Field(default=".", description="Directory to search, relative to the workspace")
    limit: int = Field(
        default=defaults.DEFAULT_GLOB_LIMIT,
        ge=1,
        description=f"Maximum results (capped at {defaults.MAX_GLOB_LIMIT})",
    )

    @field_validator("pattern")
    @classmethod
    def no_parent_segments(cls, v: str) -> str:
        if ".." in v.replace("\\", "/").split("/"):
            raise ValueError("pattern must not contain '..'")
        if v.startswith("/"):
            raise ValueError("pattern must be relative")
        return v


def _init_glob(init: ToolInitContext) -> ToolSpec:
    workspace = init.workspace

    def execute(params: GlobParams, ctx: ToolContext) -> ToolResult:
        base = workspace.require_read(params.path)
        if not base.is_dir():
            raise ToolError(f"Not a directory: {params.path}", ToolErrorCode.VALIDATION_ERROR)

        real_root = os.path.realpath(workspace.root)
        limit = min(params.limit, defaults.MAX_GLOB_LIMIT)
        matches: List[Tuple[float, str]] = []
        for candidate in base.glob(params.pattern):
            ctx.check_cancelled()
            rel = candidate.relative_to(base)
            if _is_hidden(rel) or not candidate.is_file():
                continue
            if not _inside(candidate, real_root):
                continue
            try:
                mtime = candidate.stat().st_mtime
            except OSError:
                continue
            matches.append((mtime, workspace.relative(candidate)))

        # Newest first
        matches.sort(key=lambda m: m[0], reverse=True)
        truncated = len(matches) > limit
        shown = [path for _, path in matches[:limit]]

        if not shown:
            output = f"No files match '{params.pattern}'"
        else:
            output = "\n".join(shown)
            if truncated:
                output += f"\n\n(showing {limit} of {len(matches)} matches)"

        return ToolResult(
            title=params.pattern,
            output=output,
            metadata={"count": len(shown), "total": len(matches), "truncated": truncated},
        )

    return ToolSpec(
        description=(
            "Find files by glob pattern (supports '**'). Results are sorted by "
            "modification time, newest first; hidden files are skipped."
        ),
        parameters=GlobParams,
        execute=execute,
    )


class GrepParams(BaseModel):
    pattern: str = Field(min_length=1, description="Regular expression to search for")
    path: str = Field(default=".", description="Directory or file to search")
    include: Optional[str] = Field(default=None, description="Filename glob filter, e.g. '*.py'")
    ignore_case: bool = Field(default=False, description="Case-insensitive match")
    max_matches: int = Field(
        default=defaults.DEFAULT_GREP_MATCHES,
        ge=1,
        le=defaults.MAX_GREP_MATCHES,
        description="Maximum matching lines to return",
    )


def _iter_files(base: Path, include: Optional[str]) -> Iterator[Path]:
    if base.is_file():
        yield base
        return
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS and not d.startswith("."))
        for name in sorted(filenames):
            if name.startswith("."):
                continue
            if include and not fnmatch.fnmatch(name, include):
                continue
            yield Path(dirpath) / name


def _grep(
    workspace: WorkspaceGuard,
    base: Path,
    regex: "re.Pattern[str]",
    include: Optional[str],
    max_matches: int,
    ctx: ToolContext,
) -> Tuple[List[str], int, bool]:
    real_root = os.path.realpath(workspace.root)
    matches: List[str] = []
    files_searched = 0
    for file_path in _iter_files(base, include):
        ctx.check_cancelled()
        if not _inside(file_path, real_root):
            continue
        try:
            if file_path.stat().st_size > defaults.MAX_READ_BYTES:
                continue
            raw = file_path.read_bytes()
        except OSError:
            continue
        if b"\x00" in raw[:8192]:
            continue
        files_searched += 1
        rel = workspace.relative(file_path)
        for lineno, line in enumerate(raw.decode("utf-8", errors="replace").splitlines(), start=1):
            if regex.search(line):
                text = line if len(line) <= 300 else line[:300] + "..."
                matches.append(f"{rel}:{lineno}: {text}")
                if len(matches) >= max_matches:
                    return matches, files_searched, True
    return matches, files_searched, False


def _init_grep(init: ToolInitContext) -> ToolSpec:
    workspace = init.workspace

    def execute(params: GrepParams, ctx: ToolContext) -> ToolResult:
        base = workspace.require_read(params.path)
        try:
            regex = re.compile(params.pattern, re.IGNORECASE if params.ignore_case else 0)
        except re.error as e:
            raise ToolError(f"Invalid regex: {e}", ToolErrorCode.VALIDATION_ERROR) from e

        matches, files_searched, truncated = _grep(
            workspace, base, regex, params.include, params.max_matches, ctx
        )
        if not matches:
            output = f"No matches for '{params.pattern}' ({files_searched} files searched)"
        else:
            output = "\n".join(matches)
            if truncated:
                output += f"\n\n(stopped after {params.max_matches} matches)"

        return ToolResult(
            title=params.pattern,
            output=output,
            metadata={
                "matches": len(matches),
                "files_searched": files_searched,
                "truncated": truncated,
            },
        )

    return ToolSpec(
        description=(
            "Search file contents in the workspace with a regular expression. "
            "Returns 'path:line: text' for each matching line."
        ),
        parameters=GrepParams,
        execute=execute,
    )


GLOB_FILES = define("glob_files", _init_glob)
GREP_FILES = define("grep_files", _init_grep)
