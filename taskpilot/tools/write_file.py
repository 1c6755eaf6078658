"""Write and edit file tools for taskpilot.

Both tools require filesystem writes to be enabled on the workspace and
write atomically: content goes to a temp file in the target directory,
which is then renamed over the destination.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

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


def atomic_write(path: Path, content: str) -> int:
    """Write *content* to *path* atomically; return the byte count."""
    data = content.encode("utf-8")
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return len(data)


class WriteFileParams(BaseModel):
    path: str = Field(description="File path relative to the workspace root")
    content: str = Field(description="Full content to write")
    overwrite: bool = Field(default=True, description="Replace the file if it already exists")


def _init_write(init: ToolInitContext) -> ToolSpec:
    workspace = init.workspace

    def execute(params: WriteFileParams, ctx: ToolContext) -> ToolResult:
        resolved = workspace.require_write(params.path)
        size = len(params.content.encode("utf-8"))
        if size > defaults.MAX_WRITE_BYTES:
            raise ToolError(
                f"Content too large ({size} bytes, limit {defaults.MAX_WRITE_BYTES})",
                ToolErrorCode.LIMIT_EXCEEDED,
            )
        existed = resolved.exists()
        if existed and not params.overwrite:
            raise ToolError(f"File already exists: {params.path}", ToolErrorCode.VALIDATION_ERROR)
        if existed and resolved.is_dir():
            raise ToolError(f"Is a directory: {params.path}", ToolErrorCode.VALIDATION_ERROR)

        ctx.check_cancelled()
        try:
            written = atomic_write(resolved, params.content)
        except OSError as e:
            raise map_os_error(e, params.path) from e

        action = "Overwrote" if existed else "Created"
        return ToolResult(
            title=params.path,
            output=f"{action} {params.path} ({written} bytes)",
            metadata={"path": params.path, "bytes": written, "created": not existed},
        )

    return ToolSpec(
        description=(
            "Write a UTF-8 text file in the workspace, creating parent directories. "
            "Only available when filesystem writes are enabled."
        ),
        parameters=WriteFileParams,
        execute=execute,
    )


class EditFileParams(BaseModel):
    path: str = Field(description="File path relative to the workspace root")
    old_string: str = Field(min_length=1, description="Exact text to replace")
    new_string: str = Field(description="Replacement text")
    replace_all: bool = Field(default=False, description="Replace every occurrence")


def _init_edit(init: ToolInitContext) -> ToolSpec:
    workspace = init.workspace

    def execute(params: EditFileParams, ctx: ToolContext) -> ToolResult:
        resolved = workspace.require_write(params.path)
        if not resolved.is_file():
            raise ToolError(f"File not found: {params.path}", ToolErrorCode.NOT_FOUND)
        try:
            content = resolved.read_text(encoding="utf-8")
        except OSError as e:
            raise map_os_error(e, params.path) from e
        except UnicodeDecodeError as e:
            raise ToolError(f"Not a UTF-8 text file: {params.path}", ToolErrorCode.VALIDATION_ERROR) from e

        count = content.count(params.old_string)
        if count == 0:
            raise ToolError(f"old_string not found in {params.path}", ToolErrorCode.VALIDATION_ERROR)
        if count > 1 and not params.replace_all:
            raise ToolError(
                f"old_string occurs {count} times in {params.path}; "
                "add surrounding context or set replace_all",
                ToolErrorCode.VALIDATION_ERROR,
            )

        if params.replace_all:
            updated = content.replace(params.old_string, params.new_string)
        else:
            updated = content.replace(params.old_string, params.new_string, 1)

        ctx.check_cancelled()
        try:
            atomic_write(resolved, updated)
        except OSError as e:
            raise map_os_error(e, params.path) from e

        replaced = count if params.replace_all else 1
        return ToolResult(
            title=params.path,
            output=f"Replaced {replaced} occurrence(s) in {params.path}",
            metadata={"path": params.path, "replacements": replaced},
        )

    return ToolSpec(
        description=(
            "Replace an exact string in a workspace file. old_string must be unique "
            "unless replace_all is set. Only available when filesystem writes are enabled."
        ),
        parameters=EditFileParams,
        execute=execute,
    )


WRITE_FILE = define("write_file", _init_write, mutating=True)
EDIT_FILE = define("edit_file", _init_edit, mutating=True)
