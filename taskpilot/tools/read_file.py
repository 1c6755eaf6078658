"""Read file tool for taskpilot."""

from __future__ import annotations

from typing import Optional

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


class ReadFileParams(BaseModel):
    path: str = Field(description="File path relative to the workspace root")
    offset: int = Field(default=0, ge=0, description="Line offset to start from (0-based)")
    limit: Optional[int] = Field(
        default=None,
        ge=1,
        le=defaults.MAX_READ_LINES,
        description=f"Maximum lines to return (default {defaults.DEFAULT_READ_LINES})",
    )


def _init(init: ToolInitContext) -> ToolSpec:
    workspace = init.workspace

    def execute(params: ReadFileParams, ctx: ToolContext) -> ToolResult:
        resolved = workspace.require_read(params.path)
        if not resolved.is_file():
            raise ToolError(f"Not a file: {params.path}", ToolErrorCode.VALIDATION_ERROR)

        try:
            size = resolved.stat().st_size
            if size > defaults.MAX_READ_BYTES:
                raise ToolError(
                    f"File too large ({size} bytes, limit {defaults.MAX_READ_BYTES}): {params.path}",
                    ToolErrorCode.LIMIT_EXCEEDED,
                )
            raw = resolved.read_bytes()
        except OSError as e:
            raise map_os_error(e, params.path) from e

        if b"\x00" in raw[:8192]:
            raise ToolError(f"Binary file not supported: {params.path}", ToolErrorCode.VALIDATION_ERROR)

        content = raw.decode("utf-8", errors="replace")
        lines = content.splitlines()
        total_lines = len(lines)

        if total_lines == 0:
            return ToolResult(
                title=params.path,
                output="(empty file)",
                metadata={"path": params.path, "total_lines": 0, "truncated": False},
            )

        if params.offset >= total_lines:
            raise ToolError(
                f"Offset {params.offset} exceeds total lines {total_lines}",
                ToolErrorCode.VALIDATION_ERROR,
            )

        limit = params.limit or defaults.DEFAULT_READ_LINES
        end_index = min(params.offset + limit, total_lines)
        formatted = []
        for i, line in enumerate(lines[params.offset:end_index], start=params.offset + 1):
            if len(line) > defaults.MAX_LINE_LENGTH:
                line = line[: defaults.MAX_LINE_LENGTH] + "..."
            formatted.append(f"L{i}: {line}")

        truncated = end_index < total_lines
        output = "\n".join(formatted)
        if truncated:
            output += f"\n\n(showing lines {params.offset + 1}-{end_index} of {total_lines}; use offset to read more)"

        return ToolResult(
            title=params.path,
            output=output,
            metadata={
                "path": params.path,
                "size": size,
                "total_lines": total_lines,
                "shown_lines": end_index - params.offset,
                "offset": params.offset,
                "truncated": truncated,
            },
        )

    return ToolSpec(
        description=(
            "Read a text file from the workspace with line numbers. "
            f"Returns up to {defaults.DEFAULT_READ_LINES} lines by default; use offset/limit to page."
        ),
        parameters=ReadFileParams,
        execute=execute,
    )


READ_FILE = define("read_file", _init)
