"""Shell command tool for taskpilot.

Commands run in the workspace with a filtered environment.  The tool
polls its cancellation token while the process runs and kills the whole
process group when cancelled or timed out.
"""

from __future__ import annotations

import os
import platform
import signal
import subprocess
import threading
import time
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from taskpilot.config import defaults
from taskpilot.tools.base import (
    ToolCancelledError,
    ToolContext,
    ToolError,
    ToolErrorCode,
    ToolInitContext,
    ToolResult,
    ToolSpec,
    define,
)
from taskpilot.utils.log import debug

# Env var names containing these substrings are not passed to commands
SENSITIVE_PATTERNS: List[str] = [
    "KEY",
    "SECRET",
    "TOKEN",
    "PASSWORD",
    "CREDENTIAL",
    "PRIVATE",
]


def build_safe_environment(overrides: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Inherit the parent environment minus secrets, forcing non-interactive tools."""
    env: Dict[str, str] = {}
    for key, value in os.environ.items():
        key_upper = key.upper()
        if not any(pattern in key_upper for pattern in SENSITIVE_PATTERNS):
            env[key] = value

    env["CI"] = "true"
    env["DEBIAN_FRONTEND"] = "noninteractive"
    env["NO_COLOR"] = "1"
    env["TERM"] = "dumb"
    env["PAGER"] = "cat"
    env["GIT_PAGER"] = "cat"

    if overrides:
        env.update(overrides)
    return env


def detect_shell() -> Tuple[str, List[str]]:
    """Get the shell and shell arguments for the current platform."""
    if platform.system() == "Windows":
        return "powershell.exe", ["-NoProfile", "-Command"]
    shell = os.environ.get("SHELL") or "/bin/bash"
    if not os.path.exists(shell):
        shell = "/bin/sh"
    return shell, ["-c"]


def _kill(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    try:
        if platform.system() == "Windows":
            proc.kill()
        else:
            os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError):
        proc.kill()


def _truncate(text: str) -> str:
    if len(text) <= defaults.MAX_TOOL_OUTPUT_CHARS:
        return text
    half = defaults.MAX_TOOL_OUTPUT_CHARS // 2
    omitted = len(text) - defaults.MAX_TOOL_OUTPUT_CHARS
    return f"{text[:half]}\n... ({omitted} chars truncated) ...\n{text[-half:]}"


class ShellParams(BaseModel):
    command: str = Field(min_length=1, description="Shell command to run")
    workdir: str = Field(default=".", description="Working directory relative to the workspace")
    timeout_ms: Optional[int] = Field(
        default=None,
        ge=1,
        le=defaults.MAX_SHELL_TIMEOUT_MS,
        description="Timeout in milliseconds",
    )


def _init(init: ToolInitContext) -> ToolSpec:
    workspace = init.workspace
    shell, shell_args = detect_shell()
    default_timeout_ms = init.config.tools.shell_timeout_ms
    poll_interval = init.config.tools.poll_interval_s

    def execute(params: ShellParams, ctx: ToolContext) -> ToolResult:
        work_path = workspace.require_read(params.workdir)
        if not work_path.is_dir():
            raise ToolError(f"Not a directory: {params.workdir}", ToolErrorCode.VALIDATION_ERROR)

        timeout_s = (params.timeout_ms or default_timeout_ms) / 1000
        ctx.metadata(title=params.command[:80], metadata={"status": "running"})

        try:
            proc = subprocess.Popen(
                [shell, *shell_args, params.command],
                cwd=str(work_path),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=build_safe_environment(),
                start_new_session=platform.system() != "Windows",
            )
        except FileNotFoundError as e:
            raise ToolError(f"Shell not found: {shell}", ToolErrorCode.NOT_FOUND) from e
        except PermissionError as e:
            raise ToolError(f"Permission denied executing: {shell}", ToolErrorCode.PERMISSION_DENIED) from e

        stdout = proc.stdout
        chunks: List[bytes] = []

        def _read() -> None:
            for chunk in iter(lambda: stdout.read(4096), b""):
                chunks.append(chunk)

        reader = threading.Thread(target=_read, daemon=True)
        reader.start()

        start = time.time()
        try:
            while proc.poll() is None:
                if ctx.cancel.wait(poll_interval):
                    _kill(proc)
                    raise ToolCancelledError(f"Command cancelled: {params.command[:80]}")
                if time.time() - start > timeout_s:
                    _kill(proc)
                    reader.join(timeout=1.0)
                    partial = _truncate(b"".join(chunks).decode("utf-8", errors="replace")).strip()
                    raise ToolError(
                        f"Command timed out after {timeout_s:g}s"
                        + (f"\n{partial}" if partial else ""),
                        ToolErrorCode.TIMEOUT,
                    )
        finally:
            _kill(proc)
            try:
                proc.wait(timeout=5.0)
            except subprocess.TimeoutExpired:
                debug("shell", f"Process {proc.pid} did not exit after kill")
            reader.join(timeout=5.0)
            if not reader.is_alive():
                stdout.close()

        output = _truncate(b"".join(chunks).decode("utf-8", errors="replace")).strip()
        exit_code = proc.returncode
        duration_ms = int((time.time() - start) * 1000)

        if exit_code != 0:
            output = f"{output}\n\nExit code: {exit_code}" if output else f"Exit code: {exit_code}"
        if not output:
            output = "(no output)"

        # Non-zero exit is still a successful tool call: the model sees the output
        return ToolResult(
            title=params.command[:80],
            output=output,
            metadata={"exit_code": exit_code, "duration_ms": duration_ms, "workdir": params.workdir},
        )

    return ToolSpec(
        description=(
            f"Run a shell command ({os.path.basename(shell)}) in the workspace and return "
            "combined stdout/stderr. Secrets are stripped from the environment."
        ),
        parameters=ShellParams,
        execute=execute,
    )


SHELL_COMMAND = define("shell_command", _init, mutating=True)
