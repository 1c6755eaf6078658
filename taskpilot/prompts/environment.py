"""System prompt and environment context.

The system message is a fixed instruction block followed by an
``# Environment`` section describing where the agent is running.
"""

from __future__ import annotations

import os
import platform
import subprocess
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import List, Optional, Union

SYSTEM_PROMPT = """You are taskpilot, a command-line assistant that completes tasks by reasoning and calling tools.

## Working style
- Read before you write: inspect files and directories before changing them
- Prefer targeted edits (`edit_file`) over rewriting whole files
- Keep a todo list (`todo_write`) for work that takes more than a few steps
- Paths are relative to the workspace root; you cannot reach outside it
- When a tool fails, read the error, adjust and try again instead of repeating the same call

## Tool results
- Large results are stored on disk and only a preview is shown inline
- Relevant stored results may be provided to you in a separate system message

## Responses
- Be concise. Lead with the answer, then the supporting detail
- Wrap commands, paths and identifiers in backticks"""


@dataclass
class EnvironmentInfo:
    """Facts about the runtime environment, rendered into the system prompt."""

    cwd: str
    is_git_repo: bool
    platform: str
    os_version: str
    shell: str
    today: str

    def to_lines(self) -> List[str]:
        return [
            f"- Working directory: {self.cwd}",
            f"- Is a git repository: {'yes' if self.is_git_repo else 'no'}",
            f"- Platform: {self.platform}",
            f"- OS version: {self.os_version}",
            f"- Shell: {self.shell}",
            f"- Today's date: {self.today}",
        ]


def _is_git_repo(root: Path) -> bool:
    for parent in [root, *root.parents]:
        if (parent / ".git").exists():
            return True
    try:
        proc = subprocess.run(
            ["git", "rev-parse", "--is-inside-work-tree"],
            cwd=str(root),
            capture_output=True,
            text=True,
            timeout=2,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return proc.returncode == 0 and proc.stdout.strip() == "true"


def detect_environment(root: Optional[Union[str, Path]] = None) -> EnvironmentInfo:
    """Collect cwd, git status, platform and date for *root* (default: cwd)."""
    cwd = Path(root).resolve() if root is not None else Path.cwd()
    return EnvironmentInfo(
        cwd=str(cwd),
        is_git_repo=_is_git_repo(cwd),
        platform=platform.system().lower() or "unknown",
        os_version=f"{platform.system()} {platform.release()}".strip(),
        shell=os.environ.get("SHELL", "unknown"),
        today=date.today().isoformat(),
    )


def build_system_prompt(
    environment: Optional[EnvironmentInfo] = None,
    base: Optional[str] = None,
    model: Optional[str] = None,
    tool_names: Optional[List[str]] = None,
) -> str:
    """Build the full system message.

    Args:
        environment: Detected environment (detected from cwd when omitted).
        base: Instruction block replacing the default ``SYSTEM_PROMPT``.
        model: Model identifier for this session.
        tool_names: Tools available to the agent.

    Returns:
        Complete system prompt string.
    """
    env = environment or detect_environment()
    lines = env.to_lines()
    if model:
        lines.append(f"- Model: {model}")
    if tool_names:
        lines.append(f"- Tools: {', '.join(tool_names)}")
    return f"{base or SYSTEM_PROMPT}\n\n# Environment\n" + "\n".join(lines)
