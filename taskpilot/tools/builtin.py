"""The built-in tool set, in the order tools are offered to the model."""

from __future__ import annotations

from typing import List

from taskpilot.tools.base import ToolDefinition
from taskpilot.tools.list_dir import LIST_DIR
from taskpilot.tools.read_file import READ_FILE
from taskpilot.tools.search import GLOB_FILES, GREP_FILES
from taskpilot.tools.shell import SHELL_COMMAND
from taskpilot.tools.todo import make_todo_tools
from taskpilot.tools.web_fetch import WEB_FETCH
from taskpilot.tools.write_file import EDIT_FILE, WRITE_FILE


def builtin_tools() -> List[ToolDefinition]:
    """Fresh list of built-in definitions (todo tools get their own store)."""
    todo_write, todo_read = make_todo_tools()
    return [
        READ_FILE,
        LIST_DIR,
        GLOB_FILES,
        GREP_FILES,
        WRITE_FILE,
        EDIT_FILE,
        SHELL_COMMAND,
        WEB_FETCH,
        todo_write,
        todo_read,
    ]
