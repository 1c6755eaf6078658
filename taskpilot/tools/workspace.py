"""Workspace sandbox: path resolution and access guards for tools.

Two stages of checking:

1. :func:`resolve_workspace_path` rejects any literal ``..`` segment and
   checks the normalized path is under the root.
2. :func:`resolve_workspace_path_safe` additionally resolves symlinks on
   both the root and the target and re-checks containment.  For paths that
   do not exist yet, the nearest existing parent is checked instead.
"""

from __future__ import annotations

import errno
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from taskpilot.config import defaults
from taskpilot.tools.base import ToolError, ToolErrorCode

PathLike = Union[str, "os.PathLike[str]"]


class WorkspaceError(ToolError):
    """Raised when a path violates the workspace sandbox."""


def get_workspace_root(configured: Optional[PathLike] = None) -> Path:
    """Return the workspace root.

    Order: explicit *configured* value, ``AGENT_WORKSPACE_ROOT``, then the
    current directory.  ``~`` is expanded and the result made absolute.
    """
    raw = configured or os.environ.get(defaults.WORKSPACE_ROOT_ENV_VAR) or os.getcwd()
    return Path(os.path.abspath(os.path.expanduser(str(raw))))


def _has_parent_segment(relative: str) -> bool:
    parts = relative.replace("\\", "/").split("/")
    return any(part == ".." for part in parts)


def _is_within(path: str, root: str) -> bool:
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def resolve_workspace_path(relative: PathLike, root: PathLike) -> Path:
    """Resolve *relative* against *root* without touching the filesystem.

    Raises:
        WorkspaceError: PERMISSION_DENIED for ``..`` segments or escapes
    """
    rel = os.fspath(relative)
    if _has_parent_segment(rel):
        raise WorkspaceError(
            f"Path traversal is not allowed: {rel}", ToolErrorCode.PERMISSION_DENIED
        )

    root_abs = os.path.normpath(os.path.abspath(os.fspath(root)))
    target = os.path.normpath(os.path.join(root_abs, rel))
    if not _is_within(target, root_abs):
        raise WorkspaceError(
            f"Path is outside the workspace: {rel}", ToolErrorCode.PERMISSION_DENIED
        )
    return Path(target)


def _nearest_existing(path: str) -> str:
    current = path
    while not os.path.lexists(current):
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return current


def resolve_workspace_path_safe(
    relative: PathLike,
    root: PathLike,
    require_exists: bool = False,
) -> Path:
    """Resolve *relative* and verify its real path stays inside *root*.

    Symlinks are followed on both the root and the target, which defeats
    links that point outside the workspace.

    Raises:
        WorkspaceError: PERMISSION_DENIED on escape, NOT_FOUND when
            *require_exists* is set and the target is missing
    """
    target = resolve_workspace_path(relative, root)
    real_root = os.path.realpath(os.fspath(root))

    if os.path.lexists(target):
        real_target = os.path.realpath(target)
        if not _is_within(real_target, real_root):
            raise WorkspaceError(
                f"Path resolves outside the workspace: {os.fspath(relative)}",
                ToolErrorCode.PERMISSION_DENIED,
            )
        if require_exists and not os.path.exists(real_target):
            raise WorkspaceError(f"Path not found: {os.fspath(relative)}", ToolErrorCode.NOT_FOUND)
        return target

    if require_exists:
        raise WorkspaceError(f"Path not found: {os.fspath(relative)}", ToolErrorCode.NOT_FOUND)

    existing = _nearest_existing(os.fspath(target))
    real_parent = os.path.realpath(existing)
    if not _is_within(real_parent, real_root):
        raise WorkspaceError(
            f"Path resolves outside the workspace: {os.fspath(relative)}",
            ToolErrorCode.PERMISSION_DENIED,
        )
    return target


def map_os_error(exc: OSError, path: PathLike = "") -> ToolError:
    """Map an OSError to a ToolError with a stable code and message."""
    where = f": {os.fspath(path)}" if path else ""
    if exc.errno == errno.ENOENT:
        return ToolError(f"File not found{where}", ToolErrorCode.NOT_FOUND)
    if exc.errno in (errno.EACCES, errno.EPERM):
        return ToolError(f"Permission denied{where}", ToolErrorCode.PERMISSION_DENIED)
    if exc.errno == errno.EISDIR:
        return ToolError(f"Is a directory{where}", ToolErrorCode.VALIDATION_ERROR)
    if exc.errno == errno.ENOTDIR:
        return ToolError(f"Not a directory{where}", ToolErrorCode.VALIDATION_ERROR)
    return ToolError(f"I/O error{where}: {exc.strerror or exc}", ToolErrorCode.IO_ERROR)


@dataclass
class WorkspaceGuard:
    """Sandbox bound to one workspace root, used by file tools."""

    root: Path
    writes_enabled: bool = False

    @classmethod
    def from_config(cls, root: Optional[PathLike], writes_enabled: bool = False) -> "WorkspaceGuard":
        return cls(root=get_workspace_root(root), writes_enabled=writes_enabled)

    def require_read(self, path: PathLike, require_exists: bool = True) -> Path:
        return resolve_workspace_path_safe(path, self.root, require_exists=require_exists)

    def require_write(self, path: PathLike) -> Path:
        if not self.writes_enabled:
            raise WorkspaceError(
                "Filesystem writes are disabled (set workspace.writes_enabled or "
                f"{defaults.WRITES_ENABLED_ENV_VAR}=true)",
                ToolErrorCode.PERMISSION_DENIED,
            )
        return resolve_workspace_path_safe(path, self.root)

    def relative(self, path: PathLike) -> str:
        """Display form of *path* relative to the root."""
        try:
            return Path(path).relative_to(self.root).as_posix() or "."
        except ValueError:
            return os.fspath(path)
