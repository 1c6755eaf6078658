import os
from pathlib import Path

import pytest

from taskpilot.tools.base import ToolErrorCode
from taskpilot.tools.workspace import (
    WorkspaceError,
    WorkspaceGuard,
    get_workspace_root,
    map_os_error,
    resolve_workspace_path,
    resolve_workspace_path_safe,
)


def test_root_prefers_explicit_then_env_then_cwd(tmp_path, monkeypatch):
    monkeypatch.setenv("AGENT_WORKSPACE_ROOT", str(tmp_path / "from-env"))
    assert get_workspace_root(tmp_path / "explicit") == tmp_path / "explicit"
    assert get_workspace_root() == tmp_path / "from-env"

    monkeypatch.delenv("AGENT_WORKSPACE_ROOT")
    monkeypatch.chdir(tmp_path)
    assert get_workspace_root() == Path(os.getcwd())


def test_root_expands_home(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert get_workspace_root("~/proj") == tmp_path / "proj"


@pytest.mark.parametrize("rel", ["../etc/passwd", "a/../../b", "a/..", "..", "a\\..\\b"])
def test_parent_segments_are_rejected(workspace, rel):
    with pytest.raises(WorkspaceError) as exc:
        resolve_workspace_path(rel, workspace)
    assert exc.value.code == ToolErrorCode.PERMISSION_DENIED


def test_dotdot_inside_a_name_is_fine(workspace):
    assert resolve_workspace_path("notes..txt", workspace) == workspace / "notes..txt"


def test_absolute_path_outside_root_is_rejected(workspace):
    with pytest.raises(WorkspaceError):
        resolve_workspace_path("/etc/passwd", workspace)


def test_absolute_path_inside_root_is_accepted(workspace):
    assert resolve_workspace_path(str(workspace / "a.txt"), workspace) == workspace / "a.txt"


def test_sibling_with_common_prefix_is_outside(tmp_path):
    root = tmp_path / "work"
    root.mkdir()
    (tmp_path / "work-other").mkdir()
    with pytest.raises(WorkspaceError):
        resolve_workspace_path(str(tmp_path / "work-other" / "x"), root)


def test_root_itself_resolves(workspace):
    assert resolve_workspace_path(".", workspace) == workspace


def test_symlink_escape_is_rejected(tmp_path, workspace):
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("secret")
    (workspace / "link").symlink_to(outside)

    # Lexically fine, but the real path leaves the workspace
    assert resolve_workspace_path("link/secret.txt", workspace)
    with pytest.raises(WorkspaceError) as exc:
        resolve_workspace_path_safe("link/secret.txt", workspace)
    assert exc.value.code == ToolErrorCode.PERMISSION_DENIED


def test_new_file_under_escaping_symlink_is_rejected(tmp_path, workspace):
    outside = tmp_path / "outside"
    outside.mkdir()
    (workspace / "link").symlink_to(outside)
    with pytest.raises(WorkspaceError):
        resolve_workspace_path_safe("link/new/deeper/file.txt", workspace)


def test_symlink_within_workspace_is_allowed(workspace):
    (workspace / "real").mkdir()
    (workspace / "real" / "a.txt").write_text("a")
    (workspace / "alias").symlink_to(workspace / "real")
    assert resolve_workspace_path_safe("alias/a.txt", workspace, require_exists=True)


def test_missing_path_with_require_exists(workspace):
    with pytest.raises(WorkspaceError) as exc:
        resolve_workspace_path_safe("nope.txt", workspace, require_exists=True)
    assert exc.value.code == ToolErrorCode.NOT_FOUND
    assert resolve_workspace_path_safe("nope.txt", workspace) == workspace / "nope.txt"


def test_guard_blocks_writes_when_disabled(workspace):
    guard = WorkspaceGuard(root=workspace, writes_enabled=False)
    with pytest.raises(WorkspaceError) as exc:
        guard.require_write("a.txt")
    assert exc.value.code == ToolErrorCode.PERMISSION_DENIED
    assert "AGENT_FILESYSTEM_WRITES_ENABLED" in exc.value.message


def test_guard_relative_display(workspace):
    guard = WorkspaceGuard(root=workspace, writes_enabled=True)
    assert guard.relative(workspace / "src" / "a.py") == "src/a.py"
    assert guard.relative(workspace) == "."


def test_map_os_error_codes():
    import errno

    assert map_os_error(OSError(errno.ENOENT, "x"), "a").code == ToolErrorCode.NOT_FOUND
    assert map_os_error(OSError(errno.EACCES, "x"), "a").code == ToolErrorCode.PERMISSION_DENIED
    assert map_os_error(OSError(errno.EIO, "x"), "a").code == ToolErrorCode.IO_ERROR
