"""Filesystem-backed store for tool inputs and outputs.

Each tool call is written to its own JSON file; only a small
:class:`ContextPointer` stays in memory.  Files are never updated in
place and are removed in bulk by :meth:`ContextManager.clear` at session
end.
"""

from __future__ import annotations

import hashlib
import json
import re
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from taskpilot.utils.log import debug, log

_TOKEN_SPLIT_RE = re.compile(r"[\s\-_.,;:!?'\"()\[\]{}]+")
_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9_-]")

DESCRIPTION_ARG_CHARS = 50


def _log(msg: str) -> None:
    log("context", msg)


@dataclass
class ContextPointer:
    """In-memory reference to one stored context file (never the payload)."""

    filepath: str
    filename: str
    tool_name: str
    tool_description: str
    args: Dict[str, Any] = field(default_factory=dict)
    task_id: Optional[str] = None
    query_id: Optional[str] = None


def extract_keywords(text: str) -> List[str]:
    """Lowercase tokens longer than two characters, in order of appearance."""
    return [w for w in _TOKEN_SPLIT_RE.split(text.lower()) if len(w) > 2]


def describe_tool_call(tool_name: str, args: Dict[str, Any]) -> str:
    """Short human description of a tool call, used for relevance matching."""
    for value in args.values():
        if isinstance(value, str) and value:
            preview = value if len(value) <= DESCRIPTION_ARG_CHARS else value[:DESCRIPTION_ARG_CHARS] + "..."
            return f"{tool_name}: {preview}"
    if args:
        return f"{tool_name} with {len(args)} argument(s)"
    return tool_name


def hash_args(args: Dict[str, Any]) -> str:
    """Stable 8-hex-char digest of tool arguments."""
    payload = json.dumps(args, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:8]


def hash_query(query: str) -> str:
    """Stable id for a user query: ``q_`` + 16 hex chars of sha256."""
    return "q_" + hashlib.sha256(query.encode("utf-8")).hexdigest()[:16]


class ContextManager:
    """Persists tool results to disk and tracks lightweight pointers.

    Thread-safe: tools within one turn may finish concurrently, so the
    filename counter and pointer list are guarded by a lock.
    """

    def __init__(self, context_dir: Union[str, Path]):
        self.context_dir = Path(context_dir)
        self._pointers: List[ContextPointer] = []
        self._counter = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def _next_filename(self, tool_name: str, args: Dict[str, Any]) -> str:
        with self._lock:
            self._counter += 1
            counter = self._counter
        sanitized = _UNSAFE_NAME_RE.sub("_", tool_name) or "tool"
        epoch_ms = int(time.time() * 1000)
        suffix = uuid.uuid4().hex[:4]
        return f"{sanitized}_{hash_args(args)}_{epoch_ms}_{counter}_{suffix}.json"

    def save_context(
        self,
        tool_name: str,
        args: Dict[str, Any],
        result: Any,
        task_id: Optional[str] = None,
        query_id: Optional[str] = None,
    ) -> str:
        """Write one tool call to disk and record a pointer.

        Returns:
            Absolute path of the written file.

        Raises:
            OSError: If the directory or file cannot be written.
        """
        self.context_dir.mkdir(parents=True, exist_ok=True)

        description = describe_tool_call(tool_name, args)
        filename = self._next_filename(tool_name, args)
        filepath = self.context_dir / filename

        stored: Dict[str, Any] = {
            "toolName": tool_name,
            "toolDescription": description,
            "args": args,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if task_id is not None:
            stored["taskId"] = task_id
        if query_id is not None:
            stored["queryId"] = query_id
        stored["result"] = result

        # "x" mode: never overwrite an existing file
        with open(filepath, "x", encoding="utf-8") as f:
            f.write(json.dumps(stored, indent=2, default=str))

        pointer = ContextPointer(
            filepath=str(filepath),
            filename=filename,
            tool_name=tool_name,
            tool_description=description,
            args=dict(args),
            task_id=task_id,
            query_id=query_id,
        )
        with self._lock:
            self._pointers.append(pointer)
        debug("context", f"saved {filename}")
        return str(filepath)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def select_relevant_contexts(
        self,
        query: str,
        pointers: Optional[List[ContextPointer]] = None,
    ) -> List[str]:
        """Rank stored contexts by keyword overlap with *query*.

        Returns file paths of pointers scoring above zero, best first; ties
        keep insertion order.  Falls back to every pointer when the query
        has no usable keywords or nothing matches.
        """
        candidates = self.get_all_pointers() if pointers is None else list(pointers)
        if not candidates:
            return []

        query_keywords = extract_keywords(query)
        if not query_keywords:
            return [p.filepath for p in candidates]

        scored = []
        for pointer in candidates:
            description_keywords = set(extract_keywords(pointer.tool_description))
            score = sum(1 for kw in query_keywords if kw in description_keywords)
            if score > 0:
                scored.append((score, pointer))

        if not scored:
            return [p.filepath for p in candidates]

        # sort() is stable, so equal scores keep insertion order
        scored.sort(key=lambda item: item[0], reverse=True)
        return [pointer.filepath for _, pointer in scored]

    def load_contexts(self, filepaths: List[str]) -> List[Dict[str, Any]]:
        """Read stored contexts, skipping (and logging) unreadable files."""
        loaded: List[Dict[str, Any]] = []
        for filepath in filepaths:
            try:
                with open(filepath, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except FileNotFoundError:
                _log(f"Context file missing, skipping: {filepath}")
                continue
            except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
                _log(f"Context file unreadable, skipping: {filepath} ({type(e).__name__})")
                continue
            if not isinstance(data, dict):
                _log(f"Context file malformed, skipping: {filepath}")
                continue
            loaded.append(data)
        return loaded

    def get_all_pointers(self) -> List[ContextPointer]:
        with self._lock:
            return list(self._pointers)

    def get_pointers_for_query(self, query_id: str) -> List[ContextPointer]:
        with self._lock:
            return [p for p in self._pointers if p.query_id == query_id]

    def get_pointers_for_task(self, task_id: str) -> List[ContextPointer]:
        with self._lock:
            return [p for p in self._pointers if p.task_id == task_id]

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._pointers)

    hash_query = staticmethod(hash_query)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def clear_pointers(self) -> None:
        with self._lock:
            self._pointers.clear()

    def clear_context_dir(self) -> int:
        """Delete every ``*.json`` file in the context dir; return how many."""
        if not self.context_dir.is_dir():
            return 0
        removed = 0
        for path in self.context_dir.glob("*.json"):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                _log(f"Could not delete {path.name}: {e}")
        return removed

    def clear(self) -> None:
        """Delete all context files and forget every pointer."""
        removed = self.clear_context_dir()
        self.clear_pointers()
        debug("context", f"cleared {removed} context files")
