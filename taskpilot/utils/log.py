"""Timestamped stderr logging shared by every taskpilot module.

Modules keep a small ``_log`` helper bound to their component tag::

    def _log(msg: str) -> None:
        log("context", msg)
"""

from __future__ import annotations

import os
import sys
import time

DEBUG_ENV_VAR = "TASKPILOT_DEBUG"


def is_debug_enabled() -> bool:
    """True when ``TASKPILOT_DEBUG`` is set to a truthy value."""
    return os.environ.get(DEBUG_ENV_VAR, "").strip().lower() in ("1", "true", "yes", "on")


def log(component: str, msg: str) -> None:
    """Log to stderr."""
    timestamp = time.strftime("%H:%M:%S")
    print(f"[{timestamp}] [{component}] {msg}", file=sys.stderr, flush=True)


def debug(component: str, msg: str) -> None:
    """Log to stderr only when debug output is enabled."""
    if is_debug_enabled():
        log(component, msg)
