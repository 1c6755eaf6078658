"""Utility helpers: stderr logging and token estimation."""

from taskpilot.utils.log import debug, log

__all__ = ["debug", "log"]
