"""Event types and output rendering."""

from taskpilot.output.events import Event, EventType

__all__ = ["Event", "EventType"]
