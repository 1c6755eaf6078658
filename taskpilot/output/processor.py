"""Output processor - renders agent events as JSONL or for humans."""

from __future__ import annotations

import json
import sys
from typing import Any, Dict, List, Optional, TextIO

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from taskpilot.config.models import AgentConfig, OutputMode
from taskpilot.core.callbacks import AgentCallbacks
from taskpilot.output.events import Event

PREVIEW_LINES = 5


class OutputProcessor(AgentCallbacks):
    """Formats agent events.

    In JSON mode every event is written to stdout as one JSON line.  In
    human mode progress goes to stderr through ``rich`` and the final
    answer to stdout.
    """

    def __init__(
        self,
        config: AgentConfig,
        stdout: TextIO = sys.stdout,
        stderr: TextIO = sys.stderr,
        verbose: bool = False,
    ):
        self.config = config
        self.stdout = stdout
        self.stderr = stderr
        self.verbose = verbose

        self.console = Console(
            file=stderr,
            force_terminal=config.output.colors,
            no_color=not config.output.colors,
        )
        self.json_mode = config.output.mode == OutputMode.JSON
        self._streaming = False
        self._streamed = False

    def handle(self, event: Event) -> None:
        if self.json_mode:
            print(json.dumps(event.to_dict(), default=str), file=self.stdout, flush=True)
        else:
            super().handle(event)

    # ------------------------------------------------------------------
    # Human-readable rendering
    # ------------------------------------------------------------------

    def _end_stream(self) -> None:
        if self._streaming:
            self.console.print()
            self._streaming = False

    def on_agent_start(self, query: str) -> None:
        if self.verbose:
            self.console.print(f"[dim]Query: {escape(query)}[/dim]")

    def on_llm_start(self, model: str, messages: List[Dict[str, Any]]) -> None:
        self._streamed = False
        self.console.print(f"[dim]Thinking ({model})...[/dim]")

    def on_llm_stream(self, chunk: str) -> None:
        self._streaming = True
        self._streamed = True
        self.console.print(chunk, end="", markup=False, highlight=False)

    def on_llm_end(self, response: Dict[str, Any], usage: Optional[Dict[str, int]]) -> None:
        self._end_stream()
        if self.verbose and usage:
            self.console.print(
                f"[dim]Tokens: {usage.get('prompt_tokens', 0)} in / "
                f"{usage.get('completion_tokens', 0)} out[/dim]"
            )

    def on_retry(self, attempt: int, max_retries: int, delay_ms: int, error: str, message: str) -> None:
        self._end_stream()
        self.console.print(
            f"[yellow]Retry {attempt}/{max_retries} in {delay_ms}ms ({error}): {escape(message)}[/yellow]"
        )

    def on_tool_start(self, name: str, args: Dict[str, Any]) -> None:
        self._end_stream()
        self.console.print(f"[yellow]> {name}[/yellow]")
        if self.verbose and args:
            self.console.print(f"[dim]  {escape(json.dumps(args, default=str)[:200])}[/dim]")

    def on_tool_progress(self, call_id: str, title: Optional[str], metadata: Dict[str, Any]) -> None:
        if title:
            self.console.print(f"[dim]  ... {escape(title)}[/dim]")

    def on_tool_end(self, name: str, result: Dict[str, Any]) -> None:
        success = result.get("success", False)
        status = "[green]OK[/green]" if success else f"[red]FAILED {result.get('error', '')}[/red]"
        title = result.get("title") or name
        self.console.print(f"[dim]  {status} {escape(title)}[/dim]", highlight=False)

        output = result.get("output", "")
        if output and (self.verbose or not success):
            lines = output.split("\n")
            if len(lines) > PREVIEW_LINES * 2:
                display = "\n".join(lines[:PREVIEW_LINES] + ["...", f"({len(lines) - PREVIEW_LINES} more lines)"])
            else:
                display = output
            self.console.print(display, style="dim", markup=False, highlight=False)

    def on_state_change(self, old: str, new: str) -> None:
        if self.verbose:
            self.console.print(f"[dim]  state: {old} -> {new}[/dim]")

    def on_error(self, error: Dict[str, str]) -> None:
        self._end_stream()
        self.console.print(f"[red]Error \\[{error.get('code', 'UNKNOWN')}]: {escape(error.get('message', ''))}[/red]")

    def on_agent_end(self, answer: str) -> None:
        self._end_stream()
        if answer and not self._streamed:
            self.console.print()
            self.console.print(Panel(Text(answer), border_style="blue", title="Answer"))

    def on_agent_canceled(self, reason: str) -> None:
        self._end_stream()
        self.console.print(f"[yellow]Cancelled: {escape(reason)}[/yellow]")

    def print_final(self, message: str) -> None:
        """Print the final answer to stdout (human mode only)."""
        if not self.json_mode and message:
            print(message, file=self.stdout, flush=True)
