"""Main CLI entry point for taskpilot."""

from __future__ import annotations

import json
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from taskpilot import __version__
from taskpilot.config.loader import find_config_file, load_config
from taskpilot.config.models import AgentConfig, OutputMode, ProviderConfig
from taskpilot.core.agent import Agent
from taskpilot.core.state import AgentState
from taskpilot.output.processor import OutputProcessor
from taskpilot.tools.registry import create_registry
from taskpilot.utils.cancellation import CancellationToken

app = typer.Typer(
    name="taskpilot",
    help="Tool-using LLM agent for the command line",
    add_completion=False,
)

console = Console(stderr=True)

EXIT_FAILED = 1
EXIT_CANCELED = 130


def version_callback(value: bool):
    if value:
        console.print(f"taskpilot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
):
    """taskpilot - a sandboxed, tool-augmented LLM agent."""
    load_dotenv()


def _load(config_file: Optional[Path], overrides: Optional[Dict[str, Any]] = None) -> AgentConfig:
    path = config_file or find_config_file()
    try:
        return load_config(path, overrides)
    except (FileNotFoundError, ValidationError, ValueError) as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        raise typer.Exit(EXIT_FAILED)


def _apply_model(config: AgentConfig, model: str) -> None:
    current = config.provider_config(config.provider) or ProviderConfig()
    config.providers[config.provider] = current.model_copy(update={"model": model, "deployment": None})


@app.command("run")
def run_command(
    prompt: str = typer.Argument(..., help="The task/prompt for the agent"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="LLM provider"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model to use"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help="Workspace root"),
    allow_writes: bool = typer.Option(False, "--allow-writes", help="Let tools modify the workspace"),
    json_mode: bool = typer.Option(False, "--json", help="Output in JSONL format"),
    no_stream: bool = typer.Option(False, "--no-stream", help="Disable streaming"),
    max_iterations: Optional[int] = typer.Option(None, help="Maximum model turns"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Run the agent on PROMPT until it answers."""
    overrides: Dict[str, Any] = {}
    if provider:
        overrides["provider"] = provider
    if workspace:
        overrides["workspace.root"] = str(workspace)
    if allow_writes:
        overrides["workspace.writes_enabled"] = True
    if json_mode:
        overrides["output.mode"] = OutputMode.JSON
    if no_stream:
        overrides["streaming"] = False
    if max_iterations:
        overrides["max_iterations"] = max_iterations

    config = _load(config_file, overrides)
    if model:
        _apply_model(config, model)

    root = config.workspace_root
    if not root.is_dir():
        console.print(f"[red]Workspace does not exist: {root}[/red]")
        raise typer.Exit(EXIT_FAILED)

    output = OutputProcessor(config, verbose=verbose)
    cancel = CancellationToken()

    def on_sigint(signum, frame):
        # A second Ctrl-C falls through to the default handler
        signal.signal(signal.SIGINT, signal.default_int_handler)
        cancel.cancel("interrupted by user")

    previous = signal.signal(signal.SIGINT, on_sigint)

    if not json_mode:
        console.print(f"[bold blue]taskpilot v{__version__}[/bold blue]")
        console.print(f"Provider: [cyan]{config.provider}[/cyan]")
        console.print(f"Workspace: [cyan]{root}[/cyan]")
        console.print()

    agent = Agent(config=config, callbacks=[output])
    try:
        result = agent.run(prompt, cancel=cancel)
    except Exception:
        if verbose:
            console.print_exception()
        raise typer.Exit(EXIT_FAILED)
    finally:
        signal.signal(signal.SIGINT, previous)
        agent.close()

    if result.state == AgentState.CANCELED:
        raise typer.Exit(EXIT_CANCELED)
    if result.state != AgentState.ANSWERED:
        raise typer.Exit(EXIT_FAILED)
    if not sys.stdout.isatty():
        output.print_final(result.answer)


@app.command("tools")
def list_tools(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
    agent_name: Optional[str] = typer.Option(None, "--agent", "-a", help="Agent whose permissions to apply"),
):
    """List the built-in tools and whether they are enabled."""
    config = _load(config_file)
    registry = create_registry(config)
    name = agent_name or config.agent_name

    table = Table(title=f"Tools for agent '{name}'")
    table.add_column("Tool", style="cyan")
    table.add_column("Enabled")
    table.add_column("Mutating")
    table.add_column("Description")
    for definition in registry.all():
        enabled = registry.is_enabled(name, definition.id)
        description = registry.initialize(definition.id, name).description.split("\n")[0]
        table.add_row(
            definition.id,
            "[green]yes[/green]" if enabled else "[red]no[/red]",
            "yes" if definition.mutating else "",
            description,
        )
    Console().print(table)


def _redact(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: ("***" if k == "api_key" and v else _redact(v)) for k, v in data.items()}
    if isinstance(data, list):
        return [_redact(v) for v in data]
    return data


@app.command("config")
def show_config(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Show the effective configuration (API keys redacted)."""
    path = config_file or find_config_file()
    if path:
        console.print(f"Loading config from: {path}")
    else:
        console.print("No config file found, using defaults")
    config = _load(path)
    print(json.dumps(_redact(config.model_dump(mode="json")), indent=2))


if __name__ == "__main__":
    app()
