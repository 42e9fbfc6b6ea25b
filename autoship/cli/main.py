"""
Autoship CLI - run the agent once against the task queue.

Run `autoship-agent` to work on the highest-priority pending task, or pass
a prompt to give the agent different instructions.
"""

import json
import logging
import shlex
import signal
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule

from autoship import __version__
from autoship.core.agent import AgentRunner, missing_credentials
from autoship.core.loop import LoopObserver, LoopResult, ModelServiceError
from autoship.mcp.supervisor import StartupError
from autoship.validation.config import Config, ConfigError

console = Console()

RESULT_PREVIEW_CHARS = 500

EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_MAX_TURNS = 2


def _indent(text: str, prefix: str = "   ") -> str:
    return "\n".join(prefix + line for line in text.split("\n"))


def _preview(text: str, limit: int = RESULT_PREVIEW_CHARS) -> str:
    if len(text) > limit:
        return text[:limit] + "\n... (truncated)"
    return text


class ConsoleObserver(LoopObserver):
    """Prints the conversation as it happens."""

    def __init__(self, out: Console):
        self.console = out

    def on_turn_start(self, turn, max_turns):
        self.console.print()
        self.console.print(Rule(f"Turn {turn}/{max_turns}", style="dim"))

    def on_model_response(self, turn, response, messages):
        if response.text:
            self.console.print(f"[bold blue]Agent:[/bold blue] {escape(response.text)}", highlight=False)

    def on_tool_call(self, invocation):
        self.console.print(f"\n[cyan]Tool:[/cyan] {escape(invocation.name)}", highlight=False)
        self.console.print(
            _indent("Input: " + json.dumps(invocation.input, indent=2)),
            style="dim",
            highlight=False,
        )

    def on_tool_result(self, invocation, result):
        style = "red" if result.is_error else "dim"
        self.console.print(_indent("Result: " + _preview(result.text)), style=style, highlight=False, markup=False)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=verbose, rich_tracebacks=verbose)],
    )
    if not verbose:
        for noisy in ("httpx", "httpcore", "anthropic"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


def _install_signal_handlers() -> None:
    """Turn SIGTERM into SystemExit so teardown in ``finally`` blocks runs."""

    def _terminate(signum, frame):
        console.print(f"\n[yellow]Received signal {signum}, shutting down...[/yellow]")
        sys.exit(128 + signum)

    signal.signal(signal.SIGTERM, _terminate)


def _print_summary(result: LoopResult) -> None:
    stats = f"{result.turns} turn(s) · {result.tool_calls} tool call(s) · {result.token_usage:,} tokens"
    if result.completed:
        console.print(Panel(f"[green]Agent completed[/green]\n[dim]{stats}[/dim]", expand=False))
    else:
        console.print(Panel(f"[yellow]Max turns reached, stopping agent.[/yellow]\n[dim]{stats}[/dim]", expand=False))


@click.command()
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.option("--model", "-m", default=None, help="Model to use (e.g. claude-sonnet-4-20250514, openrouter/...)")
@click.option("--max-turns", type=int, default=None, help="Maximum model calls before stopping")
@click.option("--server", "server", default=None, help="Command that launches the tool-provider server")
@click.option("--concurrency", type=int, default=None, help="Tool invocations to run in parallel per turn")
@click.option("--workspace", "-w", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Directory the agent works in (default: current directory)")
@click.option("--verbose", is_flag=True, help="Show debug output")
@click.argument("prompt", required=False, nargs=-1)
def cli(
    version: bool,
    model: Optional[str],
    max_turns: Optional[int],
    server: Optional[str],
    concurrency: Optional[int],
    workspace: Optional[Path],
    verbose: bool,
    prompt: tuple,
) -> None:
    """
    Autoship Agent - autonomous agent for your task queue.

    \b
    Examples:
        autoship-agent                          # Work on the top pending task
        autoship-agent "List pending tasks"     # Custom instructions
        autoship-agent --server "node dist/index.js" --max-turns 20
    """
    if version:
        console.print(f"Autoship Agent v{__version__}")
        return

    setup_logging(verbose)

    overrides: dict = {"agent": {}, "server": {}}
    if model:
        overrides["agent"]["model"] = model
    if max_turns is not None:
        overrides["agent"]["max_turns"] = max_turns
    if concurrency is not None:
        overrides["agent"]["tool_concurrency"] = concurrency
    if server:
        overrides["server"]["command"] = shlex.split(server)

    try:
        config = Config.load(overrides=overrides)
        settings = config.merged
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(EXIT_FAILED)

    missing = missing_credentials(config)
    if missing:
        console.print(f"[red]Missing required environment variables: {', '.join(missing)}[/red]")
        sys.exit(EXIT_FAILED)

    console.print(Rule("[bold]Autoship Agent Starting[/bold]"))
    console.print(f"[dim]Model: {settings.agent.model} · max turns: {settings.agent.max_turns}[/dim]")

    _install_signal_handlers()
    runner = AgentRunner(config, workspace=workspace, observers=[ConsoleObserver(console)])
    try:
        result = runner.run(" ".join(prompt) if prompt else None)
    except StartupError as e:
        console.print(f"[red]Failed to start tool-provider: {e}[/red]")
        sys.exit(EXIT_FAILED)
    except ModelServiceError as e:
        console.print(f"[red]Agent error: {e}[/red]")
        sys.exit(EXIT_FAILED)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)

    console.print()
    _print_summary(result)
    sys.exit(EXIT_COMPLETED if result.completed else EXIT_MAX_TURNS)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
