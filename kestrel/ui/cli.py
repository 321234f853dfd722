# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Command-line interface for Kestrel."""

import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, TextIO

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from kestrel import __version__
from kestrel.agent.engine import create_engine
from kestrel.agent.orchestrator import ConversationOrchestrator, ExchangeStatus
from kestrel.config.settings import ProjectPaths, Settings, load_settings
from kestrel.core.errors import ConfigurationError, InferenceError
from kestrel.files.operations import FileOperationEngine, SandboxPolicy
from kestrel.mcp.protocol import MCPConfig, load_mcp_config
from kestrel.mcp.router import ToolRouter
from kestrel.ui.console import (
    ConsoleInput,
    make_confirm,
    print_banner,
    render_connect_errors,
    render_exchange,
    render_server_status,
    render_tools,
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="kestrel",
    help="Local-model agent loop with MCP tool calls and sandboxed file writes",
    add_completion=False,
)

console = Console()

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")

EXIT_COMMANDS = ("exit", "quit")


def _configure_logging(level: str, stream: Optional[TextIO] = None) -> None:
    """Install a single root handler; unknown level names fall back to WARNING."""
    numeric = getattr(logging, level.upper(), logging.WARNING)
    if not isinstance(numeric, int):
        numeric = logging.WARNING

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if stream is not None:
        handler: logging.Handler = logging.StreamHandler(stream)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    else:
        handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    root.addHandler(handler)
    root.setLevel(numeric)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))


def _flush_logging() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"Kestrel v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Kestrel - drive a local model with tool calls and file writes."""


def _resolve_mcp_config(settings: Settings) -> MCPConfig:
    path = settings.mcp_config or ProjectPaths().find_mcp_config()
    if path is None:
        return MCPConfig()
    if not Path(path).exists():
        raise ConfigurationError(f"MCP config not found: {path}", config_key="mcp_config")
    return load_mcp_config(Path(path))


@app.command()
def chat(
    message: Optional[str] = typer.Argument(
        None,
        help="Message to send (starts interactive mode if not provided)",
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file (default: ~/.kestrel/config.yaml)"
    ),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model path or name"),
    engine_command: Optional[str] = typer.Option(
        None, "--engine-command", help="Model runner command ({prompt} and {model} are substituted)"
    ),
    mcp_config: Optional[Path] = typer.Option(
        None, "--mcp-config", help="MCP server configuration file (YAML or TOML)"
    ),
    tool_only: Optional[bool] = typer.Option(
        None, "--tool-only", help="Disable local writes; forward file writes to an MCP tool"
    ),
    confirm_writes: Optional[bool] = typer.Option(
        None, "--confirm-writes/--no-confirm-writes", help="Ask before overwriting files"
    ),
    preview_prompt: Optional[bool] = typer.Option(
        None, "--preview-prompt", help="Print each composed prompt before inference"
    ),
    turn_timeout: Optional[float] = typer.Option(
        None, "--turn-timeout", help="Seconds to wait for one model response"
    ),
    max_file_size: Optional[int] = typer.Option(
        None, "--max-file-size", help="Largest input file to read, in bytes"
    ),
    max_iterations: Optional[int] = typer.Option(
        None, "--max-iterations", help="Maximum model turns per message"
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
) -> None:
    """Chat with the local model.

    Examples:
        # Interactive mode
        kestrel chat --engine-command "llama-cli -m {model} -p {prompt}" -m qwen.gguf

        # One-shot, MCP tools only for file output
        kestrel chat --tool-only --mcp-config mcp.yaml "write notes.txt with a haiku"
    """
    try:
        settings = load_settings(
            config,
            model=model,
            engine_command=engine_command,
            mcp_config=mcp_config,
            tool_only=tool_only,
            confirm_writes=confirm_writes,
            preview_prompt=preview_prompt,
            turn_timeout=turn_timeout,
            max_file_size=max_file_size,
            max_iterations=max_iterations,
            log_level=log_level,
        )
    except ConfigurationError as e:
        console.print(f"[bold red]Error:[/] {escape(e.message)}")
        raise typer.Exit(1)

    _configure_logging(settings.log_level)
    try:
        exit_code = asyncio.run(run_chat(settings, message))
    finally:
        _flush_logging()
    if exit_code:
        raise typer.Exit(exit_code)


async def run_chat(settings: Settings, message: Optional[str] = None) -> int:
    """Set up tool servers and the engine, then run one message or a REPL.

    Returns:
        Process exit code
    """
    try:
        mcp = _resolve_mcp_config(settings)
    except ConfigurationError as e:
        console.print(f"[bold red]Error:[/] {escape(e.message)}")
        return 1

    async with ToolRouter(mcp.enabled_servers, tool_call_timeout=settings.tool_call_timeout) as router:
        connect = await router.connect_all()
        render_connect_errors(console, connect)

        if settings.tool_only and not router.has_servers:
            console.print("[bold red]Error:[/] Tool-only mode requires at least one connected MCP server")
            return 1

        try:
            engine = create_engine(settings)
        except (InferenceError, ConfigurationError) as e:
            console.print(f"[bold red]Error:[/] {escape(e.message)}")
            return 1

        reader = ConsoleInput(console)
        files = FileOperationEngine(
            policy=SandboxPolicy.from_settings(settings),
            router=router,
            confirm=make_confirm(console, reader),
            extensions=settings.detect_extensions,
        )
        orchestrator = ConversationOrchestrator(
            engine,
            router=router,
            files=files,
            max_iterations=settings.max_iterations,
            turn_timeout=settings.turn_timeout,
            on_text=lambda text: console.print(text, end="", markup=False, highlight=False),
            on_prompt=_prompt_previewer() if settings.preview_prompt else None,
        )

        try:
            if message:
                return await _run_one(orchestrator, message)
            print_banner(console, settings, connect)
            return await _repl(orchestrator, reader)
        except InferenceError as e:
            console.print(f"\n[bold red]Inference error:[/] {escape(e.message)}")
            return 1
        finally:
            await orchestrator.drain_background()
            await engine.close()


def _prompt_previewer():
    def preview(prompt: str) -> None:
        console.print(f"[dim]\\[prompt length={len(prompt)}][/]")
        console.print(prompt, markup=False, highlight=False, style="dim")

    return preview


async def _run_one(orchestrator: ConversationOrchestrator, message: str) -> int:
    loop = asyncio.get_running_loop()
    previous = signal.getsignal(signal.SIGINT)
    installed = False
    # Ctrl+C cancels the exchange instead of the whole program
    with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        installed = True
    try:
        result = await orchestrator.run_exchange(message)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
            signal.signal(signal.SIGINT, previous)
    console.print()
    render_exchange(console, result)
    return 1 if result.status == ExchangeStatus.ENGINE_ERROR else 0


async def _repl(orchestrator: ConversationOrchestrator, reader: ConsoleInput) -> int:
    while True:
        try:
            user_input = await reader.ask("\n[bold green]You[/]: ")
        except EOFError:
            console.print()
            break

        text = user_input.strip()
        if not text:
            continue
        if text.lower() in EXIT_COMMANDS:
            console.print("[dim]See you![/]")
            break

        console.print("\n[bold blue]Assistant[/]")
        await _run_one(orchestrator, text)
    return 0


@app.command()
def tools(
    mcp_config: Optional[Path] = typer.Option(
        None, "--mcp-config", help="MCP server configuration file (YAML or TOML)"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
) -> None:
    """Connect to the configured MCP servers and list their tools."""
    _configure_logging(log_level, stream=sys.stderr)
    try:
        settings = load_settings(mcp_config=mcp_config)
        mcp = _resolve_mcp_config(settings)
    except ConfigurationError as e:
        console.print(f"[bold red]Error:[/] {escape(e.message)}")
        raise typer.Exit(1)

    async def _list() -> int:
        async with ToolRouter(mcp.enabled_servers) as router:
            connect = await router.connect_all()
            if not connect.servers_configured:
                console.print("[yellow]No MCP servers configured[/]")
                return 0
            render_server_status(console, router)
            if connect.servers_connected:
                render_tools(console, router)
            return 0 if connect.servers_connected else 1

    exit_code = asyncio.run(_list())
    if exit_code:
        raise typer.Exit(exit_code)


if __name__ == "__main__":
    app()
