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

"""Rich rendering and line input for the chat CLI."""

import asyncio
import os
import sys
from typing import Optional, TextIO

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from kestrel import __version__
from kestrel.agent.actions import FileOpStatus
from kestrel.agent.orchestrator import ExchangeResult, ExchangeStatus
from kestrel.config.settings import Settings
from kestrel.files.operations import ConfirmCallback
from kestrel.mcp.router import ConnectResult, ToolRouter

READ_SIZE = 4096

YES_ANSWERS = ("y", "yes")
NO_ANSWERS = ("n", "no")

_STATUS_STYLES = {
    FileOpStatus.CREATED: "green",
    FileOpStatus.UPDATED: "green",
    FileOpStatus.FORWARDED: "cyan",
    FileOpStatus.SKIPPED: "yellow",
    FileOpStatus.FAILED: "red",
}


def print_banner(console: Console, settings: Settings, connect: Optional[ConnectResult]) -> None:
    mode = "tool-only" if settings.tool_only else "local writes"
    servers = (
        f"{connect.servers_connected}/{connect.servers_configured} server(s), "
        f"{connect.tools_registered} tool(s)"
        if connect and connect.servers_configured
        else "none"
    )
    console.print(
        Panel(
            f"[bold]Kestrel v{__version__}[/]\n\n"
            f"Engine: [cyan]{settings.engine}[/]\n"
            f"MCP: [cyan]{servers}[/]\n"
            f"File mode: [cyan]{mode}[/] "
            f"(confirm overwrites: {'on' if settings.confirm_writes else 'off'})\n\n"
            f"Type your message and press Enter to chat.\n"
            f"Press Ctrl+C to interrupt a response. "
            f"Type [bold]exit[/] or [bold]quit[/] to leave.",
            title="Welcome",
            border_style="blue",
        )
    )


def render_connect_errors(console: Console, connect: ConnectResult) -> None:
    for name, error in connect.errors.items():
        console.print(f"[red]MCP: failed to connect to '{escape(name)}': {escape(error)}[/]")


def render_exchange(console: Console, result: ExchangeResult) -> None:
    """Summarize what an exchange did after its text has been streamed."""
    if result.read_report is not None:
        for error in result.read_report.errors:
            path, message = escape(str(error.path)), escape(error.message)
            console.print(f"[red]Error loading '{path}': {message}[/]")

    for tool_result in result.tool_results:
        name = escape(tool_result.name)
        if tool_result.success:
            console.print(f"[dim]Tool '{name}' completed[/]")
        else:
            console.print(f"[red]Tool '{name}' failed: {escape(tool_result.output)}[/]")

    for outcome in result.file_outcomes:
        style = _STATUS_STYLES[outcome.status]
        label = outcome.status.value.capitalize()
        detail = f" ({outcome.detail})" if outcome.detail else ""
        console.print(f"[{style}]{label}: {escape(outcome.path + detail)}[/]")

    if result.timed_out_turns:
        console.print(
            f"[yellow]Response truncated: turn timeout reached "
            f"({result.timed_out_turns} turn(s))[/]"
        )
    if result.status == ExchangeStatus.ITERATION_LIMIT:
        console.print(f"[yellow]Iteration limit reached after {result.turns} turn(s)[/]")
    elif result.status == ExchangeStatus.CANCELLED:
        console.print("[yellow]Interrupted[/]")
    elif result.status == ExchangeStatus.ENGINE_ERROR:
        console.print(f"[bold red]Inference error:[/] {escape(result.error_message or '')}")


def render_server_status(console: Console, router: ToolRouter) -> None:
    table = Table(title="MCP Servers")
    table.add_column("Server", style="cyan")
    table.add_column("Status")
    table.add_column("Tools", justify="right")
    table.add_column("Error", style="red")
    for name, status in router.get_status().items():
        style = "green" if status["status"] == "connected" else "red"
        table.add_row(
            escape(name),
            f"[{style}]{status['status']}[/]",
            str(status["tools_count"]),
            escape(status["error"] or ""),
        )
    console.print(table)


def render_tools(console: Console, router: ToolRouter) -> None:
    table = Table(title="MCP Tools")
    table.add_column("Server", style="cyan")
    table.add_column("Tool", style="bold")
    table.add_column("Description")
    for server, tool in router.list_tools_by_server():
        description = tool.description or "(no description)"
        table.add_row(escape(server), escape(tool.name), escape(description))
    console.print(table)


class ConsoleInput:
    """Line input read from stdin on the event loop.

    The REPL prompt and the overwrite confirmation share one reader, so a
    line typed after a cancelled prompt goes to whoever asks next. Where the
    loop cannot watch stdin (Windows, stdin redirected from a regular file)
    lines are read in a worker thread instead.
    """

    def __init__(self, console: Console, stream: Optional[TextIO] = None):
        self.console = console
        self.stream = stream or sys.stdin
        self._buffer = bytearray()
        self._eof = False

    async def ask(self, prompt: str) -> str:
        """Print a markup prompt and return the next line without its newline.

        Raises:
            EOFError: At end of input
        """
        self.console.print(prompt, end="")
        line = await self.readline()
        if line is None:
            raise EOFError()
        return line

    async def readline(self) -> Optional[str]:
        """Next line, or None at end of input. Cancelling releases stdin."""
        while b"\n" not in self._buffer and not self._eof:
            fd = self._fileno()
            if fd is None or not await self._wait_readable(fd):
                return await self._readline_in_thread()
            chunk = os.read(fd, READ_SIZE)
            if chunk:
                self._buffer.extend(chunk)
            else:
                self._eof = True

        if not self._buffer:
            return None
        line, _, rest = bytes(self._buffer).partition(b"\n")
        self._buffer = bytearray(rest)
        return line.decode("utf-8", errors="replace").rstrip("\r")

    def _fileno(self) -> Optional[int]:
        try:
            return self.stream.fileno()
        except (AttributeError, OSError, ValueError):
            return None

    async def _wait_readable(self, fd: int) -> bool:
        loop = asyncio.get_running_loop()
        ready = loop.create_future()
        try:
            loop.add_reader(fd, _resolve, ready)
        except (NotImplementedError, OSError, ValueError):
            return False
        try:
            await ready
        finally:
            loop.remove_reader(fd)
        return True

    async def _readline_in_thread(self) -> Optional[str]:
        line = await asyncio.to_thread(self.stream.readline)
        if not line:
            return None
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        return line.rstrip("\r\n")


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


def make_confirm(console: Console, reader: ConsoleInput) -> ConfirmCallback:
    """Overwrite confirmation read through the shared console input."""

    async def confirm(path: str, exists: bool) -> bool:
        target = escape(path)
        question = (
            f"Overwrite existing file [bold]{target}[/]?" if exists else f"Create [bold]{target}[/]?"
        )
        while True:
            try:
                answer = await reader.ask(f"{question} [magenta]\\[y/n][/] [cyan](n)[/]: ")
            except EOFError:
                return False
            answer = answer.strip().lower()
            if not answer or answer in NO_ANSWERS:
                return False
            if answer in YES_ANSWERS:
                return True
            console.print("[red]Please enter Y or N[/]")

    return confirm
