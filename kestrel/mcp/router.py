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

"""Tool router: the pool of MCP server connections.

The router is the single owner of every ServerConnection and of the
aggregated tool catalog. Other components receive copies of the catalog
(list_all_tools) and go through call_tool/execute to run anything.

Usage:
    async with ToolRouter(config.enabled_servers) as router:
        await router.connect_all()
        result = await router.execute(action)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from kestrel.agent.actions import ToolCallAction, ToolResult
from kestrel.config.timeouts import Timeouts
from kestrel.core.errors import (
    KestrelError,
    ServerConnectError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
)
from kestrel.mcp.client import ServerConnection
from kestrel.mcp.protocol import MCPServerConfig, MCPTool

logger = logging.getLogger(__name__)

WRITE_TOOL_NAME = "write_file"

PATH_PARAM_NAMES = ("path", "file_path", "filepath", "filename", "file")
CONTENT_PARAM_NAMES = ("content", "text", "data", "contents", "body")


class ServerStatus(Enum):
    """Connection status of a configured server."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass
class ServerEntry:
    """A configured server and its current connection."""

    config: MCPServerConfig
    connection: Optional[ServerConnection] = None
    status: ServerStatus = ServerStatus.DISCONNECTED
    error_message: Optional[str] = None


@dataclass
class ConnectResult:
    """Summary of connect_all()."""

    servers_configured: int = 0
    servers_connected: int = 0
    tools_registered: int = 0
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def all_failed(self) -> bool:
        return self.servers_configured > 0 and self.servers_connected == 0


class ToolRouter:
    """Owns MCP server connections and routes tool calls by name."""

    def __init__(
        self,
        servers: Optional[List[MCPServerConfig]] = None,
        tool_call_timeout: float = Timeouts.TOOL_CALL,
    ):
        self.tool_call_timeout = tool_call_timeout
        self._entries: List[ServerEntry] = [ServerEntry(config=cfg) for cfg in servers or []]

    async def __aenter__(self) -> "ToolRouter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    def add_connection(self, connection: ServerConnection) -> None:
        """Register an already-connected server (appended to the routing order)."""
        self._entries.append(
            ServerEntry(
                config=connection.config,
                connection=connection,
                status=ServerStatus.CONNECTED,
            )
        )

    async def connect_all(self) -> ConnectResult:
        """Connect every configured server concurrently.

        A server that fails to start is marked FAILED and logged; the others
        are unaffected.
        """
        pending = [e for e in self._entries if e.status != ServerStatus.CONNECTED]
        await asyncio.gather(*(self._connect_entry(e) for e in pending))

        result = ConnectResult(servers_configured=len(self._entries))
        for entry in self._entries:
            if entry.status == ServerStatus.CONNECTED and entry.connection is not None:
                result.servers_connected += 1
                result.tools_registered += len(entry.connection.tools)
            elif entry.error_message:
                result.errors[entry.config.name] = entry.error_message

        if result.servers_configured:
            logger.info(
                f"Connected to {result.servers_connected}/{result.servers_configured} "
                f"MCP server(s), {result.tools_registered} tool(s) available"
            )
        return result

    async def _connect_entry(self, entry: ServerEntry) -> None:
        entry.status = ServerStatus.CONNECTING
        connection = ServerConnection(entry.config)
        try:
            await connection.connect()
        except ServerConnectError as e:
            entry.status = ServerStatus.FAILED
            entry.error_message = e.message
            logger.warning(f"Failed to connect to MCP server '{entry.config.name}': {e.message}")
            return
        entry.connection = connection
        entry.status = ServerStatus.CONNECTED
        entry.error_message = None

    async def shutdown(self) -> None:
        """Close every connection. Safe to call more than once."""
        for entry in self._entries:
            if entry.connection is None:
                continue
            try:
                await entry.connection.close()
            except (OSError, KestrelError) as e:
                logger.warning(f"Error closing MCP server '{entry.config.name}': {e}")
            entry.connection = None
            entry.status = ServerStatus.DISCONNECTED

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    @property
    def connections(self) -> List[ServerConnection]:
        return [
            e.connection
            for e in self._entries
            if e.status == ServerStatus.CONNECTED and e.connection is not None
        ]

    @property
    def has_servers(self) -> bool:
        return bool(self.connections)

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        return {
            e.config.name: {
                "status": e.status.value,
                "error": e.error_message,
                "tools_count": len(e.connection.tools) if e.connection else 0,
            }
            for e in self._entries
        }

    def list_all_tools(self) -> List[MCPTool]:
        """All tools in configured server order. Same-named tools are kept."""
        return [tool for conn in self.connections for tool in conn.tools]

    def list_tools_by_server(self) -> List[Tuple[str, MCPTool]]:
        return [(conn.name, tool) for conn in self.connections for tool in conn.tools]

    def find_server(self, tool_name: str) -> Optional[ServerConnection]:
        """First connected server (in configured order) advertising tool_name."""
        for conn in self.connections:
            if conn.has_tool(tool_name):
                return conn
        return None

    # -------------------------------------------------------------------------
    # Invocation
    # -------------------------------------------------------------------------

    async def call_tool(
        self,
        name: str,
        arguments: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> str:
        """Call a tool on the first server that advertises it.

        Returns:
            The result's content rendered as text

        Raises:
            ToolNotFoundError: No connected server has a tool with this name
            ToolExecutionError: Transport failure, timeout, or an isError result
        """
        conn = self.find_server(name)
        if conn is None:
            raise ToolNotFoundError(name)

        logger.info(f"Calling tool '{name}' on server '{conn.name}'")
        result = await conn.call_tool(
            name, arguments, timeout=timeout if timeout is not None else self.tool_call_timeout
        )
        if result.is_error:
            raise ToolExecutionError(
                f"Tool '{name}' returned an error: {result.text}",
                tool_name=name,
                server_name=conn.name,
                details={"output": result.text},
            )
        logger.debug(f"Tool '{name}' completed ({len(result.text)} chars)")
        return result.text

    async def execute(self, action: ToolCallAction) -> ToolResult:
        """Run a detected tool call. Tool failures become a failed ToolResult."""
        try:
            output = await self.call_tool(action.name, action.arguments)
        except ToolError as e:
            logger.warning(f"Tool call '{action.name}' failed: {e.message}")
            return ToolResult(name=action.name, success=False, output=f"Error: {e.message}", error=e)
        return ToolResult(name=action.name, success=True, output=output)

    # -------------------------------------------------------------------------
    # Write-tool selection (tool-only mode)
    # -------------------------------------------------------------------------

    def select_write_tool(self) -> Optional[MCPTool]:
        """Pick the tool used to forward file writes.

        Priority:
            1. a tool named exactly write_file
            2. a tool whose name contains "write" (then one containing "file"),
               case-insensitive
            3. a tool whose schema has both a path-like and a content-like property
        """
        tools = self.list_all_tools()

        for tool in tools:
            if tool.name == WRITE_TOOL_NAME:
                return tool

        for needle in ("write", "file"):
            for tool in tools:
                if needle in tool.name.lower():
                    return tool

        for tool in tools:
            if _find_param(tool, PATH_PARAM_NAMES) and _find_param(tool, CONTENT_PARAM_NAMES):
                return tool

        return None

    @staticmethod
    def build_write_arguments(tool: MCPTool, path: str, content: str) -> Dict[str, Any]:
        """Map path/content onto the tool's own property names."""
        path_key = _find_param(tool, PATH_PARAM_NAMES) or "path"
        content_key = _find_param(tool, CONTENT_PARAM_NAMES) or "content"
        return {path_key: path, content_key: content}


def _find_param(tool: MCPTool, candidates: Tuple[str, ...]) -> Optional[str]:
    props = tool.properties
    for candidate in candidates:
        if candidate in props:
            return candidate
    lowered = {key.lower(): key for key in props}
    for candidate in candidates:
        if candidate in lowered:
            return lowered[candidate]
    return None
