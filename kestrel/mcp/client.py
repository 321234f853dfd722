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

"""Connection to a single MCP tool server."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from kestrel import __version__
from kestrel.config.timeouts import McpTimeouts
from kestrel.core.errors import ServerConnectError, ToolExecutionError, TransportError
from kestrel.mcp.protocol import (
    PROTOCOL_VERSION,
    MCPClientInfo,
    MCPInitializeResult,
    MCPListToolsResult,
    MCPMessageType,
    MCPServerConfig,
    MCPServerInfo,
    MCPTool,
    MCPToolCallResult,
    MCPTransportKind,
)
from kestrel.mcp.transport import StdioTransport

logger = logging.getLogger(__name__)

CLIENT_NAME = "kestrel"

# Upper bound on tools/list pages, in case a server keeps returning a cursor
MAX_LIST_PAGES = 100


class ServerConnection:
    """One initialized MCP server and its tool catalog.

    The catalog is fetched once in connect() and not refreshed afterwards.
    """

    def __init__(self, config: MCPServerConfig, transport: Optional[StdioTransport] = None):
        self.config = config
        self.name = config.name
        self.transport = transport or StdioTransport(
            command=config.command,
            args=config.args,
            env=config.env,
            name=config.name,
        )
        self.server_info: Optional[MCPServerInfo] = None
        self._tools: List[MCPTool] = []

    @property
    def tools(self) -> List[MCPTool]:
        return list(self._tools)

    def has_tool(self, name: str) -> bool:
        return any(tool.name == name for tool in self._tools)

    async def connect(self, timeout: float = McpTimeouts.CONNECT) -> None:
        """Spawn the server, run the initialize handshake, and list its tools.

        Raises:
            ServerConnectError: On any failure; the subprocess is cleaned up
        """
        if self.config.transport != MCPTransportKind.STDIO:
            raise ServerConnectError(
                f"Transport '{self.config.transport.value}' is not supported "
                f"(server '{self.name}'); only stdio is available",
                server_name=self.name,
            )

        try:
            await asyncio.wait_for(self._handshake(), timeout=timeout)
        except ServerConnectError:
            await self.close()
            raise
        except asyncio.TimeoutError as e:
            await self.close()
            raise ServerConnectError(
                f"Timed out connecting to MCP server '{self.name}' after {timeout}s",
                server_name=self.name,
                cause=e,
            ) from e
        except (TransportError, ValueError) as e:
            await self.close()
            raise ServerConnectError(
                f"Failed to initialize MCP server '{self.name}': {e.args[0] if e.args else e}",
                server_name=self.name,
                cause=e,
            ) from e

    async def _handshake(self) -> None:
        await self.transport.start()

        params = {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"roots": {"listChanged": False}},
            "clientInfo": MCPClientInfo(name=CLIENT_NAME, version=__version__).model_dump(),
        }
        result = await self.transport.request(MCPMessageType.INITIALIZE.value, params)
        init = MCPInitializeResult.model_validate(result)
        self.server_info = init.server_info
        logger.info(f"Connected to MCP server '{self.name}' ({init.server_info.name})")

        await self.transport.notify(MCPMessageType.INITIALIZED.value)
        self._tools = await self._list_tools()

    async def _list_tools(self) -> List[MCPTool]:
        tools: List[MCPTool] = []
        cursor: Optional[str] = None
        for _ in range(MAX_LIST_PAGES):
            params: Dict[str, Any] = {"cursor": cursor} if cursor else {}
            result = await self.transport.request(MCPMessageType.LIST_TOOLS.value, params)
            page = MCPListToolsResult.model_validate(result)
            tools.extend(page.tools)
            cursor = page.next_cursor
            if not cursor:
                break

        logger.info(f"MCP server '{self.name}' provides {len(tools)} tool(s)")
        for tool in tools:
            logger.debug(f"  - {tool.name}: {tool.description or '(no description)'}")
        return tools

    async def call_tool(
        self,
        name: str,
        arguments: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> MCPToolCallResult:
        """Invoke tools/call on this server.

        Raises:
            ToolExecutionError: Transport failure, error response, or timeout
        """
        try:
            result = await self.transport.request(
                MCPMessageType.CALL_TOOL.value,
                {"name": name, "arguments": arguments},
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(
                f"Tool '{name}' on server '{self.name}' timed out",
                tool_name=name,
                server_name=self.name,
                timed_out=True,
                cause=e,
            ) from e
        except TransportError as e:
            raise ToolExecutionError(
                f"Tool '{name}' failed on server '{self.name}': {e.message}",
                tool_name=name,
                server_name=self.name,
                cause=e,
            ) from e

        try:
            return MCPToolCallResult.model_validate(result)
        except ValueError as e:
            raise ToolExecutionError(
                f"Tool '{name}' returned an unreadable result: {e}",
                tool_name=name,
                server_name=self.name,
                cause=e,
            ) from e

    async def close(self) -> None:
        await self.transport.close()
