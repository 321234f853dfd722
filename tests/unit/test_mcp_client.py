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

"""Tests for ServerConnection handshake and tool calls."""

import asyncio

import pytest

from kestrel import __version__
from kestrel.core.errors import ServerConnectError, ToolExecutionError, TransportError
from kestrel.mcp.client import ServerConnection
from kestrel.mcp.protocol import PROTOCOL_VERSION, MCPServerConfig, MCPTransportKind
from tests.mocks.mcp_mocks import GET_WEATHER_TOOL, FakeTransport, text_result


def make_connection(transport, /, **config):
    return ServerConnection(MCPServerConfig(name="srv", command="srv", **config), transport=transport)


class PagedTransport(FakeTransport):
    """Serves tools/list in pages of one tool."""

    async def request(self, method, params=None, timeout=None):
        if method != "tools/list":
            return await super().request(method, params, timeout)
        self.requests.append((method, params))
        index = int((params or {}).get("cursor") or 0)
        page = {"tools": [self.tools[index]]}
        if index + 1 < len(self.tools):
            page["nextCursor"] = str(index + 1)
        return page


class TestHandshake:
    """Tests for connect()."""

    @pytest.mark.asyncio
    async def test_initialize_then_notify_then_list(self):
        transport = FakeTransport(tools=[GET_WEATHER_TOOL], server_name="weather-server")
        connection = make_connection(transport)

        await connection.connect()

        assert transport.started
        assert [m for m, _ in transport.requests] == ["initialize", "tools/list"]
        init_params = transport.requests[0][1]
        assert init_params["protocolVersion"] == PROTOCOL_VERSION
        assert init_params["clientInfo"] == {"name": "kestrel", "version": __version__}
        assert transport.notifications == ["notifications/initialized"]
        assert connection.server_info.name == "weather-server"
        assert [t.name for t in connection.tools] == ["get_weather"]
        assert connection.has_tool("get_weather")
        assert not connection.has_tool("missing")
        assert connection.tools[0].required == ["location"]

    @pytest.mark.asyncio
    async def test_paginated_tool_list(self):
        tools = [{"name": f"tool_{i}"} for i in range(3)]
        transport = PagedTransport(tools=tools)
        connection = make_connection(transport)

        await connection.connect()

        assert [t.name for t in connection.tools] == ["tool_0", "tool_1", "tool_2"]
        cursors = [p.get("cursor") for m, p in transport.requests if m == "tools/list"]
        assert cursors == [None, "1", "2"]

    @pytest.mark.asyncio
    async def test_initialize_error_closes_transport(self):
        transport = FakeTransport(fail_initialize=True)
        connection = make_connection(transport)

        with pytest.raises(ServerConnectError) as exc_info:
            await connection.connect()

        assert "srv" in exc_info.value.message
        assert isinstance(exc_info.value.cause, TransportError)
        assert transport.closed

    @pytest.mark.asyncio
    async def test_handshake_timeout(self):
        class StuckTransport(FakeTransport):
            async def request(self, method, params=None, timeout=None):
                await asyncio.Event().wait()

        transport = StuckTransport()
        connection = make_connection(transport)

        with pytest.raises(ServerConnectError, match="Timed out"):
            await connection.connect(timeout=0.05)
        assert transport.closed

    @pytest.mark.asyncio
    async def test_unsupported_transport(self):
        transport = FakeTransport()
        connection = make_connection(transport, transport=MCPTransportKind.SSE)

        with pytest.raises(ServerConnectError, match="not supported"):
            await connection.connect()
        assert not transport.started


class TestCallTool:
    """Tests for ServerConnection.call_tool."""

    @pytest.mark.asyncio
    async def test_result_is_parsed(self):
        transport = FakeTransport(
            tools=[GET_WEATHER_TOOL], handler=lambda n, a: text_result("Sunny", is_error=False)
        )
        connection = make_connection(transport)
        await connection.connect()

        result = await connection.call_tool("get_weather", {"location": "Tokyo"}, timeout=1.0)

        assert result.text == "Sunny"
        assert not result.is_error
        assert transport.calls == [{"name": "get_weather", "arguments": {"location": "Tokyo"}}]

    @pytest.mark.asyncio
    async def test_transport_error_becomes_execution_error(self):
        def broken(name, args):
            raise TransportError("MCP server returned error: bad params", code=-32602)

        connection = make_connection(FakeTransport(handler=broken))
        await connection.connect()

        with pytest.raises(ToolExecutionError, match="bad params") as exc_info:
            await connection.call_tool("anything", {})
        assert not exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_unreadable_result(self):
        connection = make_connection(FakeTransport(handler=lambda n, a: {"content": "nope"}))
        await connection.connect()

        with pytest.raises(ToolExecutionError, match="unreadable"):
            await connection.call_tool("anything", {})
