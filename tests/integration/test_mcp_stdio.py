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

"""End-to-end tests against a real stdio MCP server subprocess."""

import sys
from pathlib import Path

import pytest

from kestrel.agent.actions import ActionSyntax, FileOpStatus, FileWriteAction, ToolCallAction
from kestrel.core.errors import ServerConnectError, ToolExecutionError, TransportError
from kestrel.files.operations import FileOperationEngine, SandboxPolicy
from kestrel.mcp.client import ServerConnection
from kestrel.mcp.protocol import MCPServerConfig
from kestrel.mcp.router import ToolRouter
from kestrel.mcp.transport import StdioTransport

pytestmark = pytest.mark.integration

SERVER_SCRIPT = Path(__file__).with_name("fake_mcp_server.py")


def server_config(root: Path, name: str = "fake") -> MCPServerConfig:
    return MCPServerConfig(name=name, command=sys.executable, args=[str(SERVER_SCRIPT), str(root)])


@pytest.fixture
def server_root(tmp_path):
    root = tmp_path / "server-root"
    root.mkdir()
    return root


class TestStdioTransport:
    """Tests for StdioTransport against the fake server."""

    @pytest.mark.asyncio
    async def test_request_skips_unrelated_messages(self, server_root):
        transport = StdioTransport(sys.executable, [str(SERVER_SCRIPT), str(server_root)], name="t")
        await transport.start()
        try:
            assert transport.is_running
            result = await transport.request(
                "initialize", {"protocolVersion": "2025-03-26", "capabilities": {}}
            )
            assert result["serverInfo"]["name"] == "fake-server"
        finally:
            await transport.close()

        assert not transport.is_running
        assert transport.pid is None

    @pytest.mark.asyncio
    async def test_error_response(self, server_root):
        transport = StdioTransport(sys.executable, [str(SERVER_SCRIPT), str(server_root)])
        await transport.start()
        try:
            with pytest.raises(TransportError) as exc_info:
                await transport.request("resources/list", {})
            assert exc_info.value.code == -32601
        finally:
            await transport.close()

    @pytest.mark.asyncio
    async def test_spawn_failure(self):
        transport = StdioTransport("/nonexistent/kestrel-mcp-server")
        with pytest.raises(ServerConnectError):
            await transport.start()

    @pytest.mark.asyncio
    async def test_request_before_start(self):
        transport = StdioTransport(sys.executable, ["-c", "pass"], name="idle")
        with pytest.raises(TransportError, match="not running"):
            await transport.request("initialize", {}, timeout=5)
        with pytest.raises(TransportError, match="not running"):
            await transport._read_response(1, "initialize")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("shape", ["string-error", "list-result"])
    async def test_malformed_response_is_transport_error(self, server_root, shape):
        transport = StdioTransport(sys.executable, [str(SERVER_SCRIPT), str(server_root)])
        await transport.start()
        try:
            with pytest.raises(TransportError, match="Malformed JSON-RPC response"):
                await transport.request(
                    "tools/call", {"name": "malformed", "arguments": {"shape": shape}}, timeout=5
                )
            # The bad line was consumed; the pipe stays usable
            result = await transport.request(
                "tools/call", {"name": "echo", "arguments": {"text": "next"}}, timeout=5
            )
            assert result["content"][0]["text"] == "next"
        finally:
            await transport.close()

    @pytest.mark.asyncio
    async def test_oversized_line_is_transport_error(self, server_root, monkeypatch):
        monkeypatch.setattr("kestrel.mcp.transport.STREAM_LIMIT", 64 * 1024)
        transport = StdioTransport(sys.executable, [str(SERVER_SCRIPT), str(server_root)])
        await transport.start()
        try:
            with pytest.raises(TransportError, match="sent a line over"):
                await transport.request(
                    "tools/call",
                    {"name": "malformed", "arguments": {"shape": "long-line"}},
                    timeout=5,
                )
        finally:
            await transport.close()

    @pytest.mark.asyncio
    async def test_server_exit_is_transport_error(self):
        transport = StdioTransport(sys.executable, ["-c", "pass"])
        await transport.start()
        try:
            with pytest.raises(TransportError):
                await transport.request("initialize", {}, timeout=5)
        finally:
            await transport.close()


class TestServerConnection:
    """Handshake and tool calls over a real pipe."""

    @pytest.mark.asyncio
    async def test_connect_list_call_close(self, server_root):
        connection = ServerConnection(server_config(server_root))
        await connection.connect()
        try:
            assert connection.server_info.name == "fake-server"
            assert [t.name for t in connection.tools] == [
                "write_file",
                "echo",
                "slow",
                "fail",
                "malformed",
            ]

            result = await connection.call_tool("echo", {"text": "hello over stdio"}, timeout=5)
            assert result.text == "hello over stdio"
        finally:
            await connection.close()

        assert not connection.transport.is_running

    @pytest.mark.asyncio
    async def test_timeout_does_not_poison_connection(self, server_root):
        connection = ServerConnection(server_config(server_root))
        await connection.connect()
        try:
            with pytest.raises(ToolExecutionError) as exc_info:
                await connection.call_tool("slow", {"seconds": 1}, timeout=0.2)
            assert exc_info.value.timed_out

            # The late "finally" response has an older id and is skipped
            result = await connection.call_tool("echo", {"text": "still alive"}, timeout=5)
            assert result.text == "still alive"
        finally:
            await connection.close()

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        config = MCPServerConfig(name="broken", command=sys.executable, args=["-c", "pass"])
        connection = ServerConnection(config)

        with pytest.raises(ServerConnectError, match="broken"):
            await connection.connect(timeout=5)
        assert not connection.transport.is_running


class TestToolOnlyForwarding:
    """File writes forwarded to the server's write_file tool."""

    @pytest.mark.asyncio
    async def test_write_lands_on_server_side_only(self, server_root, tmp_path):
        local = tmp_path / "local"
        local.mkdir()

        async with ToolRouter([server_config(server_root)]) as router:
            connect = await router.connect_all()
            assert connect.servers_connected == 1

            engine = FileOperationEngine(
                policy=SandboxPolicy(tool_only=True), router=router, base_dir=local
            )
            outcome = await engine.apply_write(
                FileWriteAction("docs/out.md", "# Report\n", ActionSyntax.XML_ATTR)
            )

        assert outcome.status == FileOpStatus.FORWARDED
        assert "wrote 9 chars" in outcome.extra["output"]
        assert (server_root / "docs/out.md").read_text(encoding="utf-8") == "# Report\n"
        assert list(local.iterdir()) == []

    @pytest.mark.asyncio
    async def test_error_result_from_server(self, server_root):
        async with ToolRouter([server_config(server_root)]) as router:
            await router.connect_all()
            with pytest.raises(ToolExecutionError, match="something went wrong"):
                await router.call_tool("fail", {})

    @pytest.mark.asyncio
    async def test_malformed_reply_fails_only_that_call(self, server_root):
        async with ToolRouter([server_config(server_root)]) as router:
            await router.connect_all()

            result = await router.execute(ToolCallAction("malformed", {}, ActionSyntax.JSON))
            assert not result.success
            assert "Malformed JSON-RPC response" in result.output

            echoed = await router.execute(
                ToolCallAction("echo", {"text": "after"}, ActionSyntax.JSON)
            )
            assert echoed.success
            assert echoed.output == "after"
