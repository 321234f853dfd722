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

"""Line-delimited JSON-RPC over a child process's stdin/stdout.

One transport owns one server subprocess. Requests are serialized with an
asyncio.Lock so a response is always paired with the request that is waiting
for it; lines with a different id (late responses from a timed-out request,
server notifications) are skipped.
"""

import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from kestrel.config.timeouts import McpTimeouts
from kestrel.core.errors import ServerConnectError, TransportError
from kestrel.mcp.protocol import MCPMessage, MCPResponse

logger = logging.getLogger(__name__)

# Tool results can be large; asyncio's default line limit is 64 KiB
STREAM_LIMIT = 16 * 1024 * 1024


class StdioTransport:
    """Owns an MCP server subprocess and its JSON-RPC pipe."""

    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        name: Optional[str] = None,
        response_timeout: float = McpTimeouts.RESPONSE,
    ):
        self.command = command
        self.args = list(args or [])
        self.env = dict(env or {})
        self.name = name or command
        self.response_timeout = response_timeout

        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._next_id = 1

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    async def start(self) -> None:
        """Spawn the server process.

        Raises:
            ServerConnectError: If the command cannot be executed
        """
        if self.is_running:
            return

        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env},
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ServerConnectError(
                f"Failed to spawn MCP server '{self.name}': {self.command}: {e}",
                server_name=self.name,
                cause=e,
            ) from e

        logger.debug(f"Started MCP server '{self.name}' (pid {self._process.pid})")
        self._stderr_task = asyncio.create_task(self._relay_stderr())

    async def request(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send a request and wait for the response with the same id.

        Returns:
            The response's result object

        Raises:
            TransportError: On EOF, a broken pipe, an unparsable frame, or a
                JSON-RPC error response
            asyncio.TimeoutError: If no matching response arrives in time
        """
        async with self._lock:
            request_id = self._next_id
            self._next_id += 1

            await self._send(MCPMessage(method=method, params=params, id=request_id), method)
            response = await asyncio.wait_for(
                self._read_response(request_id, method),
                timeout=timeout if timeout is not None else self.response_timeout,
            )

        if response.error is not None:
            raise TransportError(
                f"MCP server returned error: {response.error.message}",
                server_name=self.name,
                method=method,
                code=response.error.code,
            )
        return response.result or {}

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a notification (no response expected)."""
        async with self._lock:
            await self._send(MCPMessage(method=method, params=params), method)

    async def close(self) -> None:
        """Stop the server: close stdin, then terminate, then kill."""
        process = self._process
        if process is None:
            return

        if process.returncode is None:
            if process.stdin and not process.stdin.is_closing():
                process.stdin.close()
            try:
                await asyncio.wait_for(process.wait(), timeout=McpTimeouts.TERMINATE)
            except asyncio.TimeoutError:
                logger.debug(f"MCP server '{self.name}' did not exit, terminating")
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=McpTimeouts.KILL)
                except asyncio.TimeoutError:
                    logger.warning(f"MCP server '{self.name}' ignored SIGTERM, killing")
                    process.kill()
                    await process.wait()

        if self._stderr_task is not None:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
            self._stderr_task = None

        logger.debug(f"MCP server '{self.name}' exited with code {process.returncode}")
        self._process = None

    async def _send(self, message: MCPMessage, method: str) -> None:
        if not self.is_running or self._process.stdin is None:
            raise TransportError(
                f"MCP server '{self.name}' is not running", server_name=self.name, method=method
            )
        try:
            self._process.stdin.write(message.to_line().encode("utf-8"))
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportError(
                f"Failed to write to MCP server '{self.name}': {e}",
                server_name=self.name,
                method=method,
                cause=e,
            ) from e

    def _pipes(self, method: str) -> asyncio.subprocess.Process:
        process = self._process
        if process is None or process.stdout is None:
            raise TransportError(
                f"MCP server '{self.name}' is not running", server_name=self.name, method=method
            )
        return process

    async def _read_response(self, request_id: int, method: str) -> MCPResponse:
        stdout = self._pipes(method).stdout
        while True:
            try:
                line = await stdout.readline()
            except ValueError as e:
                # StreamReader drops the oversized line before raising
                raise TransportError(
                    f"MCP server '{self.name}' sent a line over {STREAM_LIMIT} bytes",
                    server_name=self.name,
                    method=method,
                    cause=e,
                ) from e
            if not line:
                raise TransportError(
                    f"MCP server '{self.name}' closed stdout before sending a response",
                    server_name=self.name,
                    method=method,
                )

            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError as e:
                raise TransportError(
                    f"Failed to parse JSON-RPC message from '{self.name}': {text[:200]}",
                    server_name=self.name,
                    method=method,
                    cause=e,
                ) from e

            if not isinstance(data, dict) or data.get("id") != request_id:
                logger.debug(f"[{self.name}] skipping message: {text[:200]}")
                continue
            try:
                return MCPResponse.model_validate(data)
            except ValidationError as e:
                raise TransportError(
                    f"Malformed JSON-RPC response from '{self.name}': {text[:200]}",
                    server_name=self.name,
                    method=method,
                    cause=e,
                ) from e

    async def _relay_stderr(self) -> None:
        process = self._process
        if process is None or process.stderr is None:
            return
        while True:
            try:
                line = await process.stderr.readline()
            except ValueError:
                logger.debug(f"[{self.name} stderr] dropped a line over {STREAM_LIMIT} bytes")
                continue
            if not line:
                return
            logger.debug(f"[{self.name} stderr] {line.decode('utf-8', errors='replace').rstrip()}")
