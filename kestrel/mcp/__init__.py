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

"""Model Context Protocol client: stdio transport, server connections, tool routing."""

from kestrel.mcp.client import ServerConnection
from kestrel.mcp.protocol import MCPConfig, MCPServerConfig, MCPTool, load_mcp_config
from kestrel.mcp.router import ConnectResult, ServerStatus, ToolRouter
from kestrel.mcp.transport import StdioTransport

__all__ = [
    "ConnectResult",
    "MCPConfig",
    "MCPServerConfig",
    "MCPTool",
    "ServerConnection",
    "ServerStatus",
    "StdioTransport",
    "ToolRouter",
    "load_mcp_config",
]
