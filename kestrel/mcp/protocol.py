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

"""Model Context Protocol message and configuration models.

Only the subset a stdio tool client needs: the initialize handshake,
tools/list and tools/call. Messages are line-delimited JSON-RPC 2.0.
"""

import logging
import tomllib
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kestrel.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-03-26"
JSONRPC_VERSION = "2.0"

RequestId = Union[int, str]


class MCPMessageType(str, Enum):
    """JSON-RPC methods used by the client."""

    INITIALIZE = "initialize"
    INITIALIZED = "notifications/initialized"
    LIST_TOOLS = "tools/list"
    CALL_TOOL = "tools/call"


class MCPMessage(BaseModel):
    """Outgoing JSON-RPC request (with id) or notification (without)."""

    jsonrpc: str = JSONRPC_VERSION
    method: str
    params: Optional[Dict[str, Any]] = None
    id: Optional[RequestId] = None

    def to_line(self) -> str:
        """Serialize as a single newline-terminated JSON line."""
        return self.model_dump_json(exclude_none=True) + "\n"


class MCPError(BaseModel):
    """JSON-RPC error object."""

    code: int
    message: str
    data: Optional[Any] = None


class MCPResponse(BaseModel):
    """Incoming JSON-RPC response."""

    model_config = ConfigDict(extra="ignore")

    jsonrpc: str = JSONRPC_VERSION
    id: Optional[RequestId] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[MCPError] = None


class MCPClientInfo(BaseModel):
    """Client identity sent during initialize."""

    name: str
    version: str


class MCPServerInfo(BaseModel):
    """Server identity returned by initialize."""

    model_config = ConfigDict(extra="ignore")

    name: str = "unknown"
    version: Optional[str] = None


class MCPInitializeResult(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    protocol_version: Optional[str] = Field(default=None, alias="protocolVersion")
    capabilities: Dict[str, Any] = Field(default_factory=dict)
    server_info: MCPServerInfo = Field(default_factory=MCPServerInfo, alias="serverInfo")
    instructions: Optional[str] = None


class MCPTool(BaseModel):
    """A tool advertised by a server. The input schema is passed through untouched."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    @property
    def properties(self) -> Dict[str, Any]:
        props = self.input_schema.get("properties")
        return props if isinstance(props, dict) else {}

    @property
    def required(self) -> List[str]:
        req = self.input_schema.get("required")
        return [r for r in req if isinstance(r, str)] if isinstance(req, list) else []


class MCPListToolsResult(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    tools: List[MCPTool] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")


class MCPContent(BaseModel):
    """One item of a tools/call result."""

    model_config = ConfigDict(extra="allow")

    type: str
    text: Optional[str] = None

    def render(self) -> str:
        if self.type == "text":
            return self.text or ""
        if self.type == "image":
            return "[Image content]"
        if self.type == "resource":
            return "[Resource content]"
        return f"[{self.type} content]"


class MCPToolCallResult(BaseModel):
    """Result of tools/call."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    content: List[MCPContent] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @property
    def text(self) -> str:
        return "\n".join(item.render() for item in self.content)


# =============================================================================
# Server configuration
# =============================================================================


class MCPTransportKind(str, Enum):
    STDIO = "stdio"
    SSE = "sse"
    WEBSOCKET = "websocket"


class MCPServerConfig(BaseModel):
    """One entry of the servers list in mcp.yaml / mcp.toml."""

    model_config = ConfigDict(extra="ignore")

    name: str
    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    transport: MCPTransportKind = MCPTransportKind.STDIO
    enabled: bool = True


class MCPConfig(BaseModel):
    servers: List[MCPServerConfig] = Field(default_factory=list)

    @property
    def enabled_servers(self) -> List[MCPServerConfig]:
        return [s for s in self.servers if s.enabled]


def load_mcp_config(path: Path) -> MCPConfig:
    """Load the tool-server list from a YAML or TOML file.

    The format is chosen by suffix (.toml is TOML, anything else YAML).

    Raises:
        ConfigurationError: If the file is unreadable or malformed
    """
    try:
        if path.suffix.lower() == ".toml":
            with open(path, "rb") as f:
                data = tomllib.load(f)
        else:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(
            f"Failed to read MCP config '{path}': {e}", config_key="mcp_config", cause=e
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"MCP config '{path}' must be a mapping with a 'servers' list",
            config_key="mcp_config",
        )

    try:
        config = MCPConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid MCP config '{path}': {e}", config_key="mcp_config", cause=e
        ) from e

    logger.debug(f"Loaded {len(config.servers)} MCP server(s) from {path}")
    return config
