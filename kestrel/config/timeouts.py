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

"""Centralized timeout configuration for Kestrel.

Single source of truth for every timeout used by the agent loop and the MCP
layer. Reference these constants instead of hardcoding values.

Usage:
    from kestrel.config.timeouts import Timeouts

    # Inference turn
    await asyncio.wait_for(consume(stream), timeout=Timeouts.TURN_DEFAULT)

    # MCP communication
    await asyncio.wait_for(response, timeout=Timeouts.MCP_RESPONSE)
"""

from dataclasses import dataclass
import os


@dataclass(frozen=True)
class TimeoutConfig:
    """Centralized timeout configuration.

    All values are in seconds. Environment variables can override defaults:
        KESTREL_TIMEOUT_TURN_DEFAULT=180
        KESTREL_TIMEOUT_MCP_RESPONSE=20.0
        etc.
    """

    # =========================================================================
    # Inference Timeouts
    # =========================================================================

    # Maximum wall time for one streamed model turn
    TURN_DEFAULT: float = 120.0

    # Ollama / HTTP engine connect timeout
    HTTP_CONNECT: float = 5.0

    # Wait for a killed model runner to exit and close its pipes
    ENGINE_PROCESS_KILL: float = 5.0

    # =========================================================================
    # Tool Timeouts
    # =========================================================================

    # Default timeout for a single tools/call round trip
    TOOL_CALL: float = 30.0

    # =========================================================================
    # MCP (Model Context Protocol) Timeouts
    # =========================================================================

    # Handshake + tools/list at startup
    MCP_CONNECT: float = 30.0

    # MCP response timeout for control requests
    MCP_RESPONSE: float = 10.0

    # MCP process termination timeout
    MCP_PROCESS_TERMINATE: float = 5.0

    # MCP process force kill timeout
    MCP_PROCESS_KILL: float = 2.0

    @classmethod
    def from_env(cls) -> "TimeoutConfig":
        """Create config with environment variable overrides.

        Environment variables follow the pattern KESTREL_TIMEOUT_{FIELD_NAME}.
        Example: KESTREL_TIMEOUT_TOOL_CALL=60.0
        """

        def get_float(name: str, default: float) -> float:
            env_key = f"KESTREL_TIMEOUT_{name}"
            value = os.environ.get(env_key)
            if value is not None:
                try:
                    return float(value)
                except ValueError:
                    pass
            return default

        return cls(
            TURN_DEFAULT=get_float("TURN_DEFAULT", cls.TURN_DEFAULT),
            HTTP_CONNECT=get_float("HTTP_CONNECT", cls.HTTP_CONNECT),
            ENGINE_PROCESS_KILL=get_float("ENGINE_PROCESS_KILL", cls.ENGINE_PROCESS_KILL),
            TOOL_CALL=get_float("TOOL_CALL", cls.TOOL_CALL),
            MCP_CONNECT=get_float("MCP_CONNECT", cls.MCP_CONNECT),
            MCP_RESPONSE=get_float("MCP_RESPONSE", cls.MCP_RESPONSE),
            MCP_PROCESS_TERMINATE=get_float("MCP_PROCESS_TERMINATE", cls.MCP_PROCESS_TERMINATE),
            MCP_PROCESS_KILL=get_float("MCP_PROCESS_KILL", cls.MCP_PROCESS_KILL),
        )


# Default singleton instance with environment overrides
Timeouts = TimeoutConfig.from_env()


class McpTimeouts:
    """MCP protocol timeout constants."""

    CONNECT = Timeouts.MCP_CONNECT
    RESPONSE = Timeouts.MCP_RESPONSE
    TERMINATE = Timeouts.MCP_PROCESS_TERMINATE
    KILL = Timeouts.MCP_PROCESS_KILL
