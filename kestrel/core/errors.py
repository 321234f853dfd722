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

"""Centralized error types for Kestrel.

This module provides:
- Custom exception types for each failure category of the action pipeline
- User-friendly messages with recovery hints
- Correlation IDs so a failure fed back to the model can be matched to logs

Most of these errors are recovered locally: the orchestrator records them as a
failed ToolResult or FileOpOutcome and lets the model decide what to do next.
Only InferenceError and ConfigurationError are fatal.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Error Categories
# =============================================================================


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""

    # Stream / detection anomalies (logged, never raised)
    DECODE_ANOMALY = "decode_anomaly"
    MALFORMED_ACTION = "malformed_action"

    # Tool errors
    TOOL_NOT_FOUND = "tool_not_found"
    TOOL_EXECUTION = "tool_execution"
    TOOL_TIMEOUT = "tool_timeout"

    # MCP server errors
    SERVER_CONNECT = "server_connect"
    TRANSPORT = "transport"

    # File errors
    FILE_NOT_FOUND = "file_not_found"
    FILE_FORBIDDEN = "file_forbidden"
    FILE_TOO_LARGE = "file_too_large"
    FILE_NOT_TEXT = "file_not_text"
    FILE_WRITE = "file_write"

    # Conversation loop
    TURN_TIMEOUT = "turn_timeout"
    ITERATION_LIMIT = "iteration_limit"

    # Fatal
    INFERENCE = "inference"
    CONFIG_INVALID = "config_invalid"

    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# =============================================================================
# Custom Exception Types
# =============================================================================


class KestrelError(Exception):
    """Base exception for all Kestrel errors.

    Provides structured error information including:
    - Error category and severity
    - Correlation ID for tracking
    - User-friendly message
    - Recovery suggestions
    - Original exception chain
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        recovery_hint: Optional[str] = None,
        correlation_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.recovery_hint = recovery_hint
        self.correlation_id = correlation_id or str(uuid.uuid4())[:8]
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "recovery_hint": self.recovery_hint,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        result = f"[{self.correlation_id}] {self.message}"
        if self.recovery_hint:
            result += f"\nRecovery hint: {self.recovery_hint}"
        return result


class InferenceError(KestrelError):
    """Inference engine failures (initialization or a broken stream)."""

    def __init__(self, message: str, engine: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        super().__init__(
            message,
            category=ErrorCategory.INFERENCE,
            recovery_hint="Check the model path and that the local model runner is installed.",
            **kwargs,
        )
        self.engine = engine
        self.details["engine"] = engine


class ConfigurationError(KestrelError):
    """Configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            category=ErrorCategory.CONFIG_INVALID,
            **kwargs,
        )
        self.config_key = config_key
        self.details["config_key"] = config_key


class ToolError(KestrelError):
    """Errors related to tool execution."""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.tool_name = tool_name
        self.details["tool_name"] = tool_name


class ToolNotFoundError(ToolError):
    """No connected server advertises the requested tool."""

    def __init__(self, tool_name: str, **kwargs: Any):
        super().__init__(
            f"Tool '{tool_name}' not found on any connected server",
            tool_name=tool_name,
            category=ErrorCategory.TOOL_NOT_FOUND,
            recovery_hint="Check the tool name against the <tools> list.",
            **kwargs,
        )


class ToolExecutionError(ToolError):
    """The owning server returned an error, the transport broke, or the call timed out."""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        server_name: Optional[str] = None,
        timed_out: bool = False,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            tool_name=tool_name,
            category=ErrorCategory.TOOL_TIMEOUT if timed_out else ErrorCategory.TOOL_EXECUTION,
            **kwargs,
        )
        self.server_name = server_name
        self.timed_out = timed_out
        self.details["server_name"] = server_name
        self.details["timed_out"] = timed_out


class ServerConnectError(KestrelError):
    """A configured MCP server could not be started or initialized."""

    def __init__(self, message: str, server_name: Optional[str] = None, **kwargs: Any):
        super().__init__(
            message,
            category=ErrorCategory.SERVER_CONNECT,
            recovery_hint="Check the server command in the MCP configuration file.",
            **kwargs,
        )
        self.server_name = server_name
        self.details["server_name"] = server_name


class TransportError(KestrelError):
    """JSON-RPC exchange with a server failed (EOF, bad frame, or an error response)."""

    def __init__(
        self,
        message: str,
        server_name: Optional[str] = None,
        method: Optional[str] = None,
        code: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, category=ErrorCategory.TRANSPORT, **kwargs)
        self.server_name = server_name
        self.method = method
        self.code = code
        self.details.update({"server_name": server_name, "method": method, "code": code})


class FileError(KestrelError):
    """File operation errors."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.path = path
        self.details["path"] = path


class FileMissingError(FileError):
    """File does not exist (or is not a regular file)."""

    def __init__(self, path: str, reason: str = "File not found", **kwargs: Any):
        super().__init__(
            f"{reason}: {path}",
            path=path,
            category=ErrorCategory.FILE_NOT_FOUND,
            recovery_hint="Check the file path. The file may have been moved or deleted.",
            **kwargs,
        )


class FileForbiddenError(FileError):
    """Target resolves under a protected system directory."""

    def __init__(self, path: str, protected_root: Optional[str] = None, **kwargs: Any):
        super().__init__(
            f"Writing to system directory is not allowed: {path}",
            path=path,
            category=ErrorCategory.FILE_FORBIDDEN,
            recovery_hint="Write inside the working directory instead.",
            **kwargs,
        )
        self.protected_root = protected_root
        self.details["protected_root"] = protected_root


class FileTooLargeError(FileError):
    """File exceeds the configured size ceiling."""

    def __init__(self, path: str, size: int, limit: int, **kwargs: Any):
        super().__init__(
            f"File is too large (max {limit} bytes): {size} bytes",
            path=path,
            category=ErrorCategory.FILE_TOO_LARGE,
            **kwargs,
        )
        self.size = size
        self.limit = limit
        self.details["size"] = size
        self.details["limit"] = limit


class FileNotTextError(FileError):
    """File content is not valid UTF-8 text."""

    def __init__(self, path: str, **kwargs: Any):
        super().__init__(
            f"File is not a text file (binary files are not supported): {path}",
            path=path,
            category=ErrorCategory.FILE_NOT_TEXT,
            **kwargs,
        )


class FileWriteError(FileError):
    """Local write failed (permissions, disk, etc.)."""

    def __init__(self, path: str, reason: str, **kwargs: Any):
        super().__init__(
            f"Failed to write file {path}: {reason}",
            path=path,
            category=ErrorCategory.FILE_WRITE,
            **kwargs,
        )
