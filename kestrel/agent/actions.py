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

"""Typed actions extracted from model output, and the results of executing them.

Action is a closed union. Adding a new kind of action means adding a variant
here and a branch in ConversationOrchestrator._execute_actions; there is no
open-ended dispatch.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from kestrel.core.errors import KestrelError


class ActionSyntax(Enum):
    """Surface syntax an action was written in."""

    JSON = "json"  # [TOOL_CALL] {...} [END_TOOL_CALL]
    XML = "xml"  # <tool_call name="..."><argument name="...">v</argument></tool_call>
    XML_ATTR = "xml_attr"  # <file path="...">...</file>
    BRACKET = "bracket"  # [CREATE_FILE: path] ```...``` [END_FILE]


@dataclass(frozen=True)
class ToolCallAction:
    """A request to invoke a named tool."""

    name: str
    arguments: Dict[str, Any]
    syntax: ActionSyntax
    position: int = 0  # offset of the marker in the scanned text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "tool_call",
            "name": self.name,
            "arguments": self.arguments,
            "syntax": self.syntax.value,
        }


@dataclass(frozen=True)
class FileWriteAction:
    """A request to create or overwrite a file."""

    path: str
    content: str
    syntax: ActionSyntax
    position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "file_write",
            "path": self.path,
            "bytes": len(self.content.encode("utf-8")),
            "syntax": self.syntax.value,
        }


Action = Union[ToolCallAction, FileWriteAction]


@dataclass
class ToolResult:
    """Outcome of a single tool invocation, serialized into the next prompt."""

    name: str
    success: bool
    output: str
    error: Optional[KestrelError] = None


class FileOpStatus(Enum):
    """What happened to a FileWriteAction."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FORWARDED = "forwarded"
    FAILED = "failed"


@dataclass
class FileOpOutcome:
    """Outcome of a file write (local or forwarded to a tool server)."""

    path: str
    status: FileOpStatus
    detail: str = ""
    error: Optional[KestrelError] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status in (FileOpStatus.CREATED, FileOpStatus.UPDATED, FileOpStatus.FORWARDED)
