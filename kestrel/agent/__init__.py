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

"""Agent module - action model, stream decoding and detection, and the turn loop."""

from kestrel.agent.actions import (
    Action,
    ActionSyntax,
    FileOpOutcome,
    FileOpStatus,
    FileWriteAction,
    ToolCallAction,
    ToolResult,
)
from kestrel.agent.action_detector import ActionDetector
from kestrel.agent.stream_decoder import StreamDecoder, ThinkingFilter

__all__ = [
    "Action",
    "ActionDetector",
    "ActionSyntax",
    "FileOpOutcome",
    "FileOpStatus",
    "FileWriteAction",
    "StreamDecoder",
    "ThinkingFilter",
    "ToolCallAction",
    "ToolResult",
]
