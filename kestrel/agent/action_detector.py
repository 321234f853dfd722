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

"""Action marker detection in completed model responses.

Supported markers (case-sensitive):

1. JSON tool call:
       [TOOL_CALL]
       {"name": "get_weather", "arguments": {"location": "Tokyo"}}
       [END_TOOL_CALL]

2. XML tool call:
       <tool_call name="list_files">
         <argument name="directory">/home/user</argument>
       </tool_call>

3. XML file write:
       <file path="src/example.rs">...</file>

4. Bracket file write:
       [CREATE_FILE: src/example.rs]
       ```rust
       ...
       ```
       [END_FILE]

Each pass scans the whole text independently. A tool call written in both
syntaxes yields two actions.

Example:
    detector = ActionDetector()
    actions = detector.detect(response_text)
"""

import json
import logging
import re
from typing import Any, Dict, List

from kestrel.agent.actions import (
    Action,
    ActionSyntax,
    FileWriteAction,
    ToolCallAction,
)

logger = logging.getLogger(__name__)


class ActionDetector:
    """Extracts typed actions from model output.

    Stateless; patterns are compiled once at class level so a single instance
    (or many) can be used freely.
    """

    JSON_TOOL_CALL_PATTERN = re.compile(r"\[TOOL_CALL\]\s*(\{.*?\})\s*\[END_TOOL_CALL\]", re.DOTALL)

    XML_TOOL_CALL_PATTERN = re.compile(r'<tool_call\s+name="([^"]+)"\s*>([\s\S]*?)</tool_call>')

    XML_ARGUMENT_PATTERN = re.compile(r'<argument\s+name="([^"]+)"\s*>([^<]*)</argument>')

    XML_FILE_PATTERN = re.compile(r'<file\s+path="([^"]+)"\s*>([\s\S]*?)</file>')

    BRACKET_FILE_PATTERN = re.compile(
        r"\[CREATE_FILE:\s*([^\]]+)\]\s*```[a-z]*\n([\s\S]*?)\n```\s*\[END_FILE\]"
    )

    def detect(self, text: str) -> List[Action]:
        """Run all passes; tool calls first, then file writes."""
        actions: List[Action] = []
        actions.extend(self.detect_tool_calls(text))
        actions.extend(self.detect_file_writes(text))
        if actions:
            logger.debug(f"Detected {len(actions)} action(s): {[a.to_dict() for a in actions]}")
        return actions

    def detect_tool_calls(self, text: str) -> List[ToolCallAction]:
        return self._detect_json_tool_calls(text) + self._detect_xml_tool_calls(text)

    def detect_file_writes(self, text: str) -> List[FileWriteAction]:
        return self._detect_xml_file_writes(text) + self._detect_bracket_file_writes(text)

    def _detect_json_tool_calls(self, text: str) -> List[ToolCallAction]:
        calls: List[ToolCallAction] = []
        for match in self.JSON_TOOL_CALL_PATTERN.finditer(text):
            payload = match.group(1)
            try:
                data = json.loads(payload)
            except json.JSONDecodeError as e:
                logger.debug(f"Skipping malformed [TOOL_CALL] block at {match.start()}: {e}")
                continue

            name = data.get("name") if isinstance(data, dict) else None
            arguments = data.get("arguments") if isinstance(data, dict) else None
            if not isinstance(name, str) or not isinstance(arguments, dict):
                logger.debug(
                    f"Skipping [TOOL_CALL] block at {match.start()}: "
                    "payload needs a string 'name' and an object 'arguments'"
                )
                continue

            calls.append(
                ToolCallAction(
                    name=name,
                    arguments=arguments,
                    syntax=ActionSyntax.JSON,
                    position=match.start(),
                )
            )
        return calls

    def _detect_xml_tool_calls(self, text: str) -> List[ToolCallAction]:
        calls: List[ToolCallAction] = []
        for match in self.XML_TOOL_CALL_PATTERN.finditer(text):
            arguments: Dict[str, Any] = {}
            for arg in self.XML_ARGUMENT_PATTERN.finditer(match.group(2)):
                arguments[arg.group(1)] = arg.group(2)
            calls.append(
                ToolCallAction(
                    name=match.group(1),
                    arguments=arguments,
                    syntax=ActionSyntax.XML,
                    position=match.start(),
                )
            )
        return calls

    def _detect_xml_file_writes(self, text: str) -> List[FileWriteAction]:
        return [
            FileWriteAction(
                path=match.group(1).strip(),
                content=match.group(2),
                syntax=ActionSyntax.XML_ATTR,
                position=match.start(),
            )
            for match in self.XML_FILE_PATTERN.finditer(text)
        ]

    def _detect_bracket_file_writes(self, text: str) -> List[FileWriteAction]:
        return [
            FileWriteAction(
                path=match.group(1).strip(),
                content=match.group(2),
                syntax=ActionSyntax.BRACKET,
                position=match.start(),
            )
            for match in self.BRACKET_FILE_PATTERN.finditer(text)
        ]
