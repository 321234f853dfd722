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

"""Prompt composition for the conversation loop.

The first prompt of an exchange is built from tagged sections:

    <system>          instructions (+ file-write format when requested)
    <tools>           tool catalog with a sample [TOOL_CALL] per tool
    <files>           read-only input files and read errors
    <output_targets>  paths the user wants written
    <user_input>      the request

Later turns append labelled result blocks ([Previous Response],
[Tool Result: name], [File Operation: path]) and a follow-up instruction.
"""

import json
from typing import Any, Dict, List, Optional, Sequence

from kestrel.agent.actions import FileOpOutcome, ToolResult
from kestrel.core.errors import FileError
from kestrel.files.operations import FileContent
from kestrel.mcp.protocol import MCPTool

SYSTEM_INSTRUCTIONS = """
You are a helpful coding assistant running on a local CLI.
The <files> section is read-only context. Do NOT echo it back. Only create or modify files the user explicitly asked for.
When the user asks for translation/summarization/rewriting, transform the content accordingly. Do NOT copy the input verbatim unless explicitly instructed.
If output targets are provided, write results to those paths and do not overwrite the source file unless the user says so.
Use available MCP tools for environment actions (e.g., listing files) instead of fabricating content when tools are provided.
"""

LOCAL_WRITE_INSTRUCTIONS = """
## File Operation Instructions

IMPORTANT: Only use this file creation feature when the user EXPLICITLY requests to create, write, or save files.
Do NOT create example files unless specifically asked.

When the user explicitly asks you to create or modify files, use the following format:

<file path="path/to/file.ext">
file content here
</file>

You can create multiple files in a single response.
Preferred format is <file path="..."> ... </file>. Bracket format [CREATE_FILE: ...] ... [END_FILE] is allowed for compatibility only.
"""

TOOL_ONLY_WRITE_INSTRUCTIONS = """
## File Operation Instructions

Local file writes are disabled. Write files with the <file path="..."> ... </file> format;
they will be saved through an MCP tool on your behalf.
"""

FOLLOWUP_INSTRUCTION = (
    "Use the results above to continue. If the task is complete, give the final "
    "answer without emitting further [TOOL_CALL] blocks."
)


def sample_value_for_schema(schema: Any) -> Any:
    """Placeholder value for a JSON-schema property."""
    if not isinstance(schema, dict):
        return "value"
    if "default" in schema:
        return schema["default"]
    enum_values = schema.get("enum")
    if isinstance(enum_values, list) and enum_values:
        return enum_values[0]

    schema_type = schema.get("type")
    if schema_type == "string":
        return "example"
    if schema_type in ("integer", "number"):
        return 0
    if schema_type == "boolean":
        return True
    if schema_type == "array":
        return [sample_value_for_schema(schema["items"])] if "items" in schema else []
    if schema_type == "object":
        return {}
    return "value"


def build_sample_arguments(tool: MCPTool) -> Dict[str, Any]:
    """Sample arguments: required properties only when the schema lists any."""
    properties = tool.properties
    required = set(tool.required)
    keys = sorted(k for k in properties if not required or k in required)
    args = {key: sample_value_for_schema(properties[key]) for key in keys}
    return args or {"example": "value"}


def build_tool_sample_block(tool: MCPTool) -> str:
    call = {"name": tool.name, "arguments": build_sample_arguments(tool)}
    return f"[TOOL_CALL]\n{json.dumps(call, indent=2, ensure_ascii=False)}\n[END_TOOL_CALL]\n"


def build_tool_info(tools: Sequence[MCPTool]) -> Optional[str]:
    """Render the tool catalog, or None when there are no tools."""
    if not tools:
        return None

    lines = ["## Available Tools", "", "Available tools (short list):", ""]
    for tool in tools:
        lines.append(f"### {tool.name}")
        if tool.description:
            lines.append(tool.description)
        lines.append("")
        lines.append("Sample:")
        lines.append(build_tool_sample_block(tool))

    lines.append("To use a tool, output (see per-tool samples above):")
    lines.append("")
    lines.append(
        "[TOOL_CALL]\n"
        '{\n  "name": "tool_name",\n  "arguments": {\n    "argument_name": "value"\n  }\n}\n'
        "[END_TOOL_CALL]"
    )
    return "\n".join(lines) + "\n"


def build_chat_prompt(
    user_input: str,
    files: Sequence[FileContent] = (),
    file_errors: Sequence[FileError] = (),
    tool_info: Optional[str] = None,
    output_targets: Sequence[str] = (),
    file_intent: bool = False,
    allow_local_writes: bool = True,
) -> str:
    parts: List[str] = ["<system>\n", SYSTEM_INSTRUCTIONS, "\n"]
    if file_intent:
        parts.append(LOCAL_WRITE_INSTRUCTIONS if allow_local_writes else TOOL_ONLY_WRITE_INSTRUCTIONS)
        parts.append("\n")
    parts.append("</system>\n\n")

    if tool_info and tool_info.strip():
        parts.append(f"<tools>\n{tool_info.strip()}\n</tools>\n\n")

    if files or file_errors:
        parts.append("<files>\n")
        for f in files:
            parts.append(f'<file path="{f.path}">\n{f.content}\n</file>\n\n')
        for error in file_errors:
            parts.append(f'<file_error path="{error.path}">\n{error.message}\n</file_error>\n\n')
        parts.append("</files>\n\n")

    if output_targets:
        parts.append("<output_targets>\n")
        for target in output_targets:
            parts.append(f"<target>{target}</target>\n")
        parts.append("</output_targets>\n\n")

    parts.append(f"<user_input>\n{user_input}\n</user_input>")
    return "".join(parts)


def format_previous_response(text: str) -> str:
    return f"[Previous Response]\n{text.strip()}\n"


def format_tool_result(result: ToolResult) -> str:
    status = "success" if result.success else "error"
    return f"[Tool Result: {result.name}] ({status})\n{result.output.rstrip()}\n"


def format_file_outcome(outcome: FileOpOutcome) -> str:
    line = f"[File Operation: {outcome.path}] {outcome.status.value}"
    if outcome.detail:
        line += f": {outcome.detail}"
    return line + "\n"


def build_followup_prompt(accumulated_context: str) -> str:
    return f"{accumulated_context.rstrip()}\n\n{FOLLOWUP_INSTRUCTION}"
