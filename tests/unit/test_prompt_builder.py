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

"""Tests for prompt composition."""

import json
from pathlib import Path

from kestrel.agent.actions import FileOpOutcome, FileOpStatus, ToolResult
from kestrel.agent.prompt_builder import (
    FOLLOWUP_INSTRUCTION,
    build_chat_prompt,
    build_followup_prompt,
    build_sample_arguments,
    build_tool_info,
    format_file_outcome,
    format_previous_response,
    format_tool_result,
    sample_value_for_schema,
)
from kestrel.core.errors import FileMissingError
from kestrel.files.operations import FileContent
from kestrel.mcp.protocol import MCPTool


def make_tool(name, properties=None, required=None, description=None):
    schema = {"type": "object", "properties": properties or {}}
    if required is not None:
        schema["required"] = required
    return MCPTool(name=name, description=description, input_schema=schema)


class TestChatPrompt:
    """Tests for build_chat_prompt."""

    def test_with_files(self):
        files = [FileContent(path="test.txt", resolved=Path("/w/test.txt"), content="Hello, World!")]

        prompt = build_chat_prompt("ファイルを要約して", files=files)

        assert "<system>" in prompt
        assert '<file path="test.txt">\nHello, World!\n</file>' in prompt
        assert "<files>" in prompt and "</files>" in prompt
        assert prompt.endswith("<user_input>\nファイルを要約して\n</user_input>")
        assert "File Operation Instructions" not in prompt

    def test_with_read_errors(self):
        errors = [FileMissingError("test.txt")]

        prompt = build_chat_prompt("ファイルを読んで", file_errors=errors)

        assert '<file_error path="test.txt">\nFile not found: test.txt\n</file_error>' in prompt

    def test_no_files_no_tools(self):
        prompt = build_chat_prompt("日本の首都は？")

        assert "<files>\n" not in prompt
        assert "<tools>" not in prompt
        assert "<output_targets>" not in prompt

    def test_file_intent_adds_write_format(self):
        prompt = build_chat_prompt("test.txtを作成して", file_intent=True)

        assert "File Operation Instructions" in prompt
        assert '<file path="path/to/file.ext">' in prompt

    def test_tool_only_write_instructions(self):
        prompt = build_chat_prompt("save it", file_intent=True, allow_local_writes=False)

        assert "Local file writes are disabled" in prompt
        assert "[CREATE_FILE:" not in prompt

    def test_output_targets(self):
        files = [FileContent(path="a.txt", resolved=Path("/w/a.txt"), content="Hello")]

        prompt = build_chat_prompt(
            "翻訳して b.txt に保存", files=files, output_targets=["b.txt"], file_intent=True
        )

        assert "<output_targets>\n<target>b.txt</target>\n</output_targets>" in prompt

    def test_sections_in_order(self):
        files = [FileContent(path="a.txt", resolved=Path("/w/a.txt"), content="A")]
        prompt = build_chat_prompt(
            "go", files=files, tool_info="## Available Tools", output_targets=["b.txt"]
        )

        tags = ("<system>\n", "<tools>\n", "<files>\n", "<output_targets>\n", "<user_input>\n")
        order = [prompt.index(tag) for tag in tags]
        assert order == sorted(order)


class TestToolInfo:
    """Tests for the tool catalog section."""

    def test_no_tools(self):
        assert build_tool_info([]) is None

    def test_sample_block_is_valid_json(self):
        tool = make_tool(
            "get_weather",
            {"location": {"type": "string"}, "units": {"enum": ["metric", "imperial"]}},
            required=["location"],
            description="Current weather",
        )

        info = build_tool_info([tool])

        assert info.startswith("## Available Tools")
        assert "### get_weather\nCurrent weather" in info
        sample = info.split("[TOOL_CALL]\n", 1)[1].split("\n[END_TOOL_CALL]", 1)[0]
        assert json.loads(sample) == {"name": "get_weather", "arguments": {"location": "example"}}

    def test_sample_arguments_without_required_use_all_properties(self):
        tool = make_tool("t", {"b": {"type": "integer"}, "a": {"type": "boolean"}})
        assert build_sample_arguments(tool) == {"a": True, "b": 0}

    def test_sample_arguments_fallback(self):
        assert build_sample_arguments(make_tool("t")) == {"example": "value"}

    def test_sample_values(self):
        assert sample_value_for_schema({"type": "string", "default": "x"}) == "x"
        assert sample_value_for_schema({"type": "array", "items": {"type": "number"}}) == [0]
        assert sample_value_for_schema({"type": "object"}) == {}
        assert sample_value_for_schema(None) == "value"


class TestResultBlocks:
    """Tests for follow-up context formatting."""

    def test_tool_result(self):
        assert format_tool_result(ToolResult("echo", True, "hi\n")) == "[Tool Result: echo] (success)\nhi\n"
        assert format_tool_result(ToolResult("echo", False, "Error: x")).startswith(
            "[Tool Result: echo] (error)"
        )

    def test_file_outcome(self):
        outcome = FileOpOutcome(path="a.txt", status=FileOpStatus.CREATED, detail="3 bytes written")
        assert format_file_outcome(outcome) == "[File Operation: a.txt] created: 3 bytes written\n"

    def test_previous_response_and_followup(self):
        context = "<system>...</system>\n\n" + format_previous_response("  answer  ")
        prompt = build_followup_prompt(context)

        assert "[Previous Response]\nanswer" in prompt
        assert prompt.endswith(FOLLOWUP_INSTRUCTION)
