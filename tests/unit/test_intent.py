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

"""Tests for file-operation intent detection and input/output path split."""

import pytest

from kestrel.agent.intent import has_file_operation_intent, split_io_paths


class TestFileOperationIntent:
    """Tests for has_file_operation_intent."""

    @pytest.mark.parametrize(
        "text",
        [
            "test.txtを作成して",
            "ファイルを書いて",
            "ファイルを作成",
            "コードを生成してください",
            "結果を保存して",
            "create a file",
            "write to example.txt",
            "generate code",
            "save the output",
            "Create File test.txt",
            "put the summary into file out.md",
        ],
    )
    def test_write_requests(self, text):
        assert has_file_operation_intent(text)

    @pytest.mark.parametrize(
        "text",
        [
            "こんにちは",
            "日本の首都は？",
            "これは何ですか？",
            "ファイルを要約して",
            "ファイルを読んで",
            "このファイルは何？",
            "hello",
            "what is this?",
            "summarize the file",
            "read the file",
        ],
    )
    def test_read_or_chat_requests(self, text):
        assert not has_file_operation_intent(text)


class TestSplitIoPaths:
    """Tests for split_io_paths."""

    def test_without_intent_everything_is_input(self):
        inputs, outputs = split_io_paths(["a.txt", "b.txt"], False, lambda p: True)
        assert inputs == ["a.txt", "b.txt"]
        assert outputs == []

    def test_first_path_is_input_rest_are_targets(self):
        inputs, outputs = split_io_paths(["a.txt", "b.txt", "c.txt"], True, lambda p: True)
        assert inputs == ["a.txt"]
        assert outputs == ["b.txt", "c.txt"]

    def test_single_new_path_is_only_a_target(self):
        inputs, outputs = split_io_paths(["new.txt"], True, lambda p: False)
        assert inputs == []
        assert outputs == ["new.txt"]

    def test_single_existing_path_is_read_and_targeted(self):
        inputs, outputs = split_io_paths(["notes.md"], True, lambda p: True)
        assert inputs == ["notes.md"]
        assert outputs == ["notes.md"]

    def test_no_paths(self):
        assert split_io_paths([], True, lambda p: True) == ([], [])
