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

"""Tests for the error hierarchy."""

from kestrel.core.errors import (
    ErrorCategory,
    FileError,
    FileForbiddenError,
    FileTooLargeError,
    KestrelError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    TransportError,
)


class TestKestrelError:
    """Tests for the base error."""

    def test_str_includes_correlation_id_and_hint(self):
        error = KestrelError("broken", recovery_hint="fix it", correlation_id="abc12345")
        assert str(error) == "[abc12345] broken\nRecovery hint: fix it"

    def test_to_dict(self):
        error = KestrelError("broken", details={"k": 1})
        data = error.to_dict()

        assert data["error"] == "broken"
        assert data["category"] == "unknown"
        assert data["details"] == {"k": 1}
        assert len(data["correlation_id"]) == 8


class TestSubclasses:
    """Tests for typed errors."""

    def test_tool_errors(self):
        not_found = ToolNotFoundError("nope")
        assert isinstance(not_found, ToolError)
        assert not_found.message == "Tool 'nope' not found on any connected server"

        timed_out = ToolExecutionError("slow", tool_name="t", timed_out=True)
        assert timed_out.category == ErrorCategory.TOOL_TIMEOUT
        failed = ToolExecutionError("bad", tool_name="t")
        assert failed.category == ErrorCategory.TOOL_EXECUTION

    def test_file_errors_carry_path(self):
        forbidden = FileForbiddenError("/etc/passwd", protected_root="/etc")
        assert isinstance(forbidden, FileError)
        assert forbidden.path == "/etc/passwd"
        assert forbidden.details["protected_root"] == "/etc"

        too_large = FileTooLargeError("big.log", size=2000, limit=1000)
        assert too_large.message == "File is too large (max 1000 bytes): 2000 bytes"
        assert too_large.category == ErrorCategory.FILE_TOO_LARGE

    def test_transport_error_details(self):
        error = TransportError("eof", server_name="s", method="tools/call", code=-32000)
        assert error.details == {"server_name": "s", "method": "tools/call", "code": -32000}
