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

"""Shared pytest fixtures for Kestrel tests."""

import logging
import os

import pytest

from kestrel.files.operations import FileOperationEngine, SandboxPolicy


@pytest.fixture(autouse=True)
def isolate_environment_variables(monkeypatch):
    """Keep KESTREL_* variables and a local .env from leaking into tests."""
    for key in list(os.environ):
        if key.startswith("KESTREL_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("KESTREL_SKIP_ENV_FILE", "1")
    yield


@pytest.fixture(autouse=True)
def reset_root_logger():
    """Restore root handlers replaced by the CLI's logging setup."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Empty working directory; relative paths resolve inside it."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def file_engine(workspace):
    """Local-write file engine rooted at the workspace, no confirmation."""
    return FileOperationEngine(
        policy=SandboxPolicy(confirm_writes=False),
        base_dir=workspace,
    )


@pytest.fixture
def stdin_pipe():
    """A pipe standing in for an interactive stdin: (readable stream, write fd)."""
    read_fd, write_fd = os.pipe()
    stream = os.fdopen(read_fd, "rb", buffering=0)
    yield stream, write_fd
    stream.close()
    try:
        os.close(write_fd)
    except OSError:
        pass
