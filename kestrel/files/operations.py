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

"""Sandboxed file reads and writes.

Read path: user-mentioned files are loaded for prompt injection, subject to
existence, size and UTF-8 checks.

Write path: model-requested writes are checked against a system-directory
denylist, then either forwarded to an MCP write tool (tool-only mode) or
written locally after optional overwrite confirmation.

Every write request produces exactly one FileOpOutcome.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from kestrel.agent.actions import FileOpOutcome, FileOpStatus, FileWriteAction
from kestrel.config.settings import DEFAULT_MAX_FILE_SIZE
from kestrel.core.errors import (
    FileError,
    FileForbiddenError,
    FileMissingError,
    FileNotTextError,
    FileTooLargeError,
    FileWriteError,
    ToolError,
)
from kestrel.files.path_detector import detect_file_paths
from kestrel.mcp.router import ToolRouter

logger = logging.getLogger(__name__)

SYSTEM_DIRECTORIES: Tuple[str, ...] = (
    "/etc",
    "/usr",
    "/bin",
    "/sbin",
    "/sys",
    "/proc",
    "/boot",
    "/dev",
    "/lib",
    "/lib64",
    "/opt",
    "/var",
)

# (path, exists) -> approve?
ConfirmCallback = Callable[[str, bool], Awaitable[bool]]


@dataclass(frozen=True)
class SandboxPolicy:
    """Process-wide file policy, fixed at startup."""

    denylist: Tuple[str, ...] = SYSTEM_DIRECTORIES
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    tool_only: bool = False
    confirm_writes: bool = True

    @classmethod
    def from_settings(cls, settings) -> "SandboxPolicy":
        return cls(
            max_file_size=settings.max_file_size,
            tool_only=settings.tool_only,
            confirm_writes=settings.confirm_writes,
        )

    def protected_root(self, path: Path) -> Optional[str]:
        """Denylisted directory containing path, if any."""
        for root in self.denylist:
            if path.is_relative_to(root):
                return root
        return None


@dataclass
class FileContent:
    """A successfully read input file."""

    path: str  # as the user wrote it
    resolved: Path
    content: str


@dataclass
class FileReadReport:
    files: List[FileContent] = field(default_factory=list)
    errors: List[FileError] = field(default_factory=list)

    @property
    def contents_by_path(self) -> Dict[str, str]:
        return {f.path: f.content for f in self.files}


def contents_equal(a: str, b: str) -> bool:
    """Compare ignoring CRLF/LF differences and trailing whitespace."""
    return a.replace("\r\n", "\n").rstrip() == b.replace("\r\n", "\n").rstrip()


class FileOperationEngine:
    """Applies the sandbox policy to file reads and writes."""

    def __init__(
        self,
        policy: Optional[SandboxPolicy] = None,
        router: Optional[ToolRouter] = None,
        confirm: Optional[ConfirmCallback] = None,
        extensions: Optional[Sequence[str]] = None,
        base_dir: Optional[Path] = None,
    ):
        self.policy = policy or SandboxPolicy()
        self.router = router
        self.confirm = confirm
        self.extensions = extensions
        self.base_dir = base_dir

    def resolve(self, path: str) -> Path:
        """Expand ~ and make absolute, normalizing .. without touching the filesystem."""
        expanded = Path(os.path.expanduser(path))
        if not expanded.is_absolute():
            expanded = (self.base_dir or Path.cwd()) / expanded
        return Path(os.path.abspath(expanded))

    # -------------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------------

    def detect_paths(self, text: str) -> List[str]:
        return detect_file_paths(text, self.extensions)

    def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def read_file(self, path: str) -> FileContent:
        """Read one text file.

        Raises:
            FileMissingError: Missing, or not a regular file
            FileTooLargeError: Larger than the policy ceiling
            FileNotTextError: Not valid UTF-8
        """
        resolved = self.resolve(path)
        if not resolved.exists():
            raise FileMissingError(path)
        if not resolved.is_file():
            raise FileMissingError(path, reason="Path is a directory, not a file")

        size = resolved.stat().st_size
        if size > self.policy.max_file_size:
            raise FileTooLargeError(path, size=size, limit=self.policy.max_file_size)

        try:
            data = resolved.read_bytes()
        except OSError as e:
            raise FileMissingError(path, reason=f"Failed to read file ({e.strerror})", cause=e) from e
        try:
            content = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FileNotTextError(path, cause=e) from e

        return FileContent(path=path, resolved=resolved, content=content)

    def read_files(self, paths: Sequence[str]) -> FileReadReport:
        report = FileReadReport()
        for path in paths:
            try:
                report.files.append(self.read_file(path))
            except FileError as e:
                logger.warning(f"Error loading '{path}': {e.message}")
                report.errors.append(e)
        if report.files:
            logger.info(f"Loaded {len(report.files)} file(s)")
        return report

    # -------------------------------------------------------------------------
    # Write path
    # -------------------------------------------------------------------------

    def reconcile_writes(
        self,
        actions: Sequence[FileWriteAction],
        provided: Optional[Dict[str, str]] = None,
        output_targets: Optional[Sequence[str]] = None,
    ) -> List[Union[FileWriteAction, FileOpOutcome]]:
        """Drop writes that reproduce an input file; redirect edits to the output target.

        When exactly one output target exists and every remaining write names
        one of the input files, those writes are remapped to the target.

        Returns:
            One entry per action, in order: the write to perform, or a SKIPPED
            outcome for a dropped write
        """
        provided = provided or {}
        output_targets = list(output_targets or [])
        plan: List[Union[FileWriteAction, FileOpOutcome]] = []

        for action in actions:
            match = next(
                (src for src, content in provided.items() if contents_equal(content, action.content)),
                None,
            )
            if match is not None:
                logger.info(f"Skipped unchanged (matches input {match}): {action.path}")
                plan.append(
                    FileOpOutcome(
                        path=action.path,
                        status=FileOpStatus.SKIPPED,
                        detail=f"unchanged (matches input {match})",
                    )
                )
            else:
                plan.append(action)

        kept = [entry for entry in plan if isinstance(entry, FileWriteAction)]
        if kept and len(output_targets) == 1 and all(a.path in provided for a in kept):
            target = output_targets[0]
            for i, entry in enumerate(plan):
                if isinstance(entry, FileWriteAction):
                    logger.info(f"Remap {entry.path} -> {target}")
                    plan[i] = replace(entry, path=target)

        return plan

    async def apply_write(self, action: FileWriteAction) -> FileOpOutcome:
        resolved = self.resolve(action.path)

        protected = self.policy.protected_root(resolved) or self.policy.protected_root(
            resolved.resolve()
        )
        if protected is not None:
            error = FileForbiddenError(action.path, protected_root=protected)
            logger.warning(error.message)
            return FileOpOutcome(
                path=action.path, status=FileOpStatus.FAILED, detail=error.message, error=error
            )

        if self.policy.tool_only:
            return await self._forward_write(action)

        exists = resolved.exists()
        if exists and self.policy.confirm_writes and self.confirm is not None:
            if not await self.confirm(action.path, exists):
                logger.info(f"Skipped by confirmation: {action.path}")
                return FileOpOutcome(
                    path=action.path, status=FileOpStatus.SKIPPED, detail="overwrite declined"
                )

        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            resolved.write_text(action.content, encoding="utf-8")
        except OSError as e:
            error = FileWriteError(action.path, reason=e.strerror or str(e), cause=e)
            logger.error(error.message)
            return FileOpOutcome(
                path=action.path, status=FileOpStatus.FAILED, detail=error.message, error=error
            )

        status = FileOpStatus.UPDATED if exists else FileOpStatus.CREATED
        logger.info(f"{status.value.capitalize()}: {action.path}")
        return FileOpOutcome(
            path=action.path,
            status=status,
            detail=f"{len(action.content.encode('utf-8'))} bytes written",
        )

    async def _forward_write(self, action: FileWriteAction) -> FileOpOutcome:
        tool = self.router.select_write_tool() if self.router is not None else None
        if tool is None:
            logger.warning(f"No suitable MCP write tool found, skipping file output: {action.path}")
            return FileOpOutcome(
                path=action.path,
                status=FileOpStatus.SKIPPED,
                detail="tool-only mode: no write tool available",
            )

        arguments = ToolRouter.build_write_arguments(tool, action.path, action.content)
        try:
            output = await self.router.call_tool(tool.name, arguments)
        except ToolError as e:
            logger.warning(f"Tool '{tool.name}' failed for {action.path}: {e.message}")
            return FileOpOutcome(
                path=action.path,
                status=FileOpStatus.FAILED,
                detail=e.message,
                error=e,
                extra={"tool": tool.name},
            )

        logger.info(f"Wrote via tool '{tool.name}': {action.path}")
        return FileOpOutcome(
            path=action.path,
            status=FileOpStatus.FORWARDED,
            detail=f"written via tool '{tool.name}'",
            extra={"tool": tool.name, "output": output},
        )
