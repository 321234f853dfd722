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

"""Inference engine boundary.

An engine takes a prompt and yields EngineEvents carrying raw bytes. Text is
never pre-decoded here; the orchestrator runs the bytes through a
StreamDecoder. Every stream ends with a FINISH or ERROR event unless the
consumer stops early.

Adapters:
    SubprocessEngine  runs a local model runner and streams its stdout
    OllamaEngine      streams from a local Ollama server over HTTP
"""

import asyncio
import json
import logging
import shlex
import shutil
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Deque, List, Optional, Protocol, runtime_checkable

import httpx

from kestrel.config.timeouts import Timeouts
from kestrel.core.errors import ConfigurationError, InferenceError

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096

# Chunks of runner stderr kept for the error message
STDERR_TAIL_CHUNKS = 16


class EngineState(Enum):
    NORMAL = "normal"
    WAITING = "waiting"
    FINISH = "finish"
    ERROR = "error"


@dataclass(frozen=True)
class EngineEvent:
    state: EngineState
    data: bytes = b""

    @property
    def is_terminal(self) -> bool:
        return self.state in (EngineState.FINISH, EngineState.ERROR)


@runtime_checkable
class InferenceEngine(Protocol):
    """What the orchestrator needs from a model runtime."""

    name: str

    def generate(self, prompt: str) -> AsyncIterator[EngineEvent]: ...

    async def close(self) -> None: ...


def apply_template(template: Optional[str], prompt: str) -> str:
    return template.replace("{prompt}", prompt) if template else prompt


class SubprocessEngine:
    """Runs a model runner command once per turn and streams its stdout.

    The prompt is substituted for a "{prompt}" argument when the command has
    one, otherwise it is written to the runner's stdin. "{model}" is
    substituted with the configured model path.
    """

    name = "subprocess"

    def __init__(
        self,
        command: str,
        model: Optional[str] = None,
        prompt_template: Optional[str] = None,
    ):
        argv = shlex.split(command)
        if not argv:
            raise ConfigurationError("engine_command is empty", config_key="engine_command")
        if shutil.which(argv[0]) is None:
            raise InferenceError(f"Model runner not found: {argv[0]}", engine=self.name)

        self.argv = argv
        self.model = model
        self.prompt_template = prompt_template
        self._process: Optional[asyncio.subprocess.Process] = None

    def _build_argv(self, prompt: str) -> List[str]:
        argv = []
        for arg in self.argv:
            if self.model is not None:
                arg = arg.replace("{model}", self.model)
            argv.append(arg.replace("{prompt}", prompt))
        return argv

    async def generate(self, prompt: str) -> AsyncIterator[EngineEvent]:
        rendered = apply_template(self.prompt_template, prompt)
        via_stdin = not any("{prompt}" in arg for arg in self.argv)

        try:
            process = await asyncio.create_subprocess_exec(
                *self._build_argv(rendered),
                stdin=asyncio.subprocess.PIPE if via_stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise InferenceError(
                f"Failed to start model runner: {e}", engine=self.name, cause=e
            ) from e

        self._process = process
        # Runners log heavily on stderr; an unread pipe would stall them
        stderr_tail: Deque[bytes] = deque(maxlen=STDERR_TAIL_CHUNKS)
        helpers = [asyncio.create_task(_collect_stderr(process.stderr, stderr_tail))]
        if via_stdin:
            helpers.append(asyncio.create_task(_feed_stdin(process.stdin, rendered)))

        try:
            while True:
                chunk = await process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                yield EngineEvent(EngineState.NORMAL, chunk)

            await helpers[0]
            returncode = await process.wait()
            if returncode == 0:
                yield EngineEvent(EngineState.FINISH)
            else:
                stderr = b"".join(stderr_tail).decode("utf-8", errors="replace").strip()
                logger.error(f"Model runner exited with code {returncode}: {stderr[-500:]}")
                yield EngineEvent(EngineState.ERROR, stderr.encode("utf-8"))
        finally:
            await _reap(process, helpers)
            self._process = None

    async def close(self) -> None:
        if self._process is not None and self._process.returncode is None:
            self._process.kill()


async def _collect_stderr(stream: asyncio.StreamReader, tail: Deque[bytes]) -> None:
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            return
        tail.append(chunk)


async def _feed_stdin(stdin: asyncio.StreamWriter, text: str) -> None:
    try:
        stdin.write(text.encode("utf-8"))
        await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("Model runner closed stdin before reading the prompt")
    finally:
        stdin.close()


async def _discard(stream: asyncio.StreamReader) -> None:
    while await stream.read(READ_CHUNK_SIZE):
        pass


async def _reap(process: asyncio.subprocess.Process, helpers: List[asyncio.Task]) -> None:
    """Kill the runner if it is still going, then wait for it with its pipes drained."""
    if process.returncode is None:
        process.kill()
    try:
        await asyncio.wait_for(
            asyncio.gather(_discard(process.stdout), *helpers, process.wait()),
            timeout=Timeouts.ENGINE_PROCESS_KILL,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Model runner (pid {process.pid}) did not release its pipes after kill")


class OllamaEngine:
    """Streams /api/generate from a local Ollama server."""

    name = "ollama"

    def __init__(
        self,
        model: str,
        base_url: str = "http://localhost:11434",
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not model:
            raise ConfigurationError("Ollama engine requires a model name", config_key="model")
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(None, connect=Timeouts.HTTP_CONNECT),
        )

    async def generate(self, prompt: str) -> AsyncIterator[EngineEvent]:
        payload = {"model": self.model, "prompt": prompt, "stream": True}
        try:
            async with self._client.stream("POST", "/api/generate", json=payload) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(f"Ollama returned HTTP {response.status_code}: {body[:500]}")
                    yield EngineEvent(EngineState.ERROR, body.encode("utf-8"))
                    return

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping non-JSON line from Ollama: {line[:200]}")
                        continue
                    if data.get("error"):
                        yield EngineEvent(EngineState.ERROR, str(data["error"]).encode("utf-8"))
                        return
                    text = data.get("response") or ""
                    if text:
                        yield EngineEvent(EngineState.NORMAL, text.encode("utf-8"))
                    if data.get("done"):
                        yield EngineEvent(EngineState.FINISH)
                        return
        except httpx.HTTPError as e:
            logger.error(f"Ollama request failed: {e}")
            yield EngineEvent(EngineState.ERROR, str(e).encode("utf-8"))
            return

        yield EngineEvent(EngineState.FINISH)

    async def close(self) -> None:
        await self._client.aclose()


def create_engine(settings) -> InferenceEngine:
    """Build the engine selected in settings.

    Raises:
        ConfigurationError: Unknown engine or missing parameters
        InferenceError: The model runner cannot be found
    """
    if settings.engine == "subprocess":
        if not settings.engine_command:
            raise ConfigurationError(
                "engine_command is required for the subprocess engine",
                config_key="engine_command",
            )
        return SubprocessEngine(
            settings.engine_command,
            model=settings.model,
            prompt_template=settings.prompt_template,
        )
    if settings.engine == "ollama":
        return OllamaEngine(settings.model, base_url=settings.ollama_base_url)
    raise ConfigurationError(f"Unknown engine: {settings.engine}", config_key="engine")
