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

"""Scripted inference engine for orchestrator tests."""

import asyncio
from typing import AsyncIterator, List, Optional, Sequence, Union

from kestrel.agent.engine import EngineEvent, EngineState

# Script item that blocks the stream until it is cancelled
HANG = object()

ScriptItem = Union[str, bytes, EngineEvent, object]


class ScriptedEngine:
    """Replays one script per turn and records every prompt it receives.

    Script items:
        str / bytes   a NORMAL event carrying the (UTF-8 encoded) data
        EngineEvent   yielded as is
        HANG          wait forever (until the consumer cancels)

    A FINISH event is appended to every script unless the script already
    ended the stream with FINISH or ERROR. Turns beyond the scripts answer
    with plain text.
    """

    name = "scripted"

    def __init__(self, turns: Sequence[Sequence[ScriptItem]], delay: float = 0.0):
        self.turns: List[Sequence[ScriptItem]] = list(turns)
        self.delay = delay
        self.prompts: List[str] = []
        self.closed = False
        self.aborted = 0

    async def generate(self, prompt: str) -> AsyncIterator[EngineEvent]:
        self.prompts.append(prompt)
        index = len(self.prompts) - 1
        script = self.turns[index] if index < len(self.turns) else ["Done."]

        try:
            for item in script:
                if self.delay:
                    await asyncio.sleep(self.delay)
                if item is HANG:
                    await asyncio.Event().wait()
                event = _to_event(item)
                yield event
                if event.is_terminal:
                    return
            yield EngineEvent(EngineState.FINISH)
        except (asyncio.CancelledError, GeneratorExit):
            self.aborted += 1
            raise

    async def close(self) -> None:
        self.closed = True


def _to_event(item: ScriptItem) -> EngineEvent:
    if isinstance(item, EngineEvent):
        return item
    if isinstance(item, str):
        return EngineEvent(EngineState.NORMAL, item.encode("utf-8"))
    if isinstance(item, bytes):
        return EngineEvent(EngineState.NORMAL, item)
    raise TypeError(f"Unsupported script item: {item!r}")


def error_event(message: Optional[str] = "runner crashed") -> EngineEvent:
    return EngineEvent(EngineState.ERROR, (message or "").encode("utf-8"))
