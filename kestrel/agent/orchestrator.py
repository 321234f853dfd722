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

"""Conversation orchestrator: the turn loop of one user exchange.

Phases:

    AWAITING_USER_INPUT -> PROMPTING -> STREAMING_RESPONSE -> DETECTING_ACTIONS
        -> EXECUTING_ACTIONS -> INJECTING_RESULTS -> PROMPTING ...
        -> FINALIZED

A turn streams one model response. If the response contains actions they are
executed in detection order, one at a time, and their results are appended to
the running context for the next turn. A response without actions ends the
exchange. max_iterations bounds the number of turns.

Cancellation (cancel()) is observed while waiting for the stream, a tool
call, or a write confirmation. A tool call already sent to a server is left
to finish in the background and its result is dropped.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Set

from kestrel.agent.action_detector import ActionDetector
from kestrel.agent.actions import (
    Action,
    FileOpOutcome,
    FileOpStatus,
    FileWriteAction,
    ToolCallAction,
    ToolResult,
)
from kestrel.agent.engine import EngineState, InferenceEngine
from kestrel.agent.intent import has_file_operation_intent, split_io_paths
from kestrel.agent.prompt_builder import (
    build_chat_prompt,
    build_followup_prompt,
    build_tool_info,
    format_file_outcome,
    format_previous_response,
    format_tool_result,
)
from kestrel.agent.stream_decoder import StreamDecoder, ThinkingFilter
from kestrel.config.timeouts import Timeouts
from kestrel.files.operations import FileOperationEngine, FileReadReport
from kestrel.mcp.router import ToolRouter

logger = logging.getLogger(__name__)

TRUNCATION_NOTICE = "[Response truncated: turn timeout reached]"


class ConversationPhase(Enum):
    AWAITING_USER_INPUT = "awaiting_user_input"
    PROMPTING = "prompting"
    STREAMING_RESPONSE = "streaming_response"
    DETECTING_ACTIONS = "detecting_actions"
    EXECUTING_ACTIONS = "executing_actions"
    INJECTING_RESULTS = "injecting_results"
    FINALIZED = "finalized"


class ExchangeStatus(Enum):
    COMPLETED = "completed"
    ITERATION_LIMIT = "iteration_limit"
    CANCELLED = "cancelled"
    ENGINE_ERROR = "engine_error"


@dataclass
class ConversationState:
    """Loop state, mutated only at turn boundaries."""

    turn_count: int = 0
    accumulated_context: str = ""
    terminal: bool = False
    phase: ConversationPhase = ConversationPhase.AWAITING_USER_INPUT


@dataclass
class TurnOutcome:
    """What one streamed response produced."""

    text: str = ""
    thinking: List[str] = field(default_factory=list)
    timed_out: bool = False
    cancelled: bool = False
    engine_error: Optional[str] = None


@dataclass
class ExchangeResult:
    """Everything one user exchange produced."""

    final_text: str
    status: ExchangeStatus
    turns: int
    tool_results: List[ToolResult] = field(default_factory=list)
    file_outcomes: List[FileOpOutcome] = field(default_factory=list)
    timed_out_turns: int = 0
    thinking: List[str] = field(default_factory=list)
    read_report: Optional[FileReadReport] = None
    output_targets: List[str] = field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def iteration_limit_reached(self) -> bool:
        return self.status == ExchangeStatus.ITERATION_LIMIT


class _ExchangeCancelled(Exception):
    pass


class ConversationOrchestrator:
    """Drives prompting, streaming, detection and execution for one exchange at a time."""

    def __init__(
        self,
        engine: InferenceEngine,
        router: Optional[ToolRouter] = None,
        files: Optional[FileOperationEngine] = None,
        detector: Optional[ActionDetector] = None,
        max_iterations: int = 3,
        turn_timeout: float = Timeouts.TURN_DEFAULT,
        on_text: Optional[Callable[[str], None]] = None,
        on_prompt: Optional[Callable[[str], None]] = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.engine = engine
        self.router = router or ToolRouter()
        self.files = files or FileOperationEngine(router=self.router)
        self.detector = detector or ActionDetector()
        self.max_iterations = max_iterations
        self.turn_timeout = turn_timeout
        self.on_text = on_text
        self.on_prompt = on_prompt

        self._state = ConversationState()
        self._cancel_event = asyncio.Event()
        self._background: Set[asyncio.Task] = set()

    @property
    def state(self) -> ConversationState:
        return self._state

    def cancel(self) -> None:
        """Abort the running exchange at its next suspension point."""
        self._cancel_event.set()

    # -------------------------------------------------------------------------
    # Exchange loop
    # -------------------------------------------------------------------------

    async def run_exchange(self, user_input: str) -> ExchangeResult:
        self._cancel_event.clear()
        self._state = ConversationState(phase=ConversationPhase.PROMPTING)

        file_intent = has_file_operation_intent(user_input)
        paths = self.files.detect_paths(user_input)
        inputs, output_targets = split_io_paths(paths, file_intent, self.files.exists)
        if paths:
            logger.info(f"Detected files: {', '.join(paths)}")
        if output_targets:
            logger.info(f"Treating as output targets: {', '.join(output_targets)}")
        report = self.files.read_files(inputs)

        prompt = build_chat_prompt(
            user_input,
            files=report.files,
            file_errors=report.errors,
            tool_info=build_tool_info(self.router.list_all_tools()),
            output_targets=output_targets,
            file_intent=file_intent,
            allow_local_writes=not self.files.policy.tool_only,
        )
        self._state.accumulated_context = prompt

        result = ExchangeResult(
            final_text="",
            status=ExchangeStatus.COMPLETED,
            turns=0,
            read_report=report,
            output_targets=list(output_targets),
        )

        while True:
            self._state.turn_count += 1
            result.turns = self._state.turn_count
            self._state.phase = ConversationPhase.PROMPTING
            if self.on_prompt is not None:
                self.on_prompt(prompt)

            self._state.phase = ConversationPhase.STREAMING_RESPONSE
            turn = await self._stream_turn(prompt)
            result.final_text = turn.text
            result.thinking.extend(turn.thinking)

            if turn.cancelled:
                return self._finish(result, ExchangeStatus.CANCELLED)
            if turn.engine_error is not None:
                result.error_message = turn.engine_error
                return self._finish(result, ExchangeStatus.ENGINE_ERROR)
            if turn.timed_out:
                result.timed_out_turns += 1
                logger.warning(f"Turn {self._state.turn_count} timed out after {self.turn_timeout}s")

            self._state.phase = ConversationPhase.DETECTING_ACTIONS
            actions = self.detector.detect(turn.text)
            if not actions:
                return self._finish(result, ExchangeStatus.COMPLETED)

            self._state.phase = ConversationPhase.EXECUTING_ACTIONS
            try:
                blocks = await self._execute_actions(
                    actions, result, file_intent, report, output_targets
                )
            except _ExchangeCancelled:
                return self._finish(result, ExchangeStatus.CANCELLED)

            if self._state.turn_count >= self.max_iterations:
                logger.warning(f"Iteration limit reached ({self.max_iterations} turns)")
                return self._finish(result, ExchangeStatus.ITERATION_LIMIT)

            self._state.phase = ConversationPhase.INJECTING_RESULTS
            previous = turn.text + (f"\n{TRUNCATION_NOTICE}" if turn.timed_out else "")
            self._state.accumulated_context = "\n".join(
                [self._state.accumulated_context, "", format_previous_response(previous), *blocks]
            )
            prompt = build_followup_prompt(self._state.accumulated_context)

    def _finish(self, result: ExchangeResult, status: ExchangeStatus) -> ExchangeResult:
        result.status = status
        self._state.phase = ConversationPhase.FINALIZED
        self._state.terminal = True
        logger.debug(f"Exchange finished: {status.value} after {result.turns} turn(s)")
        return result

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    async def _stream_turn(self, prompt: str) -> TurnOutcome:
        """Consume one engine stream until FINISH/ERROR, timeout, or cancel."""
        decoder = StreamDecoder()
        thinking = ThinkingFilter()
        visible: List[str] = []
        outcome = TurnOutcome()

        def emit(text: str) -> None:
            if text:
                visible.append(text)
                if self.on_text is not None:
                    self.on_text(text)

        async def consume() -> None:
            async with contextlib.aclosing(self.engine.generate(prompt)) as events:
                async for event in events:
                    if event.state == EngineState.ERROR:
                        outcome.engine_error = (
                            event.data.decode("utf-8", errors="replace").strip()
                            or "inference engine reported an error"
                        )
                        return
                    if event.data:
                        emit(thinking.feed(decoder.feed(event.data)))
                    if event.is_terminal:
                        return

        stream_task = asyncio.ensure_future(consume())
        cancel_task = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {stream_task, cancel_task},
                timeout=self.turn_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_task.cancel()

        if stream_task in done:
            stream_task.result()
        else:
            stream_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stream_task
            if self._cancel_event.is_set():
                outcome.cancelled = True
            else:
                outcome.timed_out = True

        emit(thinking.feed(decoder.finish()))
        emit(thinking.flush())
        outcome.text = "".join(visible)
        outcome.thinking = list(thinking.sections)
        return outcome

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def _execute_actions(
        self,
        actions: List[Action],
        result: ExchangeResult,
        file_intent: bool,
        report: FileReadReport,
        output_targets: List[str],
    ) -> List[str]:
        """Execute actions in detection order and return their result blocks."""
        writes = [a for a in actions if isinstance(a, FileWriteAction)]
        plan = iter(
            self.files.reconcile_writes(writes, report.contents_by_path, output_targets)
            if file_intent
            else []
        )

        blocks: List[str] = []
        for action in actions:
            if self._cancel_event.is_set():
                raise _ExchangeCancelled()

            if isinstance(action, ToolCallAction):
                tool_result = await self._await_cancellable(
                    self.router.execute(action), let_finish=True
                )
                result.tool_results.append(tool_result)
                blocks.append(format_tool_result(tool_result))

            elif isinstance(action, FileWriteAction):
                if not file_intent:
                    outcome = FileOpOutcome(
                        path=action.path,
                        status=FileOpStatus.SKIPPED,
                        detail="no file operation requested",
                    )
                else:
                    entry = next(plan)
                    if isinstance(entry, FileOpOutcome):
                        outcome = entry
                    else:
                        outcome = await self._await_cancellable(
                            self.files.apply_write(entry), let_finish=False
                        )
                result.file_outcomes.append(outcome)
                blocks.append(format_file_outcome(outcome))

            else:
                raise TypeError(f"Unhandled action type: {type(action).__name__}")

        return blocks

    async def _await_cancellable(self, awaitable: Awaitable[Any], let_finish: bool) -> Any:
        """Await, unless cancel() fires first.

        With let_finish the operation keeps running in the background and its
        result is discarded; otherwise it is cancelled.
        """
        task = asyncio.ensure_future(awaitable)
        cancel_task = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()

        if task.done():
            return task.result()

        if let_finish:
            self._background.add(task)
            task.add_done_callback(self._discard_result)
        else:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        raise _ExchangeCancelled()

    def _discard_result(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug(f"Discarded failure of cancelled operation: {error}")
        else:
            logger.debug("Discarded result of cancelled operation")

    async def drain_background(self) -> None:
        """Wait for operations left running by cancel()."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
