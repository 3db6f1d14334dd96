"""Tool-calling hook loop.

Drives a chat context as an agent: every assistant reply is evaluated as a
script and the script's result becomes the next turn, until the I/O hook
signals that there is no more input.

    AWAIT_INPUT --(input or pending result)--> GENERATING
    GENERATING  --(stream done)--------------> EVALUATING
    EVALUATING  --(result / error / nothing)-> AWAIT_INPUT
    AWAIT_INPUT --(hook returns None)--------> HALT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .engine.chat_types import ChunkEvent, EndEvent, Greedy, Role, Sampling, StartEvent, TokenEvent, Turn
from .engine.context import ChatContext
from .script.base import ScriptEngine, ScriptEvaluationError

logger = logging.getLogger(__name__)

DEFAULT_NOOP_MARKER = "--"


class LoopState(Enum):
    AWAIT_INPUT = "await_input"
    GENERATING = "generating"
    EVALUATING = "evaluating"
    HALT = "halt"


class IOHook(Protocol):
    """The outside world, as seen by the hook loop."""

    def get_input(self) -> str | None:
        """Next user message, or None to stop the loop."""
        ...

    def on_token(self, event: TokenEvent) -> None: ...

    def parse_user_input(self, text: str) -> str: ...

    def parse_script_result(self, text: str) -> str: ...

    def parse_script_error(self, error: ScriptEvaluationError) -> str: ...


@dataclass(frozen=True)
class PendingResult:
    """Script outcome waiting to be fed back as the next turn."""

    text: str
    is_error: bool = False


class HookLoop:
    """
    Agent loop over a chat context, a script engine and an I/O hook.

    Args:
        context: Chat context to generate with.
        script_engine: Evaluates each assistant reply.
        hook: Input source, token sink and message formatting.
        sampling: Sampling policy for every turn.
        noop_marker: Replies starting with this marker are not evaluated.
        tool_role: Role under which script results are fed back.
    """

    def __init__(
        self,
        context: ChatContext,
        script_engine: ScriptEngine,
        hook: IOHook,
        *,
        sampling: Sampling | None = None,
        noop_marker: str = DEFAULT_NOOP_MARKER,
        tool_role: Role | str = Role.USER,
    ) -> None:
        self.context = context
        self.script_engine = script_engine
        self.hook = hook
        self.sampling = sampling if sampling is not None else Greedy()
        self.noop_marker = noop_marker
        self.tool_role = tool_role

        self.state = LoopState.AWAIT_INPUT
        self.pending_result: PendingResult | None = None
        self.turns_completed = 0
        self._next_turn: Turn | None = None
        self._reply: str | None = None
        self._reply_failed = False

        self._normalize_initial_turns()

    def _normalize_initial_turns(self) -> None:
        turns = [self._normalize_turn(t) for t in self.context.turns]
        self.context.replace_initial_turns(turns)

    def _normalize_turn(self, turn: Turn) -> Turn:
        if turn.role == Role.USER:
            return Turn(turn.role, self.hook.parse_user_input(turn.message))
        if turn.role == Role.TOOL:
            return Turn(self.tool_role, self.hook.parse_script_result(turn.message))
        return turn

    # -------------------------------------------------------------------------
    # Driving
    # -------------------------------------------------------------------------

    def run(self) -> int:
        """Run until the hook runs out of input; returns the number of generated turns."""
        while self.step() is not LoopState.HALT:
            pass
        return self.turns_completed

    def step(self) -> LoopState:
        """Advance the loop by one state transition."""
        if self.state is LoopState.AWAIT_INPUT:
            self._await_input()
        elif self.state is LoopState.GENERATING:
            self._generate()
        elif self.state is LoopState.EVALUATING:
            self._evaluate()
        return self.state

    # -------------------------------------------------------------------------
    # States
    # -------------------------------------------------------------------------

    def _await_input(self) -> None:
        pending = self.pending_result
        if pending is not None:
            self.pending_result = None
            if pending.is_error:
                self._next_turn = Turn(self.tool_role, pending.text)
            else:
                self._next_turn = Turn(self.tool_role, self.hook.parse_script_result(pending.text))
            self.state = LoopState.GENERATING
            return

        text = self.hook.get_input()
        if text is None:
            logger.debug("Input exhausted; halting")
            self.state = LoopState.HALT
            return
        self._next_turn = Turn(Role.USER, self.hook.parse_user_input(text))
        self.state = LoopState.GENERATING

    def _generate(self) -> None:
        turn = self._next_turn
        self._next_turn = None

        self.hook.on_token(StartEvent())
        with self.context.submit_turn(turn, self.sampling) as stream:
            for piece in stream:
                self.hook.on_token(ChunkEvent(piece))
        text = self.context.last_response(stream)
        self.hook.on_token(EndEvent(text))

        self.turns_completed += 1
        self._reply = text
        self._reply_failed = stream.error is not None
        self.state = LoopState.EVALUATING

    def _evaluate(self) -> None:
        reply, failed = self._reply, self._reply_failed
        self._reply = None
        self.state = LoopState.AWAIT_INPUT

        if failed:
            logger.info("Generation failed; waiting for input")
            return
        if not reply:
            return
        if self.noop_marker and reply.startswith(self.noop_marker):
            return

        try:
            result = self.script_engine.evaluate(reply)
        except ScriptEvaluationError as exc:
            logger.info("Script evaluation failed: %s", exc)
            self.pending_result = PendingResult(self.hook.parse_script_error(exc), is_error=True)
            return
        if result is not None:
            self.pending_result = PendingResult(result)
