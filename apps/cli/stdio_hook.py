"""Terminal I/O for the hook loop.

Messages reach the model as small JSON envelopes so it can tell user input
from tool output:

    {"role": "user", "message": "..."}
    {"role": "tool", "message": <script result>}
    {"role": "tool", "message": {"status": "error", "error": "..."}}
"""

from __future__ import annotations

import json
import sys
from typing import TextIO

from lua_llama.engine.chat_types import ChunkEvent, EndEvent, StartEvent, TokenEvent
from lua_llama.script.base import ScriptEvaluationError


def _json_or_string(text: str) -> object:
    # Tool results that are already JSON are embedded as-is.
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class StdioHook:
    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self._in = stdin if stdin is not None else sys.stdin
        self._out = stdout if stdout is not None else sys.stdout

    def _print(self, text: str = "", end: str = "\n") -> None:
        self._out.write(text + end)
        self._out.flush()

    def get_input(self) -> str | None:
        self._print("User:")
        line = self._in.readline()
        if not line:
            return None
        return line.rstrip("\r\n")

    def on_token(self, event: TokenEvent) -> None:
        if isinstance(event, StartEvent):
            self._print("AI:")
        elif isinstance(event, ChunkEvent):
            self._print(event.text, end="")
        elif isinstance(event, EndEvent):
            self._print()

    def parse_user_input(self, text: str) -> str:
        return json.dumps({"role": "user", "message": text}, ensure_ascii=False)

    def parse_script_result(self, text: str) -> str:
        message = json.dumps({"role": "tool", "message": _json_or_string(text)}, ensure_ascii=False)
        self._print("Tool:")
        self._print(message)
        return message

    def parse_script_error(self, error: ScriptEvaluationError) -> str:
        message = json.dumps(
            {"role": "tool", "message": {"status": "error", "error": str(error)}},
            ensure_ascii=False,
        )
        self._print("Tool:")
        self._print(message)
        return message
