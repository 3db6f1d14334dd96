"""Script evaluator interface used by the hook loop."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


class ScriptEvaluationError(Exception):
    """Model-authored code failed to compile or run."""


@runtime_checkable
class ScriptEngine(Protocol):
    def evaluate(self, source: str) -> str | None:
        """
        Run `source` and return its result as text.

        Returns:
            The textual result, or None when the script produced nothing.

        Raises:
            ScriptEvaluationError: On syntax or runtime errors.
        """
        ...
