"""Lua scripting engine backed by lupa."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping

from lupa import LuaError, LuaRuntime, lua_type

from .base import ScriptEvaluationError

logger = logging.getLogger(__name__)


def _table_to_python(value: Any, depth: int = 0) -> Any:
    if depth > 32:
        raise ScriptEvaluationError("Lua table is nested too deeply to convert.")
    if lua_type(value) != "table":
        return value

    items = list(value.items())
    keys = [k for k, _ in items]
    # Sequence tables (1..n) become JSON arrays; everything else an object.
    if keys and all(isinstance(k, int) and not isinstance(k, bool) for k in keys) and sorted(keys) == list(
        range(1, len(keys) + 1)
    ):
        return [_table_to_python(v, depth + 1) for _, v in sorted(items, key=lambda kv: kv[0])]
    return {str(k): _table_to_python(v, depth + 1) for k, v in items}


def lua_value_to_text(value: Any) -> str | None:
    """Render a Lua value the way the hook loop feeds it back to the model."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if lua_type(value) == "table":
        return json.dumps(_table_to_python(value), ensure_ascii=False)
    return str(value)


class LuaScriptEngine:
    """
    Evaluates model-authored Lua chunks.

    Python callables registered with `register()` are visible to scripts as
    globals. A chunk is first tried as an expression (`return <chunk>`), as a
    REPL would, and otherwise executed as a statement block; the first value
    it returns is the result.

    Example:
        >>> engine = LuaScriptEngine()
        >>> engine.register("add", lambda a, b: a + b)
        >>> engine.evaluate("add(1, 2)")
        '3'
    """

    def __init__(
        self,
        runtime: LuaRuntime | None = None,
        functions: Mapping[str, Callable[..., Any]] | None = None,
    ) -> None:
        if runtime is None:
            runtime = LuaRuntime(register_eval=False, register_builtins=False, unpack_returned_tuples=True)
        self._lua = runtime
        for name, fn in (functions or {}).items():
            self.register(name, fn)

    @property
    def runtime(self) -> LuaRuntime:
        return self._lua

    def register(self, name: str, fn: Callable[..., Any]) -> None:
        if not name.isidentifier():
            raise ValueError(f"Invalid Lua global name: {name!r}")
        self._lua.globals()[name] = fn

    def table(self, mapping: Mapping[str, Any]) -> Any:
        """Build a Lua table from a Python mapping (for tool return values)."""
        return self._lua.table_from(dict(mapping))

    def evaluate(self, source: str) -> str | None:
        chunk = self._compile(source)
        try:
            result = chunk()
        except LuaError as exc:
            raise ScriptEvaluationError(str(exc)) from exc
        except Exception as exc:
            # Registered Python functions raise through Lua unchanged.
            raise ScriptEvaluationError(f"{type(exc).__name__}: {exc}") from exc

        if isinstance(result, tuple):
            result = result[0] if result else None
        return lua_value_to_text(result)

    def _compile(self, source: str) -> Callable[[], Any]:
        try:
            return self._lua.compile("return " + source)
        except LuaError:
            logger.debug("Chunk is not an expression; compiling as statements")
        try:
            return self._lua.compile(source)
        except LuaError as exc:
            raise ScriptEvaluationError(str(exc)) from exc
