# Script engines
#
# Model output is treated as code; a script engine runs it and reports the
# result (or an error) as text for the next conversation turn.
#
#   - base.py   ScriptEngine protocol + ScriptEvaluationError
#   - lua.py    Lua engine (lupa)

from .base import ScriptEngine, ScriptEvaluationError

__all__ = ["ScriptEngine", "ScriptEvaluationError"]
