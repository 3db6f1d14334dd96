"""
lua-llama - a local LLM chat core whose replies are executed as Lua.

The model answers in Lua; each answer is evaluated and its result is fed
back to the model as the next turn, closing a tool-calling loop.

Quick Start:
    from lua_llama import (
        ContinuousContext, HookLoop, LuaScriptEngine, get_adapter, get_template,
    )

    adapter = get_adapter("transformers")
    adapter.load("Qwen/Qwen2.5-0.5B-Instruct")
    ctx = ContinuousContext(adapter, get_template("qwen"), system_prompt)
    HookLoop(ctx, LuaScriptEngine(), hook).run()

Submodules:
    - lua_llama.engine: templates, contexts, decode stream, backends
    - lua_llama.script: script engines (Lua)
    - lua_llama.hook_loop: the agent loop
"""

from lua_llama._version import __version__

from lua_llama.engine.adapters.base import DecodeError, EngineError, TokenizationError
from lua_llama.engine.chat_types import (
    ChunkEvent,
    EndEvent,
    Full,
    Greedy,
    Once,
    Role,
    StartEvent,
    Temperature,
    TopP,
    Turn,
)
from lua_llama.engine.context import (
    ChatContext,
    ContextBusyError,
    ContextConfig,
    ContinuousContext,
    FullRebuildContext,
    UnsupportedOperation,
)
from lua_llama.engine.adapters import get_adapter, list_backends, register_adapter
from lua_llama.engine.stream import DecodeStream
from lua_llama.engine.templates import PromptTemplate, get_template, list_templates, register_template
from lua_llama.hook_loop import HookLoop, IOHook, LoopState
from lua_llama.script.base import ScriptEngine, ScriptEvaluationError


def __getattr__(name):
    # lupa is only imported when the Lua engine is actually used.
    if name == "LuaScriptEngine":
        from lua_llama.script.lua import LuaScriptEngine

        return LuaScriptEngine
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Version
    "__version__",
    # Conversation types
    "Role",
    "Turn",
    "Once",
    "Full",
    "Greedy",
    "Temperature",
    "TopP",
    "StartEvent",
    "ChunkEvent",
    "EndEvent",
    # Templates
    "PromptTemplate",
    "get_template",
    "list_templates",
    "register_template",
    # Contexts
    "ChatContext",
    "ContextConfig",
    "ContinuousContext",
    "FullRebuildContext",
    "DecodeStream",
    # Backends
    "get_adapter",
    "list_backends",
    "register_adapter",
    # Agent loop
    "HookLoop",
    "IOHook",
    "LoopState",
    "ScriptEngine",
    "LuaScriptEngine",
    # Errors
    "EngineError",
    "TokenizationError",
    "DecodeError",
    "ContextBusyError",
    "UnsupportedOperation",
    "ScriptEvaluationError",
]
