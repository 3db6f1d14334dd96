"""Demo tool functions exposed to model-authored Lua."""

from __future__ import annotations

import json
import sys
from typing import TextIO

from lua_llama.script.lua import LuaScriptEngine

_OK = json.dumps({"status": "ok"})


def new_lua_env(out: TextIO | None = None) -> LuaScriptEngine:
    """Lua engine with `reply`, `send_sms`, `send_msg`, `remember` and `get_weather`."""
    stream = out if out is not None else sys.stdout

    def _say(text: str) -> None:
        stream.write(text + "\n")
        stream.flush()

    def reply(message):
        _say(f"reply: {message}")
        return None

    def send_sms(number, message):
        _say(f"lua: Sending SMS to {number}: {message}")
        return _OK

    def send_msg(room_id, message):
        _say(f"lua: Sending message to room {room_id}: {message}")
        return _OK

    def remember(seconds, text):
        _say(f"set_timer {seconds}: {text}")
        return _OK

    def get_weather():
        _say("get_weather")
        return "rain"

    return LuaScriptEngine(
        functions={
            "reply": reply,
            "send_sms": send_sms,
            "send_msg": send_msg,
            "remember": remember,
            "get_weather": get_weather,
        }
    )
