"""System prompt files.

A prompt file holds the conversation preamble as an ordered list of turns
under the `content` key:

    [[content]]
    role = "system"
    message = "You answer in Lua."

    [[content]]
    role = "user"
    message = "What's the weather?"

JSON files with the same shape (`{"content": [{"role": ..., "message": ...}]}`)
are accepted too.
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any

from lua_llama.engine.chat_types import Turn


class PromptFileError(ValueError):
    pass


def _parse(path: Path, raw: str) -> dict[str, Any]:
    try:
        if path.suffix.lower() == ".json":
            return json.loads(raw)
        return tomllib.loads(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise PromptFileError(f"{path}: {exc}") from exc


def load_system_prompt(path: str | Path) -> list[Turn]:
    """Read the ordered preamble turns from a TOML or JSON prompt file."""
    p = Path(path).expanduser()
    try:
        raw = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise PromptFileError(f"Cannot read prompt file {p}: {exc}") from exc

    data = _parse(p, raw)
    if not isinstance(data, dict) or "content" not in data:
        raise PromptFileError(f"{p}: missing 'content' list of turns")
    content = data["content"]
    if not isinstance(content, list):
        raise PromptFileError(f"{p}: 'content' must be a list of turns")

    turns: list[Turn] = []
    for i, item in enumerate(content):
        if not isinstance(item, dict):
            raise PromptFileError(f"{p}: content[{i}] must be a table with 'role' and 'message'")
        try:
            turns.append(Turn.from_dict(item))
        except ValueError as exc:
            raise PromptFileError(f"{p}: content[{i}]: {exc}") from exc
    return turns
