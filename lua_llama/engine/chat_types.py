"""Core conversation, request and token-event types.

These types are internal to the library and are intentionally decoupled from:
- the inference backend (torch / transformers)
- the CLI transport (stdin / stdout)

The goal is to keep the chat core reusable behind other I/O surfaces.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"

    @classmethod
    def parse(cls, value: str | Role) -> Role | str:
        """Map a role name onto a known role; unknown names are kept verbatim."""
        if isinstance(value, Role):
            return value
        try:
            return cls(value)
        except ValueError:
            return value

    def __str__(self) -> str:
        return self.value


def role_name(role: Role | str) -> str:
    return role.value if isinstance(role, Role) else str(role)


@dataclass(frozen=True)
class Turn:
    """One role-tagged message in a conversation.

    `role` is either a known `Role` or an arbitrary role string (e.g. a
    model family that defines its own roles).
    """

    role: Role | str
    message: str

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Turn:
        role = raw.get("role")
        message = raw.get("message", "")
        if not isinstance(role, str) or not role:
            raise ValueError(f"Turn requires a non-empty 'role' string, got {role!r}")
        if not isinstance(message, str):
            raise ValueError(f"Turn 'message' must be a string, got {type(message).__name__}")
        return cls(role=Role.parse(role), message=message)

    def to_dict(self) -> dict[str, str]:
        return {"role": role_name(self.role), "message": self.message}


# -----------------------------------------------------------------------------
# Sampling policies
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Greedy:
    """Pick the most likely token (no biasing of the engine distribution)."""


@dataclass(frozen=True)
class Temperature:
    temperature: float


@dataclass(frozen=True)
class TopP:
    """Nucleus sampling: keep the smallest set of tokens whose mass reaches `p`."""

    p: float
    min_keep: int = 1


Sampling = Greedy | Temperature | TopP


# -----------------------------------------------------------------------------
# Chat requests
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Once:
    """Append a single turn to the running conversation."""

    turn: Turn
    sampling: Sampling = field(default_factory=Greedy)


@dataclass(frozen=True)
class Full:
    """Replace the whole conversation with `turns`."""

    turns: Sequence[Turn]
    sampling: Sampling = field(default_factory=Greedy)


ChatRequest = Once | Full


# -----------------------------------------------------------------------------
# Token callback events
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class StartEvent:
    """Emitted once before the first token of a turn."""


@dataclass(frozen=True)
class ChunkEvent:
    """A visible text fragment."""

    text: str


@dataclass(frozen=True)
class EndEvent:
    """Emitted once per turn with the full (committed) turn text."""

    text: str


TokenEvent = StartEvent | ChunkEvent | EndEvent
