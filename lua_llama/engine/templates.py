"""Prompt templates.

A template is pure configuration: how turns are framed for a model family
(header prefix/suffix, end-of-content marker) and which strings end a turn
when the model emits them. The decode loop stays family-agnostic; each model
family is one constant `PromptTemplate` instance.

Stop handling is applied token by token, against the running text of the
turn, because a stop sequence may straddle token boundaries that do not line
up with the tokenizer's own split of the literal stop string.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .chat_types import Role, Turn, role_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromptTemplate:
    """Data-driven turn framing and stop detection for one model family."""

    header_prefix: str
    header_suffix: str
    end_of_content: str
    stops: tuple[str, ...]
    # Set when the engine itself emits the assistant header before the body
    # (tokens up to and including this marker are discarded while streaming).
    header_end: str | None = None
    _max_stop_len: int = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        stops = tuple(self.stops)
        if not stops:
            raise ValueError("PromptTemplate requires at least one stop string.")
        if any(not s for s in stops):
            raise ValueError("PromptTemplate stop strings must be non-empty.")
        # Ordered set: keep first occurrence.
        stops = tuple(dict.fromkeys(stops))
        object.__setattr__(self, "stops", stops)
        object.__setattr__(self, "_max_stop_len", max(len(s) for s in stops))

        if self.end_of_content and not any(s in self.end_of_content for s in stops):
            logger.warning(
                "end_of_content %r contains none of the stops %r; generation may not terminate cleanly",
                self.end_of_content,
                stops,
            )

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> PromptTemplate:
        """Build a template from a TOML/JSON mapping."""
        missing = [k for k in ("header_prefix", "header_suffix", "end_of_content", "stops") if k not in raw]
        if missing:
            raise ValueError(f"Prompt template is missing keys: {', '.join(missing)}")
        stops = raw["stops"]
        if isinstance(stops, str) or not isinstance(stops, Sequence):
            raise ValueError("Prompt template 'stops' must be a list of strings.")
        return cls(
            header_prefix=str(raw["header_prefix"]),
            header_suffix=str(raw["header_suffix"]),
            end_of_content=str(raw["end_of_content"]),
            stops=tuple(str(s) for s in stops),
            header_end=raw.get("header_end"),
        )

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    @property
    def assistant_header(self) -> str:
        return self.header_prefix + Role.ASSISTANT.value + self.header_suffix

    def encode(self, turns: Sequence[Turn], *, prime: bool = True) -> str:
        """Frame `turns` for the engine.

        With `prime` (the default) a trailing non-assistant turn is followed by
        an empty assistant header so the engine answers next.
        """
        parts: list[str] = []
        for turn in turns:
            parts.append(self.header_prefix)
            parts.append(role_name(turn.role))
            parts.append(self.header_suffix)
            parts.append(turn.message)
            parts.append(self.end_of_content)
        # Prime the engine to answer as the assistant.
        if prime and turns and turns[-1].role != Role.ASSISTANT:
            parts.append(self.assistant_header)
        return "".join(parts)

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    @property
    def needs_header_skip(self) -> bool:
        return self.header_end is not None

    def header_ended(self, token: str) -> bool:
        if self.header_end is None:
            return True
        return token.endswith(self.header_end)

    def filter_token(self, token: str, accumulated: str) -> str | None:
        """Return `token` unchanged, or None when it completes a stop sequence."""
        if token in self.stops:
            return None
        text = accumulated + token
        for stop in self.stops:
            if text.endswith(stop):
                return None
        return token

    def content_before_stop(self, accumulated: str, token: str) -> str:
        """Turn text preceding the stop sequence that `token` completed."""
        if token in self.stops:
            return accumulated
        text = accumulated + token
        for stop in self.stops:
            if text.endswith(stop):
                return text[: len(text) - len(stop)]
        return text

    def pending_stop_length(self, text: str) -> int:
        """Length of the longest suffix of `text` that could still grow into a stop."""
        longest = 0
        upper = min(len(text), self._max_stop_len - 1)
        for n in range(upper, 0, -1):
            tail = text[-n:]
            if any(stop.startswith(tail) for stop in self.stops):
                longest = n
                break
        return longest

    def trim_committed(self, content: str) -> str:
        """Canonical assistant message: no echoed primer header, no trailing stop."""
        header = self.assistant_header
        while header and content.startswith(header):
            content = content[len(header) :]

        trimmed = True
        while trimmed:
            trimmed = False
            for stop in self.stops:
                if content.endswith(stop):
                    content = content[: len(content) - len(stop)]
                    trimmed = True
                    break
        return content


# =============================================================================
# Model family presets
# =============================================================================


QWEN = PromptTemplate(
    header_prefix="<|im_start|>",
    header_suffix="\n",
    end_of_content="<|im_end|>\n",
    stops=("<|im_end|>",),
)

LLAMA3 = PromptTemplate(
    header_prefix="<|start_header_id|>",
    header_suffix="<|end_header_id|>\n\n",
    end_of_content="<|eot_id|>",
    stops=("<|eot_id|>",),
)

HERMES2PRO_LLAMA3 = PromptTemplate(
    header_prefix="<|im_start|>",
    header_suffix="\r",
    end_of_content="<|im_end|>\r",
    stops=("<|im_end|>",),
)

GEMMA2 = PromptTemplate(
    header_prefix="<start_of_turn>",
    header_suffix="\n",
    end_of_content="<end_of_turn>\n",
    stops=("<end_of_turn>",),
)

_TEMPLATE_REGISTRY: dict[str, PromptTemplate] = {
    "qwen": QWEN,
    "llama3": LLAMA3,
    "hermes2pro_llama3": HERMES2PRO_LLAMA3,
    "gemma2": GEMMA2,
}


def get_template(model_family: str) -> PromptTemplate:
    """
    Get the prompt template for a model family.

    Raises:
        ValueError: If the model family is not registered.
    """
    if model_family not in _TEMPLATE_REGISTRY:
        available = ", ".join(_TEMPLATE_REGISTRY.keys())
        raise ValueError(f"Unknown model family: {model_family!r}. Available: {available}")
    return _TEMPLATE_REGISTRY[model_family]


def register_template(model_family: str, template: PromptTemplate) -> None:
    _TEMPLATE_REGISTRY[model_family] = template


def list_templates() -> list[str]:
    """Return list of registered model family names."""
    return list(_TEMPLATE_REGISTRY.keys())
