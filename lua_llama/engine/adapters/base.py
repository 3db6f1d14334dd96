"""Base interface for inference-engine backends.

The chat core talks to the engine through two objects:

- an adapter (the shared engine handle): model + tokenizer, loaded once and
  shared read-only by every context derived from it;
- an engine context: the per-conversation native state (KV cache, batch
  capacity, logits of the last decode).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    import torch

    from ..batch import Batch


class EngineError(RuntimeError):
    """Engine-level failure; fatal to the current turn only."""


class TokenizationError(EngineError):
    pass


class DecodeError(EngineError):
    pass


class IncrementalDecoder:
    """Stateful token -> text decoder for one turn.

    Multi-byte characters may be split across tokens; text ending in an
    incomplete sequence (decoded as U+FFFD) is held back until a later token
    completes it. The window restarts after each newline so decoding stays
    cheap on long turns.
    """

    def __init__(self, decode: Callable[[list[int]], str]) -> None:
        self._decode = decode
        self._ids: list[int] = []
        self._emitted = 0

    def push(self, token_id: int) -> str:
        self._ids.append(int(token_id))
        text = self._decode(self._ids)
        if text.endswith("\ufffd"):
            return ""

        piece = text[self._emitted :]
        if text.endswith("\n"):
            self._ids = []
            self._emitted = 0
        else:
            self._emitted = len(text)
        return piece


class BaseEngineContext(ABC):
    """Per-conversation native decode state.

    Not thread-safe and not reentrant: exactly one chat context drives it.
    """

    @property
    @abstractmethod
    def n_ctx(self) -> int:
        """Maximum number of positions the KV cache can hold."""

    @property
    @abstractmethod
    def n_batch(self) -> int:
        """Maximum number of tokens accepted by one `decode()` call."""

    @property
    @abstractmethod
    def n_past(self) -> int:
        """Number of positions currently held in the KV cache."""

    @abstractmethod
    def decode(self, batch: Batch) -> None:
        """
        Run the model over `batch`, appending its tokens to the KV cache.

        Raises:
            DecodeError: On engine failure (e.g. context exhausted).
        """

    @abstractmethod
    def logits(self, index: int) -> torch.Tensor:
        """
        Logits for batch entry `index` of the last decode.

        Raises:
            DecodeError: If logits were not requested for that entry.
        """

    @abstractmethod
    def clear_cache(self) -> None:
        """Drop the KV cache (positions restart at 0)."""


class BaseAdapter(ABC):
    """
    Abstract base class for inference backends.

    Each supported backend implements this interface so the chat core can run
    without knowing model-specific details.
    """

    @abstractmethod
    def load(self, model_path: str, **kwargs) -> None:
        """
        Load model and tokenizer from the given path or HF repo.

        Args:
            model_path: Local path or HF Hub model identifier.
            **kwargs: Backend-specific loading options (dtype, device, etc.).
        """

    @abstractmethod
    def tokenize(self, text: str, add_bos: bool) -> list[int]:
        """
        Tokenize `text`, optionally prepending the BOS marker.

        Raises:
            TokenizationError: If the text cannot be tokenized.
        """

    @abstractmethod
    def new_detokenizer(self) -> IncrementalDecoder:
        """Fresh incremental decoder (one per turn)."""

    @property
    @abstractmethod
    def eos_token_id(self) -> int | None:
        """End-of-sequence token id."""

    @abstractmethod
    def new_context(self, *, n_ctx: int, n_batch: int) -> BaseEngineContext:
        """Create per-conversation decode state sharing this adapter's model."""

    @property
    def model_info(self) -> dict[str, Any]:
        """Metadata about the loaded model."""
        return {}

    def unload(self) -> None:
        """
        Unload the model and free resources.

        Default implementation does nothing; override if cleanup is needed.
        """
