"""Chat contexts: conversation state bound to one engine context.

Two strategies keep the engine's KV cache in sync with the conversation:

- `ContinuousContext` appends each new turn to the cache and never
  re-evaluates earlier tokens.
- `FullRebuildContext` clears the cache and re-encodes the whole history on
  every submission.

Both hand generation to a `DecodeStream` that holds the context's exclusive
claim until it finishes.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from .adapters.base import BaseAdapter, DecodeError, TokenizationError
from .batch import Batch
from .chat_types import ChatRequest, Full, Once, Role, Sampling, Turn
from .sampling import sample_token
from .stream import DecodeStream
from .templates import PromptTemplate

logger = logging.getLogger(__name__)


class UnsupportedOperation(RuntimeError):
    """The context strategy does not support this kind of request."""


class ContextBusyError(RuntimeError):
    """A decode stream is still live on this context."""


@dataclass(frozen=True)
class ContextConfig:
    """Static configuration of a chat context."""

    n_ctx: int = 2048
    n_batch: int = 512
    # Upper bound on generated tokens per turn (None = until stop/EOS/n_ctx).
    max_tokens: int | None = None

    def __post_init__(self) -> None:
        if self.n_ctx < 1:
            raise ValueError(f"n_ctx must be >= 1, got {self.n_ctx}")
        if self.n_batch < 1:
            raise ValueError(f"n_batch must be >= 1, got {self.n_batch}")
        if self.max_tokens is not None and self.max_tokens < 1:
            raise ValueError(f"max_tokens must be >= 1, got {self.max_tokens}")


class ChatContext(ABC):
    """Conversation state plus the engine context it drives."""

    def __init__(
        self,
        adapter: BaseAdapter,
        template: PromptTemplate,
        config: ContextConfig | None = None,
    ) -> None:
        self._adapter = adapter
        self._template = template
        self._config = config or ContextConfig()
        self._engine = adapter.new_context(n_ctx=self._config.n_ctx, n_batch=self._config.n_batch)
        self._batch = Batch(self._engine.n_batch)
        self._cursor = 0
        self._stream: DecodeStream | None = None

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def adapter(self) -> BaseAdapter:
        return self._adapter

    @property
    def template(self) -> PromptTemplate:
        return self._template

    @property
    def config(self) -> ContextConfig:
        return self._config

    @property
    def cursor(self) -> int:
        """Next position to be written in the engine context."""
        return self._cursor

    @property
    def busy(self) -> bool:
        return self._stream is not None

    @property
    @abstractmethod
    def turns(self) -> list[Turn]:
        """Turns known to the context before any submission."""

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def chat(self, request: ChatRequest) -> DecodeStream:
        """
        Submit `request` and return the stream generating the reply.

        Raises:
            ContextBusyError: If a previous stream has not finished.
            UnsupportedOperation: If the strategy does not handle the request.
        """
        self._ensure_idle()
        if not isinstance(request, (Once, Full)):
            raise TypeError(f"Unsupported chat request: {type(request).__name__}")
        self._check_request(request)

        try:
            self._submit(request)
        except (TokenizationError, DecodeError) as exc:
            logger.warning("Submission failed: %s", exc)
            self._discard_pending()
            stream = DecodeStream(self, sampling=request.sampling, error=exc)
        else:
            stream = DecodeStream(self, sampling=request.sampling, max_tokens=self._config.max_tokens)
        self._stream = stream
        return stream

    def submit_turn(self, turn: Turn, sampling: Sampling | None = None) -> DecodeStream:
        """Shorthand for `chat(Once(turn, sampling))`."""
        if sampling is None:
            return self.chat(Once(turn))
        return self.chat(Once(turn, sampling))

    @abstractmethod
    def last_response(self, stream: DecodeStream) -> str:
        """Full text of the assistant turn produced by a finished `stream`."""

    @abstractmethod
    def replace_initial_turns(self, turns: Sequence[Turn]) -> None:
        """Swap the turns reported by `turns` before the first submission."""

    # -------------------------------------------------------------------------
    # Strategy hooks
    # -------------------------------------------------------------------------

    def _check_request(self, request: ChatRequest) -> None:
        """Reject requests before any state is touched."""

    @abstractmethod
    def _submit(self, request: ChatRequest) -> None:
        """Tokenize and push the request into the engine context."""

    def _on_stream_finished(self, stream: DecodeStream) -> None:
        """Strategy-specific commit once a stream is done."""

    # -------------------------------------------------------------------------
    # Engine plumbing
    # -------------------------------------------------------------------------

    def _ensure_idle(self) -> None:
        if self._stream is not None:
            raise ContextBusyError("A decode stream is still running on this context.")

    def _push_tokens(self, tokens: Sequence[int]) -> None:
        """Append `tokens` at the cursor, decoding whenever the batch fills up.

        The last token is left in the batch (with logits requested) for the
        stream's first step.
        """
        last = len(tokens) - 1
        for i, token in enumerate(tokens):
            if self._batch.is_full:
                self._flush()
            self._batch.add(token, self._cursor, logits=(i == last))
            self._cursor += 1
            if i != last and self._batch.is_full:
                self._flush()

    def _flush(self) -> None:
        logger.debug("Decoding %d tokens at position %d", self._batch.n_tokens, self._cursor)
        self._engine.decode(self._batch)
        self._batch.clear()

    def _sample_next(self, sampling: Sampling) -> int:
        """Decode the pending batch, sample one token and queue it as the next input."""
        self._engine.decode(self._batch)
        logits = self._engine.logits(self._batch.n_tokens - 1)
        token_id = sample_token(logits, sampling)
        self._batch.clear()
        self._batch.add(token_id, self._cursor, logits=True)
        self._cursor += 1
        return token_id

    def _discard_pending(self) -> None:
        """Drop tokens queued by a failed turn; the cursor falls back to the cache end."""
        logger.debug("Discarding %d queued tokens", self._batch.n_tokens)
        self._batch.clear()
        self._cursor = self._engine.n_past

    def _reset_engine(self) -> None:
        logger.debug("Clearing KV cache")
        self._engine.clear_cache()
        self._batch.clear()
        self._cursor = 0

    def _stream_finished(self, stream: DecodeStream) -> None:
        if stream is not self._stream:
            return
        self._stream = None
        if stream.error is not None:
            self._discard_pending()
        self._on_stream_finished(stream)


class ContinuousContext(ChatContext):
    """
    Incremental strategy: only the newest turn is tokenized and decoded.

    The system prompt is pushed (with BOS) on the first submission, encoded
    without the assistant primer since the new turn follows it directly. The
    token sampled last in a turn stays queued and is decoded together with
    the next submission, so positions remain contiguous.
    """

    def __init__(
        self,
        adapter: BaseAdapter,
        template: PromptTemplate,
        system_prompt: Sequence[Turn] = (),
        config: ContextConfig | None = None,
    ) -> None:
        super().__init__(adapter, template, config)
        self._system_prompt = list(system_prompt)
        self._system_pushed = False

    @property
    def turns(self) -> list[Turn]:
        return list(self._system_prompt)

    @property
    def system_prompt(self) -> list[Turn]:
        return list(self._system_prompt)

    @system_prompt.setter
    def system_prompt(self, turns: Sequence[Turn]) -> None:
        self._ensure_idle()
        if self._system_pushed:
            raise UnsupportedOperation("System prompt is already in the engine context.")
        self._system_prompt = list(turns)

    def replace_initial_turns(self, turns: Sequence[Turn]) -> None:
        self.system_prompt = turns

    def _discard_pending(self) -> None:
        super()._discard_pending()
        if self._engine.n_past == 0:
            self._system_pushed = False

    def _check_request(self, request: ChatRequest) -> None:
        if isinstance(request, Full):
            raise UnsupportedOperation("ContinuousContext cannot replace the whole conversation.")

    def _submit(self, request: ChatRequest) -> None:
        tokens: list[int] = []
        first = not self._system_pushed
        if first and self._system_prompt:
            # The preamble is followed by the new turn, so it is not primed.
            tokens += self._adapter.tokenize(
                self._template.encode(self._system_prompt, prime=False), add_bos=True
            )
        tokens += self._adapter.tokenize(
            self._template.encode([request.turn]),
            add_bos=first and not self._system_prompt,
        )
        self._system_pushed = True
        self._push_tokens(tokens)

    def last_response(self, stream: DecodeStream) -> str:
        return stream.text


class FullRebuildContext(ChatContext):
    """
    Rebuild strategy: the full history is re-encoded on every submission.

    Finished turns are committed to the history as assistant turns, so the
    next submission sees them.
    """

    def __init__(
        self,
        adapter: BaseAdapter,
        template: PromptTemplate,
        history: Sequence[Turn] = (),
        config: ContextConfig | None = None,
    ) -> None:
        super().__init__(adapter, template, config)
        self._history: list[Turn] = list(history)

    @property
    def turns(self) -> list[Turn]:
        return list(self._history)

    @property
    def history(self) -> list[Turn]:
        return list(self._history)

    def add_turn(self, turn: Turn) -> None:
        """Append a turn without generating a reply."""
        self._ensure_idle()
        self._history.append(turn)

    def replace_turns(self, turns: Sequence[Turn]) -> None:
        self._ensure_idle()
        self._history = list(turns)

    def replace_initial_turns(self, turns: Sequence[Turn]) -> None:
        self.replace_turns(turns)

    def _submit(self, request: ChatRequest) -> None:
        self._reset_engine()
        if isinstance(request, Full):
            history = list(request.turns)
        else:
            history = [*self._history, request.turn]
        tokens = self._adapter.tokenize(self._template.encode(history), add_bos=True)
        # History only changes once the new transcript tokenized cleanly.
        self._history = history
        self._push_tokens(tokens)

    def _on_stream_finished(self, stream: DecodeStream) -> None:
        if stream.error is not None:
            return
        self._history.append(Turn(Role.ASSISTANT, stream.text))

    def last_response(self, stream: DecodeStream) -> str:
        if stream.error is None and self._history and self._history[-1].role == Role.ASSISTANT:
            return self._history[-1].message
        return stream.text
