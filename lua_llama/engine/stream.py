"""Decode stream: incremental generation of one assistant turn."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .adapters.base import EngineError
from .chat_types import Greedy, Sampling

if TYPE_CHECKING:
    from .context import ChatContext

logger = logging.getLogger(__name__)

FINISH_REASONS = ("stop", "eos", "length", "error", "closed")


class DecodeStream:
    """
    Iterator over the visible text fragments of one generated turn.

    Each step decodes the pending batch, samples from the logits of its last
    entry, and runs the sampled token through the incremental detokenizer and
    the template's stop filter. A partial stop sequence at the end of the turn
    text is held back until it either completes (and is dropped) or diverges.

    Turn-level engine failures never raise out of iteration: the error
    message is yielded once as the final fragment and recorded in `error`.

    While the stream is live its context is busy; finishing (by exhaustion
    or `close()`) releases it exactly once.

    Example:
        >>> with ctx.chat(Once(Turn(Role.USER, "hi"))) as stream:
        ...     for piece in stream:
        ...         print(piece, end="")
    """

    def __init__(
        self,
        context: ChatContext,
        *,
        sampling: Sampling | None = None,
        max_tokens: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self._context = context
        self._template = context.template
        self._sampling = sampling if sampling is not None else Greedy()
        self._max_tokens = max_tokens
        self._submit_error = error

        self._in_header = self._template.needs_header_skip
        self._header_text = ""
        self._content = ""
        self._emitted = 0
        self._n_generated = 0
        self._detokenizer = context.adapter.new_detokenizer() if error is None else None
        self._eos_token_id = context.adapter.eos_token_id

        self.error: Exception | None = None
        self.finish_reason: str | None = None
        self._finished = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def text(self) -> str:
        """Turn text so far (canonicalized once the stream has finished)."""
        return self._content

    @property
    def n_generated(self) -> int:
        return self._n_generated

    # -------------------------------------------------------------------------
    # Iteration
    # -------------------------------------------------------------------------

    def __iter__(self) -> DecodeStream:
        return self

    def __next__(self) -> str:
        while not self._finished:
            if self._submit_error is not None:
                return self._fail(self._submit_error)

            if self._max_tokens is not None and self._n_generated >= self._max_tokens:
                piece = self._take_rest()
                self._finish("length")
                if piece:
                    return piece
                break

            try:
                token_id = self._context._sample_next(self._sampling)
            except (EngineError, ValueError) as exc:
                return self._fail(exc)
            self._n_generated += 1

            if self._eos_token_id is not None and token_id == self._eos_token_id:
                piece = self._take_rest()
                self._finish("eos")
                if piece:
                    return piece
                break

            piece = self._detokenizer.push(token_id)
            if not piece:
                continue

            if self._in_header:
                self._header_text += piece
                if self._template.header_ended(self._header_text):
                    self._in_header = False
                continue

            if self._template.filter_token(piece, self._content) is None:
                self._content = self._template.content_before_stop(self._content, piece)
                piece = self._take_rest()
                self._finish("stop")
                if piece:
                    return piece
                break

            self._content += piece
            visible = len(self._content) - self._template.pending_stop_length(self._content)
            if visible > self._emitted:
                piece = self._content[self._emitted : visible]
                self._emitted = visible
                return piece

        raise StopIteration

    def _take_rest(self) -> str:
        piece = self._content[self._emitted :]
        self._emitted = max(self._emitted, len(self._content))
        return piece

    def _fail(self, exc: Exception) -> str:
        logger.warning("Generation failed: %s", exc)
        self.error = exc
        self._finish("error")
        return str(exc)

    def _finish(self, reason: str) -> None:
        if self._finished:
            return
        self._finished = True
        self.finish_reason = reason
        if reason != "error":
            self._content = self._template.trim_committed(self._content)
        logger.debug("Stream finished (%s) after %d tokens", reason, self._n_generated)
        self._context._stream_finished(self)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Stop generating and release the context."""
        self._finish("closed")

    def __enter__(self) -> DecodeStream:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def collect(self) -> str:
        """Drain the stream and return the concatenated visible text."""
        return "".join(self)
