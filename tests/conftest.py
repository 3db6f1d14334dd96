import os
import sys
from collections import deque

import pytest


# Ensure the repository root is on sys.path so tests can import local entrypoints
# like apps.cli.main without requiring an editable install.
_REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from lua_llama.engine.adapters.base import (  # noqa: E402
    BaseAdapter,
    BaseEngineContext,
    DecodeError,
    IncrementalDecoder,
    TokenizationError,
)

BOS = 1
EOS = 2
_PROMPT_OFFSET = 1000
_PIECE_OFFSET = 10


class FakeEngineContext(BaseEngineContext):
    """Records decode calls; logits come from the adapter's scripted reply."""

    def __init__(self, adapter, n_ctx, n_batch):
        self.adapter = adapter
        self._n_ctx = n_ctx
        self._n_batch = n_batch
        self._n_past = 0
        self.decodes = []  # list of (tokens, positions)
        self.clears = 0
        self.fail_next = None

    @property
    def n_ctx(self):
        return self._n_ctx

    @property
    def n_batch(self):
        return self._n_batch

    @property
    def n_past(self):
        return self._n_past

    def decode(self, batch):
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc
        if batch.n_tokens == 0:
            raise DecodeError("Cannot decode an empty batch.")
        if batch.positions != list(range(self._n_past, self._n_past + batch.n_tokens)):
            raise DecodeError("non-contiguous positions")
        if self._n_past + batch.n_tokens > self._n_ctx:
            raise DecodeError("Context exhausted")
        self.decodes.append((batch.tokens, batch.positions))
        self._n_past += batch.n_tokens

    def logits(self, index):
        import torch

        token = self.adapter.next_scripted()
        logits = torch.zeros(max(token + 1, _PIECE_OFFSET + len(self.adapter.pieces) + 1))
        logits[token] = 1.0
        return logits

    def clear_cache(self):
        self.clears += 1
        self._n_past = 0

    @property
    def all_tokens(self):
        return [t for tokens, _ in self.decodes for t in tokens]


class FakeAdapter(BaseAdapter):
    """Char-level prompt tokenizer plus a queue of scripted reply pieces.

    Prompt characters map to ids >= 1000; reply pieces get ids from 10 up and
    decode to their text. When the script runs out, EOS is produced.
    """

    def __init__(self):
        self.pieces = []
        self._script = deque()
        self.contexts = []
        self.tokenized = []

    def load(self, model_path, **kwargs):
        pass

    def script(self, *pieces, eos=True):
        for piece in pieces:
            if piece not in self.pieces:
                self.pieces.append(piece)
            self._script.append(_PIECE_OFFSET + self.pieces.index(piece))
        if eos:
            self._script.append(EOS)

    def next_scripted(self):
        return self._script.popleft() if self._script else EOS

    @property
    def pending(self):
        return len(self._script)

    def tokenize(self, text, add_bos):
        if "\x00" in text:
            raise TokenizationError("NUL byte in prompt")
        self.tokenized.append((text, add_bos))
        return ([BOS] if add_bos else []) + [_PROMPT_OFFSET + ord(c) for c in text]

    def _decode(self, ids):
        out = []
        for i in ids:
            if i >= _PROMPT_OFFSET:
                out.append(chr(i - _PROMPT_OFFSET))
            elif i >= _PIECE_OFFSET:
                out.append(self.pieces[i - _PIECE_OFFSET])
        return "".join(out)

    def new_detokenizer(self):
        return IncrementalDecoder(self._decode)

    @property
    def eos_token_id(self):
        return EOS

    def new_context(self, *, n_ctx, n_batch):
        ctx = FakeEngineContext(self, n_ctx, n_batch)
        self.contexts.append(ctx)
        return ctx

    def encode_text(self, text):
        return [_PROMPT_OFFSET + ord(c) for c in text]


@pytest.fixture
def fake_adapter():
    return FakeAdapter()
