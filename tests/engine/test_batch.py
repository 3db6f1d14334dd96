import pytest

from lua_llama.engine.adapters.base import DecodeError, IncrementalDecoder
from lua_llama.engine.batch import Batch, BatchFullError


def test_batch_add_and_clear() -> None:
    batch = Batch(3)
    batch.add(5, 0)
    batch.add(6, 1, logits=True)
    assert batch.n_tokens == 2
    assert batch.tokens == [5, 6]
    assert batch.positions == [0, 1]
    assert batch.logits_indices() == [1]
    assert not batch.is_full

    batch.clear()
    assert len(batch) == 0


def test_batch_overflow_raises_decode_error() -> None:
    batch = Batch(1)
    batch.add(1, 0)
    assert batch.is_full
    with pytest.raises(BatchFullError):
        batch.add(2, 1)
    assert issubclass(BatchFullError, DecodeError)


def test_batch_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Batch(0)


def test_incremental_decoder_holds_back_incomplete_characters() -> None:
    raw = "é".encode("utf-8")  # two bytes -> two fake tokens
    table = {1: raw[:1], 2: raw[1:], 3: b"!"}

    def decode(ids):
        return b"".join(table[i] for i in ids).decode("utf-8", errors="replace")

    dec = IncrementalDecoder(decode)
    assert dec.push(1) == ""
    assert dec.push(2) == "é"
    assert dec.push(3) == "!"


def test_incremental_decoder_resets_after_newline() -> None:
    table = {1: "a\n", 2: "b"}
    seen = []

    def decode(ids):
        seen.append(list(ids))
        return "".join(table[i] for i in ids)

    dec = IncrementalDecoder(decode)
    assert dec.push(1) == "a\n"
    assert dec.push(2) == "b"
    assert seen[-1] == [2]
