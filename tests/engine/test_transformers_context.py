import pytest

torch = pytest.importorskip("torch", reason="torch not installed")

from lua_llama.engine.adapters.base import DecodeError  # noqa: E402
from lua_llama.engine.adapters.transformers import TransformersAdapter, TransformersContext  # noqa: E402
from lua_llama.engine.batch import Batch  # noqa: E402


def test_batch_size_is_clamped_to_context() -> None:
    ctx = TransformersContext(TransformersAdapter(), n_ctx=8, n_batch=512)
    assert ctx.n_batch == 8
    assert ctx.n_past == 0


def test_decode_rejects_empty_batch() -> None:
    ctx = TransformersContext(TransformersAdapter(), n_ctx=8, n_batch=4)
    with pytest.raises(DecodeError, match="empty"):
        ctx.decode(Batch(4))


def test_decode_rejects_gap_in_positions() -> None:
    ctx = TransformersContext(TransformersAdapter(), n_ctx=8, n_batch=4)
    batch = Batch(4)
    batch.add(5, 3)
    with pytest.raises(DecodeError, match="do not continue"):
        ctx.decode(batch)


def test_logits_must_be_requested() -> None:
    ctx = TransformersContext(TransformersAdapter(), n_ctx=8, n_batch=4)
    with pytest.raises(DecodeError):
        ctx.logits(0)


def test_unloaded_adapter_refuses_work() -> None:
    adapter = TransformersAdapter()
    assert adapter.eos_token_id is None
    assert adapter.model_info["loaded"] is False
    with pytest.raises(RuntimeError, match="not loaded"):
        adapter.tokenize("hi", add_bos=False)


def test_backend_lookup_builds_unloaded_adapters() -> None:
    from lua_llama.engine.adapters import get_adapter, list_backends, register_adapter

    assert "transformers" in list_backends()
    assert isinstance(get_adapter("transformers"), TransformersAdapter)
    with pytest.raises(ValueError, match="No inference backend"):
        get_adapter("llama.cpp")
    with pytest.raises(TypeError):
        register_adapter("bogus", object)
