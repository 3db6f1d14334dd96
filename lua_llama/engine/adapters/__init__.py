# Inference-engine backends
#
# Each backend implements a common interface for:
#   - Loading model + tokenizer (the shared engine handle)
#   - Tokenizing / incrementally detokenizing
#   - Creating per-conversation contexts (KV cache + batched decode)
#
# The chat core uses adapters to stay backend-agnostic; the CLI picks one by
# name with `--backend`.

from __future__ import annotations

from .base import BaseAdapter, BaseEngineContext, DecodeError, EngineError, IncrementalDecoder, TokenizationError
from .transformers import TransformersAdapter

_BACKENDS: dict[str, type[BaseAdapter]] = {
    "transformers": TransformersAdapter,
}


def get_adapter(backend: str) -> BaseAdapter:
    """Fresh, unloaded engine handle for `backend`."""
    try:
        adapter_cls = _BACKENDS[backend]
    except KeyError:
        raise ValueError(f"No inference backend named {backend!r} (have: {', '.join(_BACKENDS)})") from None
    return adapter_cls()


def register_adapter(backend: str, adapter_cls: type[BaseAdapter]) -> None:
    if not (isinstance(adapter_cls, type) and issubclass(adapter_cls, BaseAdapter)):
        raise TypeError(f"{adapter_cls!r} is not a BaseAdapter subclass")
    _BACKENDS[backend] = adapter_cls


def list_backends() -> list[str]:
    return sorted(_BACKENDS)


__all__ = [
    "BaseAdapter",
    "BaseEngineContext",
    "DecodeError",
    "EngineError",
    "IncrementalDecoder",
    "TokenizationError",
    "TransformersAdapter",
    "get_adapter",
    "list_backends",
    "register_adapter",
]
