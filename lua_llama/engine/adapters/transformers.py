"""Adapter for Hugging Face Transformers causal language models."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .base import BaseAdapter, BaseEngineContext, DecodeError, IncrementalDecoder, TokenizationError

if TYPE_CHECKING:
    import torch

    from ..batch import Batch

logger = logging.getLogger(__name__)


# =============================================================================
# Engine context
# =============================================================================


class TransformersContext(BaseEngineContext):
    """KV-cache state for one conversation over a shared Transformers model.

    Positions are append-only: every decoded batch must continue exactly
    where the cache ends. `clear_cache()` restarts at position 0.
    """

    def __init__(self, adapter: TransformersAdapter, *, n_ctx: int, n_batch: int) -> None:
        if n_ctx < 1:
            raise ValueError(f"n_ctx must be >= 1, got {n_ctx}")
        if n_batch < 1:
            raise ValueError(f"n_batch must be >= 1, got {n_batch}")
        self._adapter = adapter
        self._n_ctx = int(n_ctx)
        self._n_batch = int(min(n_batch, n_ctx))
        self._past_key_values: Any = None
        self._n_past = 0
        self._logits: dict[int, torch.Tensor] = {}

    @property
    def n_ctx(self) -> int:
        return self._n_ctx

    @property
    def n_batch(self) -> int:
        return self._n_batch

    @property
    def n_past(self) -> int:
        return self._n_past

    def decode(self, batch: Batch) -> None:
        import torch

        n = batch.n_tokens
        if n == 0:
            raise DecodeError("Cannot decode an empty batch.")
        if n > self._n_batch:
            raise DecodeError(f"Batch of {n} tokens exceeds n_batch={self._n_batch}.")

        positions = batch.positions
        expected = list(range(self._n_past, self._n_past + n))
        if positions != expected:
            raise DecodeError(
                f"Batch positions {positions[0]}..{positions[-1]} do not continue the KV cache "
                f"(n_past={self._n_past})."
            )
        if any(e.seq_ids != (0,) for e in batch.entries):
            raise DecodeError("Only sequence id 0 is supported.")
        if self._n_past + n > self._n_ctx:
            raise DecodeError(
                f"Context exhausted: {self._n_past + n} tokens exceed n_ctx={self._n_ctx}."
            )

        model = self._adapter.model
        device = model.device
        if self._past_key_values is None:
            from transformers import DynamicCache

            self._past_key_values = DynamicCache()

        input_ids = torch.tensor([batch.tokens], dtype=torch.long, device=device)
        cache_position = torch.arange(self._n_past, self._n_past + n, device=device)

        try:
            with torch.no_grad():
                outputs = model(
                    input_ids=input_ids,
                    past_key_values=self._past_key_values,
                    cache_position=cache_position,
                    position_ids=cache_position.unsqueeze(0),
                    use_cache=True,
                )
        except Exception as exc:
            raise DecodeError(f"Model forward pass failed: {exc}") from exc

        self._past_key_values = outputs.past_key_values
        self._n_past += n
        self._logits = {i: outputs.logits[0, i, :].detach() for i in batch.logits_indices()}

    def logits(self, index: int) -> torch.Tensor:
        try:
            return self._logits[index]
        except KeyError:
            raise DecodeError(f"Logits were not requested for batch index {index}.") from None

    def clear_cache(self) -> None:
        self._past_key_values = None
        self._n_past = 0
        self._logits = {}


# =============================================================================
# Adapter
# =============================================================================


class TransformersAdapter(BaseAdapter):
    """
    Adapter for Transformers causal LMs.

    The adapter is the shared engine handle: one model and tokenizer, any
    number of `TransformersContext` objects each owning their own KV cache.

    Thread Safety:
        This adapter is NOT thread-safe. Do not decode concurrently from
        multiple threads on contexts of the same adapter.

    Example:
        >>> adapter = TransformersAdapter()
        >>> adapter.load("Qwen/Qwen2.5-0.5B-Instruct", device="cpu")
        >>> ctx = adapter.new_context(n_ctx=2048, n_batch=512)
    """

    def __init__(self) -> None:
        self._model = None
        self._tokenizer = None
        self._model_path: str | None = None
        self._device: str = "cpu"
        self._dtype = None

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def model(self):
        """Access the underlying model."""
        self._ensure_loaded()
        return self._model

    @property
    def tokenizer(self):
        """Access the tokenizer."""
        self._ensure_loaded()
        return self._tokenizer

    @property
    def eos_token_id(self) -> int | None:
        """EOS token ID, or None if tokenizer not loaded."""
        if self._tokenizer is None:
            return None
        return self._tokenizer.eos_token_id

    @property
    def model_info(self) -> dict[str, Any]:
        return {
            "model_path": self._model_path,
            "device": self._device,
            "dtype": str(self._dtype),
            "loaded": self._model is not None,
        }

    # -------------------------------------------------------------------------
    # Loading / Unloading
    # -------------------------------------------------------------------------

    def load(self, model_path: str, **kwargs) -> None:
        """Load a causal LM and its tokenizer.

        Args:
            model_path: Path to the model (local or HF hub).
            device: Device / device_map to load the model on (default: "cpu").
            dtype: Torch dtype (default: torch.float32 on CPU, float16 otherwise).
            trust_remote_code: Allow custom modeling code (default: False).
            **kwargs: Additional kwargs passed to from_pretrained().
        """
        import torch
        from transformers import AutoModelForCausalLM, AutoTokenizer

        self._model_path = model_path
        self._device = kwargs.pop("device", "cpu")
        default_dtype = torch.float32 if str(self._device) == "cpu" else torch.float16
        self._dtype = kwargs.pop("dtype", default_dtype)
        trust_remote_code = kwargs.pop("trust_remote_code", False)

        logger.info("Loading %s on %s (%s)", model_path, self._device, self._dtype)
        self._tokenizer = AutoTokenizer.from_pretrained(
            model_path,
            trust_remote_code=trust_remote_code,
        )
        self._model = AutoModelForCausalLM.from_pretrained(
            model_path,
            torch_dtype=self._dtype,
            device_map=self._device,
            trust_remote_code=trust_remote_code,
            **kwargs,
        )
        self._model.eval()

    def unload(self) -> None:
        """Unload the model and free accelerator memory."""
        import gc
        import torch

        del self._model
        del self._tokenizer
        self._model = None
        self._tokenizer = None

        gc.collect()
        if torch.cuda.is_available():
            torch.cuda.empty_cache()

    # -------------------------------------------------------------------------
    # Tokenization
    # -------------------------------------------------------------------------

    def tokenize(self, text: str, add_bos: bool) -> list[int]:
        tokenizer = self.tokenizer
        try:
            ids = list(tokenizer.encode(text, add_special_tokens=False))
        except Exception as exc:
            raise TokenizationError(f"Failed to tokenize input: {exc}") from exc

        bos = tokenizer.bos_token_id
        if add_bos and bos is not None and (not ids or ids[0] != bos):
            ids.insert(0, int(bos))
        return [int(i) for i in ids]

    def new_detokenizer(self) -> IncrementalDecoder:
        tokenizer = self.tokenizer

        def _decode(ids: list[int]) -> str:
            # Special tokens are rendered so that template stops stay visible.
            return tokenizer.decode(ids, skip_special_tokens=False)

        return IncrementalDecoder(_decode)

    # -------------------------------------------------------------------------
    # Contexts
    # -------------------------------------------------------------------------

    def new_context(self, *, n_ctx: int, n_batch: int) -> TransformersContext:
        self._ensure_loaded()
        max_positions = getattr(self._model.config, "max_position_embeddings", None)
        if isinstance(max_positions, int) and n_ctx > max_positions:
            logger.warning(
                "n_ctx=%d exceeds the model's max_position_embeddings=%d", n_ctx, max_positions
            )
        return TransformersContext(self, n_ctx=n_ctx, n_batch=n_batch)

    def _ensure_loaded(self) -> None:
        if self._model is None or self._tokenizer is None:
            raise RuntimeError("Model not loaded. Call load() first.")
