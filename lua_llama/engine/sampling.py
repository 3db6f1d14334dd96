"""Token sampling policies over a logits vector."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .chat_types import Greedy, Sampling, Temperature, TopP

if TYPE_CHECKING:
    import torch


def _sanitize_probs(probs: torch.Tensor) -> torch.Tensor | None:
    """Replace NaN/Inf/negative entries; None when nothing usable remains."""
    import torch

    if not (torch.isnan(probs).any() or torch.isinf(probs).any() or (probs < 0).any()):
        return probs
    probs = torch.nan_to_num(probs, nan=0.0, posinf=0.0, neginf=0.0)
    probs = torch.clamp(probs, min=0.0)
    z = probs.sum()
    if z <= 0:
        return None
    return probs / z


def _softmax(logits: torch.Tensor, temperature: float = 1.0) -> torch.Tensor:
    import torch

    # Numerical stability: compute softmax in fp32 to avoid overflow
    # that can occur with fp16 logits and low temperature.
    return torch.softmax(logits.float() / float(temperature), dim=-1)


def _greedy(logits: torch.Tensor) -> int:
    import torch

    return int(torch.argmax(logits, dim=-1).item())


def _multinomial(probs: torch.Tensor, generator: torch.Generator | None) -> int:
    import torch

    return int(torch.multinomial(probs, 1, generator=generator).item())


def _top_p_probs(probs: torch.Tensor, p: float, min_keep: int) -> torch.Tensor:
    import torch

    sorted_probs, sorted_idx = torch.sort(probs, descending=True)
    cumulative = torch.cumsum(sorted_probs, dim=-1)
    # Keep every token whose preceding mass is still below p.
    keep = (cumulative - sorted_probs) < p
    keep[: min(min_keep, keep.numel())] = True

    filtered = torch.zeros_like(probs)
    filtered[sorted_idx[keep]] = sorted_probs[keep]
    return filtered / filtered.sum()


def sample_token(
    logits: torch.Tensor,
    sampling: Sampling | None = None,
    *,
    generator: torch.Generator | None = None,
) -> int:
    """Sample one token id from a 1-D logits vector.

    Args:
        logits: Logits for a single position, shape (vocab_size,).
        sampling: Greedy (default), Temperature(t) or TopP(p, min_keep).
        generator: Optional torch RNG for reproducible sampling.

    Raises:
        ValueError: On invalid sampling parameters.
    """
    if logits.dim() != 1:
        logits = logits.reshape(-1)

    if sampling is None or isinstance(sampling, Greedy):
        return _greedy(logits)

    if isinstance(sampling, Temperature):
        t = sampling.temperature
        if t is None or t < 0:
            raise ValueError(f"Temperature must be >= 0, got {t}")
        if t == 0:
            return _greedy(logits)
        probs = _sanitize_probs(_softmax(logits, t))
        if probs is None:
            return _greedy(logits)
        return _multinomial(probs, generator)

    if isinstance(sampling, TopP):
        if not (0.0 < sampling.p <= 1.0):
            raise ValueError(f"top_p must be in (0, 1], got {sampling.p}")
        if sampling.min_keep < 1:
            raise ValueError(f"min_keep must be >= 1, got {sampling.min_keep}")
        probs = _sanitize_probs(_softmax(logits))
        if probs is None:
            return _greedy(logits)
        return _multinomial(_top_p_probs(probs, sampling.p, sampling.min_keep), generator)

    raise ValueError(f"Unknown sampling policy: {sampling!r}")
