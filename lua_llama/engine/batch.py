"""Bounded decode batch."""

from __future__ import annotations

from dataclasses import dataclass

from .adapters.base import DecodeError


class BatchFullError(DecodeError):
    pass


@dataclass(frozen=True)
class BatchEntry:
    token: int
    position: int
    seq_ids: tuple[int, ...]
    logits: bool


class Batch:
    """Ordered (token, position, seq_ids, logits) entries for one decode call.

    Capacity is the engine's maximum batch size; the batch is cleared and
    refilled for every submission.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"Batch capacity must be >= 1, got {capacity}")
        self._capacity = int(capacity)
        self._entries: list[BatchEntry] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def n_tokens(self) -> int:
        return len(self._entries)

    @property
    def is_full(self) -> bool:
        return len(self._entries) >= self._capacity

    @property
    def entries(self) -> tuple[BatchEntry, ...]:
        return tuple(self._entries)

    @property
    def tokens(self) -> list[int]:
        return [e.token for e in self._entries]

    @property
    def positions(self) -> list[int]:
        return [e.position for e in self._entries]

    def add(self, token: int, position: int, seq_ids: tuple[int, ...] = (0,), logits: bool = False) -> None:
        if self.is_full:
            raise BatchFullError(f"Batch is full (capacity={self._capacity}).")
        self._entries.append(BatchEntry(int(token), int(position), tuple(seq_ids), bool(logits)))

    def clear(self) -> None:
        self._entries.clear()

    def logits_indices(self) -> list[int]:
        return [i for i, e in enumerate(self._entries) if e.logits]

    def __len__(self) -> int:
        return len(self._entries)
