"""Hashing embedding adapter.

A deterministic, dependency-light text-to-vector mapping. It is not a
semantic embedding: it ignores context and synonyms and only sees word
order through the position offset. The Redis and MariaDB stores need it
so that insert-time and query-time vectors always agree.
"""

from __future__ import annotations

import numpy as np

from contracts.embedding import EmbeddingAdapter

DEFAULT_DIMENSIONS = 384


def simple_text_embedding(text: str, dimensions: int = DEFAULT_DIMENSIONS) -> list[float]:
    """Map *text* to an L2-normalised vector of length *dimensions*.

    Each character of the word at position ``idx`` adds ``ord(ch) / 1000``
    to slot ``(ord(ch) + idx) % dimensions``. An all-zero vector (empty or
    whitespace-only input) is returned unnormalised.
    """
    if dimensions <= 0:
        raise ValueError(f"dimensions must be positive, got {dimensions}")

    vector = np.zeros(dimensions, dtype=np.float64)
    for idx, word in enumerate(text.lower().split()):
        for ch in word:
            code = ord(ch)
            vector[(code + idx) % dimensions] += code / 1000

    magnitude = float(np.linalg.norm(vector))
    if magnitude > 0:
        vector = vector / magnitude
    return vector.tolist()


def to_float32_bytes(vector: list[float]) -> bytes:
    """Pack a vector as little-endian float32, the layout Redis expects."""
    return np.asarray(vector, dtype="<f4").tobytes()


class HashingEmbeddingAdapter(EmbeddingAdapter):
    """Embedding adapter backed by :func:`simple_text_embedding`."""

    def __init__(self, dimensions: int = DEFAULT_DIMENSIONS) -> None:
        self.dimensions = dimensions

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [simple_text_embedding(t, self.dimensions) for t in texts]

    def model_name(self) -> str:
        return f"hashing-{self.dimensions}"
