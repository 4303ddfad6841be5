"""Embedding adapter contracts.

Defines the abstract interface for embedding generation backends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class EmbeddingAdapter(ABC):
    """Abstract base class for embedding generation backends."""

    dimensions: int

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a list of texts."""
        ...

    @abstractmethod
    def model_name(self) -> str:
        """Return the name of the embedding model."""
        ...
