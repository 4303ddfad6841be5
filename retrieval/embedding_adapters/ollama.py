"""Ollama embedding adapter.

Proxies embedding requests to a local Ollama instance via httpx, for
deployments that swap the hashing embedding for a real model.
"""

from __future__ import annotations

import httpx

from contracts.embedding import EmbeddingAdapter
from contracts.vector_store import EmbeddingError


class OllamaEmbeddingAdapter(EmbeddingAdapter):
    """Async adapter for the Ollama /api/embed endpoint."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        dimensions: int = 768,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._transport = transport
        self.dimensions = dimensions

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a list of texts via Ollama."""
        payload = {"model": self._model, "input": texts}

        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                resp = await client.post(
                    f"{self._base_url}/api/embed", json=payload
                )
        except httpx.ConnectError as exc:
            raise EmbeddingError(
                f"Cannot connect to Ollama at {self._base_url}: {exc}"
            ) from exc

        if resp.status_code != 200:
            raise EmbeddingError(
                f"Ollama embed request failed ({resp.status_code}): {resp.text}"
            )

        embeddings = resp.json()["embeddings"]
        for emb in embeddings:
            if len(emb) != self.dimensions:
                raise EmbeddingError(
                    f"Model {self._model} returned {len(emb)} dimensions, "
                    f"expected {self.dimensions}"
                )
        return embeddings

    def model_name(self) -> str:
        """Return the name of the embedding model."""
        return self._model
