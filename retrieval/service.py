"""Retrieval service — the stable entry point used by the HTTP layer.

Every operation resolves the active store through the factory first, so
a changed backend configuration takes effect on the next call.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from contracts.vector_store import (
    DEFAULT_N_RESULTS,
    CollectionInfo,
    Document,
    SearchResult,
    VectorStore,
)
from retrieval.factory import StoreFactory, available_stores


class RetrievalService:
    """Delegates the store contract to whichever backend the factory holds."""

    def __init__(self, factory: StoreFactory | None = None) -> None:
        self._factory = factory or StoreFactory()

    @property
    def factory(self) -> StoreFactory:
        return self._factory

    async def store(self) -> VectorStore:
        return await self._factory.get_instance()

    async def health_check(self) -> bool:
        """Resolve the store and probe it; any failure reads as unhealthy."""
        try:
            store = await self.store()
            return await store.health_check()
        except Exception:
            return False

    async def get_or_create_collection(self) -> CollectionInfo:
        store = await self.store()
        return await store.get_or_create_collection()

    async def add_documents(self, documents: list[Document]) -> None:
        store = await self.store()
        await store.add_documents(documents)

    async def query_documents(
        self, query: str, n_results: int = DEFAULT_N_RESULTS
    ) -> SearchResult:
        if n_results < 1:
            raise ValueError(f"n_results must be a positive integer, got {n_results}")
        store = await self.store()
        return await store.query_documents(query, n_results)

    async def clear_collection(self) -> None:
        store = await self.store()
        await store.clear_collection()

    def store_info(self) -> dict[str, Any]:
        """Configured vs. active backend plus the catalogue of backends."""
        configured = self._factory.configured_type()
        descriptors = available_stores()
        return {
            "configured_type": configured.value,
            "active_type": (
                self._factory.current_type.value if self._factory.current_type else None
            ),
            "current_store": next(
                (d.model_dump(mode="json") for d in descriptors if d.type == configured),
                None,
            ),
            "available_stores": [d.model_dump(mode="json") for d in descriptors],
        }

    async def close(self) -> None:
        await self._factory.reset()


@lru_cache(maxsize=1)
def default_service() -> RetrievalService:
    """Process-wide service configured from the environment."""
    return RetrievalService()
