"""Chroma vector store.

Talks to a Chroma server over its REST API with httpx. Embeddings are
computed by the server from the raw document and query texts.
"""

from __future__ import annotations

from typing import Any

import httpx

from contracts.audit import AuditEvent, AuditLogger
from contracts.config import ChromaConfig
from contracts.vector_store import (
    DEFAULT_COLLECTION,
    DEFAULT_N_RESULTS,
    CollectionInfo,
    Document,
    QueryExecutionError,
    SchemaError,
    SearchResult,
    StoreConnectionError,
    StoreType,
    VectorStore,
)
from retrieval.audit.logger import log_event


class ChromaVectorStore(VectorStore):
    """Vector store backed by a remote Chroma collection."""

    store_type = StoreType.CHROMA

    def __init__(
        self,
        config: ChromaConfig | None = None,
        collection_name: str = DEFAULT_COLLECTION,
        audit: AuditLogger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        config = config or ChromaConfig()
        self._base_url = config.url.rstrip("/") + "/" + config.api_path.strip("/")
        self._timeout = config.timeout
        self._collection_name = collection_name
        self._collection_id: str | None = None
        self._audit = audit
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        )

    # ── lifecycle ─────────────────────────────────────────────────────

    async def init(self) -> None:
        if not await self.health_check():
            raise StoreConnectionError(f"Chroma server is not running at {self._base_url}")
        await self.get_or_create_collection()
        log_event(
            self._audit,
            AuditEvent.STORE_INIT,
            backend=self.store_type.value,
            collection=self._collection_name,
            url=self._base_url,
        )

    async def health_check(self) -> bool:
        try:
            async with self._client() as client:
                resp = await client.get("/heartbeat")
            return resp.is_success
        except Exception:
            return False

    async def close(self) -> None:
        """Nothing to release; every call opens its own client."""
        self._collection_id = None

    # ── collection ────────────────────────────────────────────────────

    async def get_or_create_collection(self) -> CollectionInfo:
        try:
            async with self._client() as client:
                resp = await client.get(f"/collections/{self._collection_name}")
                if resp.is_success:
                    self._collection_id = resp.json()["id"]
                    count_resp = await client.get(f"/collections/{self._collection_id}/count")
                    count = int(count_resp.json()) if count_resp.is_success else None
                    return CollectionInfo(name=self._collection_name, count=count)

                create_resp = await client.post(
                    "/collections",
                    json={
                        "name": self._collection_name,
                        "metadata": {"description": "CloneWriter document collection"},
                    },
                )
        except httpx.TransportError as exc:
            raise StoreConnectionError(
                f"Cannot reach Chroma at {self._base_url}: {exc}"
            ) from exc

        if not create_resp.is_success:
            raise SchemaError(
                f"Failed to create collection {self._collection_name} "
                f"({create_resp.status_code}): {create_resp.text}"
            )
        self._collection_id = create_resp.json()["id"]
        return CollectionInfo(name=self._collection_name, count=0)

    async def add_documents(self, documents: list[Document]) -> None:
        if not documents:
            return
        collection_id = await self._ensure_collection()
        payload = {
            "ids": [d.id for d in documents],
            "documents": [d.text for d in documents],
            "metadatas": [d.metadata or None for d in documents],
        }
        resp = await self._post(f"/collections/{collection_id}/add", payload)
        if not resp.is_success:
            raise QueryExecutionError(
                f"Failed to add documents ({resp.status_code}): {resp.text}"
            )
        log_event(
            self._audit,
            AuditEvent.DOCUMENTS_ADDED,
            backend=self.store_type.value,
            collection=self._collection_name,
            added=len(documents),
        )

    async def clear_collection(self) -> None:
        # Chroma has no truncate; drop the collection and recreate it empty.
        try:
            async with self._client() as client:
                resp = await client.delete(f"/collections/{self._collection_name}")
        except httpx.TransportError as exc:
            raise StoreConnectionError(
                f"Cannot reach Chroma at {self._base_url}: {exc}"
            ) from exc
        if not resp.is_success:
            raise QueryExecutionError(
                f"Failed to delete collection ({resp.status_code}): {resp.text}"
            )

        self._collection_id = None
        await self.get_or_create_collection()
        log_event(
            self._audit,
            AuditEvent.COLLECTION_CLEARED,
            backend=self.store_type.value,
            collection=self._collection_name,
        )

    # ── query ─────────────────────────────────────────────────────────

    async def query_documents(
        self, query: str, n_results: int = DEFAULT_N_RESULTS
    ) -> SearchResult:
        info = await self.get_or_create_collection()
        if info.count == 0:
            return SearchResult.empty()

        payload = {
            "query_texts": [query],
            "n_results": n_results,
            "include": ["documents", "metadatas", "distances"],
        }
        resp = await self._post(f"/collections/{self._collection_id}/query", payload)
        if not resp.is_success:
            raise QueryExecutionError(
                f"Failed to query documents ({resp.status_code}): {resp.text}"
            )

        # One query text in, so only the first row of each nested array matters.
        data = resp.json()
        documents = _first_row(data.get("documents"))
        metadatas = [m or {} for m in _first_row(data.get("metadatas"))]
        distances = [float(d) for d in _first_row(data.get("distances"))]
        size = min(len(documents), len(metadatas), len(distances), n_results)
        return SearchResult(
            documents=documents[:size],
            metadatas=metadatas[:size],
            distances=distances[:size],
        )

    # ── helpers ───────────────────────────────────────────────────────

    async def _ensure_collection(self) -> str:
        if self._collection_id is None:
            await self.get_or_create_collection()
        assert self._collection_id is not None
        return self._collection_id

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.post(path, json=payload)
        except httpx.TransportError as exc:
            raise StoreConnectionError(
                f"Cannot reach Chroma at {self._base_url}: {exc}"
            ) from exc


def _first_row(nested: list[list[Any]] | None) -> list[Any]:
    if not nested:
        return []
    return list(nested[0] or [])
