"""Redis Stack vector store.

Stores each document as a hash under ``{collection}:{id}`` and searches
it through a RediSearch KNN index. Vectors come from the configured
embedding adapter. When the KNN query fails the store degrades to a
linear keyword scan rather than failing the request.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.commands.search.field import TagField, TextField, VectorField
from redis.commands.search.index_definition import IndexDefinition, IndexType
from redis.commands.search.query import Query
from redis.exceptions import RedisError, ResponseError

from contracts.audit import AuditEvent, AuditLogger
from contracts.config import RedisConfig
from contracts.embedding import EmbeddingAdapter
from contracts.vector_store import (
    DEFAULT_COLLECTION,
    DEFAULT_N_RESULTS,
    CollectionInfo,
    Document,
    SchemaError,
    SearchResult,
    StoreConnectionError,
    StoreType,
    VectorStore,
)
from retrieval.audit.logger import log_event
from retrieval.embedding_adapters.hashing import HashingEmbeddingAdapter, to_float32_bytes
from retrieval.scoring import rank_by_overlap

logger = logging.getLogger(__name__)

# Keyword-fallback hits carry no usable distance; every one gets this value.
KEYWORD_FALLBACK_DISTANCE = 0.5

_UNKNOWN_INDEX_MARKERS = ("unknown index name", "no such index", "not found")


class RedisVectorStore(VectorStore):
    """Vector store backed by Redis Stack hashes and a RediSearch index."""

    store_type = StoreType.REDIS

    def __init__(
        self,
        config: RedisConfig | None = None,
        collection_name: str = DEFAULT_COLLECTION,
        embedding: EmbeddingAdapter | None = None,
        audit: AuditLogger | None = None,
        client: Any = None,
    ) -> None:
        self._config = config or RedisConfig()
        self._collection_name = collection_name
        self._prefix = f"{collection_name}:"
        self._index_name = f"{collection_name}_idx"
        self._embedding = embedding or HashingEmbeddingAdapter()
        self._audit = audit
        self._client = client

    @property
    def index_name(self) -> str:
        return self._index_name

    # ── lifecycle ─────────────────────────────────────────────────────

    async def init(self) -> None:
        if self._client is None:
            self._client = aioredis.from_url(self._config.url)
        try:
            await self._client.ping()
        except (RedisError, OSError) as exc:
            raise StoreConnectionError(
                f"Cannot connect to Redis at {self._config.url}: {exc}"
            ) from exc

        await self._create_index_if_missing()
        log_event(
            self._audit,
            AuditEvent.STORE_INIT,
            backend=self.store_type.value,
            collection=self._collection_name,
            index=self._index_name,
        )

    async def health_check(self) -> bool:
        try:
            if self._client is None:
                probe = aioredis.from_url(self._config.url)
                try:
                    return bool(await probe.ping())
                finally:
                    await probe.aclose()
            return bool(await self._client.ping())
        except Exception:
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ── collection ────────────────────────────────────────────────────

    async def get_or_create_collection(self) -> CollectionInfo:
        client = self._require_client()
        keys = await self._collection_keys(client)
        return CollectionInfo(name=self._collection_name, count=len(keys))

    async def add_documents(self, documents: list[Document]) -> None:
        client = self._require_client()
        if not documents:
            return
        vectors = await self._embedding.embed([d.text for d in documents])
        for doc, vector in zip(documents, vectors):
            await client.hset(
                f"{self._prefix}{doc.id}",
                mapping={
                    "id": doc.id,
                    "text": doc.text,
                    "metadata": json.dumps(doc.metadata),
                    "vector": to_float32_bytes(vector),
                },
            )
        log_event(
            self._audit,
            AuditEvent.DOCUMENTS_ADDED,
            backend=self.store_type.value,
            collection=self._collection_name,
            added=len(documents),
        )

    async def clear_collection(self) -> None:
        client = self._require_client()
        keys = await self._collection_keys(client)
        if keys:
            await client.delete(*keys)
        log_event(
            self._audit,
            AuditEvent.COLLECTION_CLEARED,
            backend=self.store_type.value,
            collection=self._collection_name,
            removed=len(keys),
        )

    # ── query ─────────────────────────────────────────────────────────

    async def query_documents(
        self, query: str, n_results: int = DEFAULT_N_RESULTS
    ) -> SearchResult:
        client = self._require_client()
        try:
            return await self._knn_search(client, query, n_results)
        except Exception as exc:
            logger.warning(
                "KNN search on %s failed (%s), falling back to keyword scan",
                self._index_name,
                exc,
            )
            log_event(
                self._audit,
                AuditEvent.QUERY_DEGRADED,
                backend=self.store_type.value,
                collection=self._collection_name,
                reason=str(exc),
            )
            return await self._keyword_search(client, query, n_results)

    async def _knn_search(self, client: Any, query: str, n_results: int) -> SearchResult:
        [vector] = await self._embedding.embed([query])
        knn = (
            Query(f"*=>[KNN {n_results} @vector $query_vec AS distance]")
            .sort_by("distance")
            .return_fields("id", "text", "metadata", "distance")
            .paging(0, n_results)
            .dialect(2)
        )
        result = await client.ft(self._index_name).search(
            knn, query_params={"query_vec": to_float32_bytes(vector)}
        )

        documents: list[str] = []
        metadatas: list[dict[str, Any]] = []
        distances: list[float] = []
        for doc in result.docs[:n_results]:
            documents.append(_as_str(getattr(doc, "text", "")))
            metadatas.append(_load_metadata(getattr(doc, "metadata", None)))
            distances.append(float(_as_str(getattr(doc, "distance", "1.0")) or 1.0))
        return SearchResult(documents=documents, metadatas=metadatas, distances=distances)

    async def _keyword_search(self, client: Any, query: str, n_results: int) -> SearchResult:
        records: list[dict[str, Any]] = []
        for key in await self._collection_keys(client):
            fields = await client.hgetall(key)
            text = _as_str(fields.get(b"text", fields.get("text", "")))
            metadata = _load_metadata(fields.get(b"metadata", fields.get("metadata")))
            records.append({"text": text, "metadata": metadata})

        ranked = rank_by_overlap(query, records, lambda r: r["text"], n_results)
        return SearchResult(
            documents=[r["text"] for r, _ in ranked],
            metadatas=[r["metadata"] for r, _ in ranked],
            distances=[KEYWORD_FALLBACK_DISTANCE for _ in ranked],
        )

    # ── helpers ───────────────────────────────────────────────────────

    def _require_client(self) -> Any:
        if self._client is None:
            raise StoreConnectionError("Redis client not initialised; call init() first")
        return self._client

    async def _collection_keys(self, client: Any) -> list[Any]:
        return [key async for key in client.scan_iter(match=f"{self._prefix}*")]

    async def _create_index_if_missing(self) -> None:
        search = self._client.ft(self._index_name)
        try:
            await search.info()
            return
        except ResponseError as exc:
            if not any(m in str(exc).lower() for m in _UNKNOWN_INDEX_MARKERS):
                raise SchemaError(f"Cannot inspect index {self._index_name}: {exc}") from exc

        fields = [
            TagField("id"),
            TextField("text"),
            VectorField(
                "vector",
                "FLAT",
                {
                    "TYPE": "FLOAT32",
                    "DIM": self._embedding.dimensions,
                    "DISTANCE_METRIC": "COSINE",
                },
            ),
        ]
        definition = IndexDefinition(prefix=[self._prefix], index_type=IndexType.HASH)
        try:
            await search.create_index(fields, definition=definition)
        except RedisError as exc:
            raise SchemaError(f"Cannot create index {self._index_name}: {exc}") from exc
        logger.info("Created Redis index %s", self._index_name)


def _as_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return "" if value is None else str(value)


def _load_metadata(raw: Any) -> dict[str, Any]:
    text = _as_str(raw)
    if not text:
        return {}
    try:
        data = json.loads(text)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
