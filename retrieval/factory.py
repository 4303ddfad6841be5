"""Store factory — choose, build and cache the active vector store.

Resolution runs lazily on the first call and again whenever the configured
backend type changes. A non-file backend that fails ``init()`` or its
health check is replaced by the flat-file store; the substitution is only
visible through a warning and a ``store.fallback`` event, so callers must
trust the returned instance rather than the configuration.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from contracts.audit import AuditEvent, AuditLogger
from contracts.config import EmbeddingConfig, StoreConfig
from contracts.embedding import EmbeddingAdapter
from contracts.vector_store import StoreType, VectorStore
from retrieval.audit.logger import JsonlAuditLogger, log_event
from retrieval.config_loader import config_from_env

logger = logging.getLogger(__name__)

StoreBuilder = Callable[..., VectorStore]


class StoreDescriptor(BaseModel):
    type: StoreType
    name: str
    description: str
    requires_external: bool


_DESCRIPTORS = [
    StoreDescriptor(
        type=StoreType.FILE,
        name="File-based",
        description="Simple JSON file storage with keyword matching",
        requires_external=False,
    ),
    StoreDescriptor(
        type=StoreType.CHROMA,
        name="ChromaDB",
        description="ChromaDB with server-side embeddings and similarity search",
        requires_external=True,
    ),
    StoreDescriptor(
        type=StoreType.REDIS,
        name="Redis Stack",
        description="Redis Stack with RediSearch for vector similarity search",
        requires_external=True,
    ),
    StoreDescriptor(
        type=StoreType.MARIADB,
        name="MariaDB",
        description="MariaDB 11.6+ with vector support for similarity search",
        requires_external=True,
    ),
]


def available_stores() -> list[StoreDescriptor]:
    """Describe every backend the factory can build."""
    return list(_DESCRIPTORS)


def create_embedding_adapter(config: EmbeddingConfig) -> EmbeddingAdapter:
    """Create an embedding adapter from config."""
    if config.backend == "ollama":
        from retrieval.embedding_adapters.ollama import OllamaEmbeddingAdapter

        return OllamaEmbeddingAdapter(
            base_url=config.base_url, model=config.model, dimensions=config.dimensions
        )
    from retrieval.embedding_adapters.hashing import HashingEmbeddingAdapter

    return HashingEmbeddingAdapter(dimensions=config.dimensions)


def create_audit_logger(config: StoreConfig) -> AuditLogger | None:
    """Create the event log from config, or None when disabled."""
    if not config.audit.enabled:
        return None
    return JsonlAuditLogger(config.audit.path)


def create_store(
    store_type: StoreType,
    config: StoreConfig,
    *,
    embedding: EmbeddingAdapter | None = None,
    audit: AuditLogger | None = None,
) -> VectorStore:
    """Build an uninitialised store of *store_type*.

    Backend modules are imported lazily so a missing optional client
    library only matters when that backend is selected.
    """
    logger.info("Creating vector store of type: %s", store_type.value)
    collection = config.collection_name

    if store_type == StoreType.CHROMA:
        from retrieval.store_adapters.chroma import ChromaVectorStore

        return ChromaVectorStore(config.chroma, collection_name=collection, audit=audit)

    if store_type == StoreType.REDIS:
        from retrieval.store_adapters.redis_stack import RedisVectorStore

        return RedisVectorStore(
            config.redis,
            collection_name=collection,
            embedding=embedding or create_embedding_adapter(config.embedding),
            audit=audit,
        )

    if store_type == StoreType.MARIADB:
        from retrieval.store_adapters.mariadb import MariaDBVectorStore

        return MariaDBVectorStore(
            config.mariadb,
            collection_name=collection,
            embedding=embedding or create_embedding_adapter(config.embedding),
            audit=audit,
        )

    from retrieval.store_adapters.file import FileVectorStore

    return FileVectorStore(config.file, collection_name=collection, audit=audit)


class StoreFactory:
    """Holds the process-wide ``(instance, type)`` pair and its lifecycle."""

    def __init__(
        self,
        config_provider: Callable[[], StoreConfig] = config_from_env,
        *,
        audit: AuditLogger | None = None,
        builder: StoreBuilder = create_store,
    ) -> None:
        self._config_provider = config_provider
        self._audit = audit
        self._builder = builder
        self._instance: VectorStore | None = None
        self._current_type: StoreType | None = None
        self._lock = asyncio.Lock()

    @property
    def current_type(self) -> StoreType | None:
        return self._current_type

    def configured_type(self) -> StoreType:
        return self._config_provider().backend

    async def get_instance(self) -> VectorStore:
        """Return the active store, resolving it when needed."""
        config = self._config_provider()
        requested = config.backend

        async with self._lock:
            if self._instance is not None and self._current_type == requested:
                return self._instance

            await self._discard()
            logger.info("Initializing new vector store instance: %s", requested.value)
            audit = self._audit if self._audit is not None else create_audit_logger(config)

            store, reason = await self._build(requested, config, audit)
            if reason is not None and requested != StoreType.FILE:
                logger.warning(
                    "Vector store %s unavailable (%s), falling back to file-based store",
                    requested.value,
                    reason,
                )
                log_event(
                    audit,
                    AuditEvent.STORE_FALLBACK,
                    backend=StoreType.FILE.value,
                    collection=config.collection_name,
                    requested=requested.value,
                    reason=reason,
                )
                if store is not None:
                    await _close_quietly(store)
                store = self._builder(StoreType.FILE, config, audit=audit)
                await store.init()
                requested = StoreType.FILE

            self._instance = store
            self._current_type = requested
            return store

    async def reset(self) -> None:
        """Close and forget the cached store; the next call resolves afresh."""
        async with self._lock:
            await self._discard()

    # ── internal ────────────────────────────────────────────────────

    async def _build(
        self, store_type: StoreType, config: StoreConfig, audit: AuditLogger | None
    ) -> tuple[VectorStore | None, str | None]:
        """Build and bring up *store_type*; return the store and a failure reason."""
        try:
            store = self._builder(store_type, config, audit=audit)
        except Exception as exc:
            if store_type == StoreType.FILE:
                raise
            return None, f"build failed: {exc}"
        return store, await self._bring_up(store)

    async def _bring_up(self, store: VectorStore) -> str | None:
        """Init and health-check *store*; return a failure reason or None."""
        try:
            await store.init()
        except Exception as exc:
            if store.store_type == StoreType.FILE:
                raise
            return f"init failed: {exc}"
        if not await store.health_check():
            return "health check failed"
        return None

    async def _discard(self) -> None:
        if self._instance is not None:
            await _close_quietly(self._instance)
        self._instance = None
        self._current_type = None


async def _close_quietly(store: Any) -> None:
    try:
        await store.close()
    except Exception as exc:
        logger.warning("Error closing %s: %s", type(store).__name__, exc)
