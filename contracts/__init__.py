"""Shared contracts — source of truth for all retrieval interfaces."""

from contracts.audit import AuditEntry, AuditEvent, AuditLogger
from contracts.config import (
    AuditConfig,
    ChromaConfig,
    EmbeddingConfig,
    FileStoreConfig,
    MariaDBConfig,
    RedisConfig,
    StoreConfig,
)
from contracts.embedding import EmbeddingAdapter
from contracts.vector_store import (
    CollectionInfo,
    Document,
    EmbeddingError,
    QueryExecutionError,
    SchemaError,
    SearchResult,
    StoreConnectionError,
    StoreType,
    VectorStore,
    VectorStoreError,
)

__all__ = [
    # audit
    "AuditEntry",
    "AuditEvent",
    "AuditLogger",
    # config
    "AuditConfig",
    "ChromaConfig",
    "EmbeddingConfig",
    "FileStoreConfig",
    "MariaDBConfig",
    "RedisConfig",
    "StoreConfig",
    # embedding
    "EmbeddingAdapter",
    # vector store
    "CollectionInfo",
    "Document",
    "EmbeddingError",
    "QueryExecutionError",
    "SchemaError",
    "SearchResult",
    "StoreConnectionError",
    "StoreType",
    "VectorStore",
    "VectorStoreError",
]
