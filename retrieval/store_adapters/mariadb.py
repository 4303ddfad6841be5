"""MariaDB vector store.

One table per collection. On first connect the server version decides,
once, between a native VECTOR column with a vector index (11.6+) and a
JSON column for older servers. Queries rank by VEC_DISTANCE_COSINE and
degrade to LIKE keyword matching when that is unavailable.

PyMySQL is blocking, so every statement runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Callable
from typing import Any

import pymysql
import pymysql.cursors

from contracts.audit import AuditEvent, AuditLogger
from contracts.config import MariaDBConfig
from contracts.embedding import EmbeddingAdapter
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
from retrieval.embedding_adapters.hashing import HashingEmbeddingAdapter
from retrieval.scoring import query_words

logger = logging.getLogger(__name__)

MIN_VECTOR_VERSION = (11, 6)
KEYWORD_FALLBACK_DISTANCE = 0.5

_VERSION_RE = re.compile(r"^(\d+)\.(\d+)")


def supports_native_vectors(version: str) -> bool:
    """True when a ``VERSION()`` string is at least :data:`MIN_VECTOR_VERSION`."""
    match = _VERSION_RE.match(version.strip())
    if not match:
        return False
    return (int(match.group(1)), int(match.group(2))) >= MIN_VECTOR_VERSION


def vector_literal(vector: list[float]) -> str:
    """Serialise a vector as ``[v1,v2,...]``, the text form VEC_FromText reads."""
    return "[" + ",".join(repr(float(v)) for v in vector) + "]"


def _escape_like(word: str) -> str:
    return word.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class MariaDBVectorStore(VectorStore):
    """Vector store backed by a MariaDB table."""

    store_type = StoreType.MARIADB

    def __init__(
        self,
        config: MariaDBConfig | None = None,
        collection_name: str = DEFAULT_COLLECTION,
        embedding: EmbeddingAdapter | None = None,
        audit: AuditLogger | None = None,
        connect: Callable[..., Any] = pymysql.connect,
    ) -> None:
        self._config = config or MariaDBConfig()
        self._collection_name = collection_name
        self._table = f"{collection_name}_documents"
        self._embedding = embedding or HashingEmbeddingAdapter()
        self._audit = audit
        self._connect = connect
        self._conn: Any = None
        self._lock = asyncio.Lock()
        self.server_version: str = ""
        self.native_vectors: bool | None = None

    @property
    def table_name(self) -> str:
        return self._table

    # ── lifecycle ─────────────────────────────────────────────────────

    async def init(self) -> None:
        try:
            self._conn = await asyncio.to_thread(self._open)
        except pymysql.MySQLError as exc:
            raise StoreConnectionError(
                f"Cannot connect to MariaDB at {self._config.host}:{self._config.port}: {exc}"
            ) from exc

        database = self._config.database
        try:
            await self._execute(f"CREATE DATABASE IF NOT EXISTS `{database}`")
            async with self._lock:
                await asyncio.to_thread(self._conn.select_db, database)
        except pymysql.MySQLError as exc:
            raise SchemaError(f"Cannot prepare database {database}: {exc}") from exc

        await self._create_table_if_missing()
        log_event(
            self._audit,
            AuditEvent.STORE_INIT,
            backend=self.store_type.value,
            collection=self._collection_name,
            table=self._table,
            version=self.server_version,
            native_vectors=self.native_vectors,
        )

    async def health_check(self) -> bool:
        try:
            if self._conn is None:
                return await asyncio.to_thread(self._probe)
            await self._execute("SELECT 1")
            return True
        except Exception:
            return False

    async def close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await asyncio.to_thread(conn.close)

    # ── collection ────────────────────────────────────────────────────

    async def get_or_create_collection(self) -> CollectionInfo:
        self._require_conn()
        try:
            rows = await self._execute(f"SELECT COUNT(*) AS count FROM `{self._table}`")
        except pymysql.MySQLError:
            await self._create_table_if_missing()
            return CollectionInfo(name=self._collection_name, count=0)
        count = int(rows[0]["count"]) if rows else 0
        return CollectionInfo(name=self._collection_name, count=count)

    async def add_documents(self, documents: list[Document]) -> None:
        self._require_conn()
        if not documents:
            return
        vectors = await self._embedding.embed([d.text for d in documents])

        if self.native_vectors:
            sql = (
                f"INSERT INTO `{self._table}` (id, text, metadata, vector) "
                "VALUES (%s, %s, %s, VEC_FromText(%s))"
            )
        else:
            sql = (
                f"INSERT INTO `{self._table}` (id, text, metadata, vector) "
                "VALUES (%s, %s, %s, %s)"
            )

        for doc, vector in zip(documents, vectors):
            params = (doc.id, doc.text, json.dumps(doc.metadata), vector_literal(vector))
            try:
                await self._execute(sql, params)
            except pymysql.MySQLError as exc:
                raise QueryExecutionError(f"Failed to insert document {doc.id}: {exc}") from exc

        log_event(
            self._audit,
            AuditEvent.DOCUMENTS_ADDED,
            backend=self.store_type.value,
            collection=self._collection_name,
            added=len(documents),
        )

    async def clear_collection(self) -> None:
        self._require_conn()
        try:
            await self._execute(f"DELETE FROM `{self._table}`")
        except pymysql.MySQLError as exc:
            raise QueryExecutionError(f"Failed to clear {self._table}: {exc}") from exc
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
        self._require_conn()
        if not self.native_vectors:
            logger.warning(
                "MariaDB %s has no vector support, using keyword search", self.server_version
            )
            self._record_degraded("vector column unavailable on this server version")
            return await self._keyword_search(query, n_results)

        try:
            return await self._vector_search(query, n_results)
        except Exception as exc:
            logger.warning(
                "Vector query on %s failed (%s), falling back to keyword search",
                self._table,
                exc,
            )
            self._record_degraded(str(exc))
            return await self._keyword_search(query, n_results)

    async def _vector_search(self, query: str, n_results: int) -> SearchResult:
        [vector] = await self._embedding.embed([query])
        rows = await self._execute(
            f"SELECT id, text, metadata, "
            f"VEC_DISTANCE_COSINE(vector, VEC_FromText(%s)) AS distance "
            f"FROM `{self._table}` ORDER BY distance ASC LIMIT %s",
            (vector_literal(vector), n_results),
        )
        return SearchResult(
            documents=[row["text"] for row in rows],
            metadatas=[_load_metadata(row.get("metadata")) for row in rows],
            distances=[
                float(row["distance"]) if row.get("distance") is not None else 1.0
                for row in rows
            ],
        )

    async def _keyword_search(self, query: str, n_results: int) -> SearchResult:
        words = query_words(query)
        sql = f"SELECT id, text, metadata FROM `{self._table}`"
        params: list[Any] = []
        if words:
            sql += " WHERE " + " OR ".join("LOWER(text) LIKE %s" for _ in words)
            params.extend(f"%{_escape_like(w)}%" for w in words)
        sql += " LIMIT %s"
        params.append(n_results)

        rows = await self._execute(sql, tuple(params))
        return SearchResult(
            documents=[row["text"] for row in rows],
            metadatas=[_load_metadata(row.get("metadata")) for row in rows],
            distances=[KEYWORD_FALLBACK_DISTANCE for _ in rows],
        )

    # ── schema ────────────────────────────────────────────────────────

    async def _create_table_if_missing(self) -> None:
        try:
            rows = await self._execute("SELECT VERSION() AS version")
            self.server_version = str(rows[0]["version"]) if rows else ""
            self.native_vectors = supports_native_vectors(self.server_version)
            logger.info("MariaDB version: %s", self.server_version)

            dims = self._embedding.dimensions
            if self.native_vectors:
                ddl = f"""
                    CREATE TABLE IF NOT EXISTS `{self._table}` (
                        id VARCHAR(255) PRIMARY KEY,
                        text TEXT NOT NULL,
                        metadata JSON,
                        vector VECTOR({dims}) NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        VECTOR INDEX idx_vector (vector)
                    ) ENGINE=InnoDB
                """
            else:
                ddl = f"""
                    CREATE TABLE IF NOT EXISTS `{self._table}` (
                        id VARCHAR(255) PRIMARY KEY,
                        text TEXT NOT NULL,
                        metadata JSON,
                        vector JSON NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    ) ENGINE=InnoDB
                """
            await self._execute(ddl)
        except pymysql.MySQLError as exc:
            raise SchemaError(f"Cannot create table {self._table}: {exc}") from exc

    # ── connection helpers ────────────────────────────────────────────

    def _connect_kwargs(self) -> dict[str, Any]:
        return {
            "host": self._config.host,
            "port": self._config.port,
            "user": self._config.user,
            "password": self._config.password,
            "charset": "utf8mb4",
            "autocommit": True,
            "cursorclass": pymysql.cursors.DictCursor,
        }

    def _open(self) -> Any:
        return self._connect(**self._connect_kwargs())

    def _probe(self) -> bool:
        conn = self._connect(**self._connect_kwargs())
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
            return True
        finally:
            conn.close()

    def _require_conn(self) -> None:
        if self._conn is None:
            raise StoreConnectionError("MariaDB connection not initialised; call init() first")

    async def _execute(self, sql: str, params: tuple[Any, ...] | None = None) -> list[dict[str, Any]]:
        # One connection, one statement at a time.
        async with self._lock:
            return await asyncio.to_thread(self._execute_sync, sql, params)

    def _execute_sync(self, sql: str, params: tuple[Any, ...] | None) -> list[dict[str, Any]]:
        with self._conn.cursor() as cur:
            cur.execute(sql, params)
            return list(cur.fetchall())

    def _record_degraded(self, reason: str) -> None:
        log_event(
            self._audit,
            AuditEvent.QUERY_DEGRADED,
            backend=self.store_type.value,
            collection=self._collection_name,
            reason=reason,
        )


def _load_metadata(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
