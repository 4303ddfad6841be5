"""Shared fixtures and in-process fakes for the external engines."""

from __future__ import annotations

import json
import math
import re
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import httpx
import numpy as np
import pymysql
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from contracts.config import AuditConfig, FileStoreConfig, StoreConfig


# ── Chroma ──────────────────────────────────────────────────────────


class FakeChromaServer:
    """Minimal stateful stand-in for the Chroma v1 REST API."""

    def __init__(self, healthy: bool = True) -> None:
        self.healthy = healthy
        self.fail_query: str | None = None
        self.collections: dict[str, dict[str, Any]] = {}
        self.requests: list[tuple[str, str]] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def _by_id(self, collection_id: str) -> dict[str, Any] | None:
        for c in self.collections.values():
            if c["id"] == collection_id:
                return c
        return None

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/v1")
        self.requests.append((request.method, path))

        if path == "/heartbeat":
            if not self.healthy:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, json={"nanosecond heartbeat": 1})

        if request.method == "POST" and path == "/collections":
            body = json.loads(request.content)
            name = body["name"]
            self.collections[name] = {"id": f"uuid-{name}", "name": name, "docs": []}
            return httpx.Response(200, json={"id": f"uuid-{name}", "name": name})

        parts = path.strip("/").split("/")
        if len(parts) == 2 and parts[0] == "collections":
            name = parts[1]
            if request.method == "GET":
                if name not in self.collections:
                    return httpx.Response(404, json={"error": "does not exist"})
                c = self.collections[name]
                return httpx.Response(200, json={"id": c["id"], "name": name})
            if request.method == "DELETE":
                if self.collections.pop(name, None) is None:
                    return httpx.Response(404, json={"error": "does not exist"})
                return httpx.Response(200, json=None)

        if len(parts) == 3 and parts[0] == "collections":
            collection = self._by_id(parts[1])
            if collection is None:
                return httpx.Response(404, json={"error": "does not exist"})
            action = parts[2]
            if action == "count":
                return httpx.Response(200, json=len(collection["docs"]))
            if action == "add":
                body = json.loads(request.content)
                for doc_id, text, meta in zip(body["ids"], body["documents"], body["metadatas"]):
                    collection["docs"].append({"id": doc_id, "text": text, "metadata": meta})
                return httpx.Response(201, json=True)
            if action == "query":
                if self.fail_query:
                    return httpx.Response(500, text=self.fail_query)
                body = json.loads(request.content)
                [query] = body["query_texts"]
                words = query.lower().split()
                scored = []
                for doc in collection["docs"]:
                    hits = sum(1 for w in words if w in doc["text"].lower())
                    scored.append((doc, 1 - hits / max(len(words), 1)))
                scored.sort(key=lambda pair: pair[1])
                top = scored[: body["n_results"]]
                return httpx.Response(
                    200,
                    json={
                        "ids": [[d["id"] for d, _ in top]],
                        "documents": [[d["text"] for d, _ in top]],
                        "metadatas": [[d["metadata"] for d, _ in top]],
                        "distances": [[dist for _, dist in top]],
                    },
                )

        return httpx.Response(404, text=f"no route {request.method} {path}")


# ── Redis ───────────────────────────────────────────────────────────


class FakeSearchIndex:
    def __init__(self, owner: FakeRedis, name: str) -> None:
        self._owner = owner
        self._name = name

    async def info(self) -> dict[str, Any]:
        if self._name not in self._owner.indexes:
            raise ResponseError("Unknown index name")
        return {"index_name": self._name}

    async def create_index(self, fields: list[Any], definition: Any = None) -> str:
        self._owner.indexes[self._name] = fields
        self._owner.index_creations += 1
        return "OK"

    async def search(self, query: Any, query_params: dict[str, Any] | None = None) -> Any:
        if self._owner.knn_error is not None:
            raise ResponseError(self._owner.knn_error)
        k = int(re.search(r"KNN (\d+)", query.query_string()).group(1))
        q = np.frombuffer(query_params["query_vec"], dtype="<f4")
        prefix = (self._name.removesuffix("_idx") + ":").encode()
        docs = []
        for key, fields in self._owner.hashes.items():
            if not key.startswith(prefix):
                continue
            v = np.frombuffer(fields[b"vector"], dtype="<f4")
            denom = float(np.linalg.norm(q) * np.linalg.norm(v)) or 1.0
            distance = 1 - float(np.dot(q, v)) / denom
            docs.append(
                SimpleNamespace(
                    id=key.decode(),
                    text=fields[b"text"].decode(),
                    metadata=fields[b"metadata"].decode(),
                    distance=str(distance),
                )
            )
        docs.sort(key=lambda d: float(d.distance))
        return SimpleNamespace(total=len(docs), docs=docs[:k])


class FakeRedis:
    """Async Redis double holding hashes as bytes, like a decode-less client."""

    def __init__(self) -> None:
        self.hashes: dict[bytes, dict[bytes, bytes]] = {}
        self.indexes: dict[str, Any] = {}
        self.index_creations = 0
        self.knn_error: str | None = None
        self.reachable = True
        self.closed = False

    async def ping(self) -> bool:
        if not self.reachable:
            raise RedisConnectionError("Connection refused")
        return True

    async def hset(self, key: str, mapping: dict[str, Any]) -> int:
        encoded = {
            k.encode(): v if isinstance(v, bytes) else str(v).encode()
            for k, v in mapping.items()
        }
        self.hashes[key.encode()] = encoded
        return len(encoded)

    async def hgetall(self, key: bytes) -> dict[bytes, bytes]:
        return dict(self.hashes.get(key, {}))

    async def scan_iter(self, match: str | None = None):
        prefix = (match or "*").rstrip("*").encode()
        for key in list(self.hashes):
            if key.startswith(prefix):
                yield key

    async def delete(self, *keys: bytes) -> int:
        removed = 0
        for key in keys:
            if self.hashes.pop(key, None) is not None:
                removed += 1
        return removed

    def ft(self, index_name: str) -> FakeSearchIndex:
        return FakeSearchIndex(self, index_name)

    async def aclose(self) -> None:
        self.closed = True


# ── MariaDB ─────────────────────────────────────────────────────────


class FakeCursor:
    def __init__(self, conn: FakeMariaDB) -> None:
        self._conn = conn
        self._rows: list[dict[str, Any]] = []

    def __enter__(self) -> FakeCursor:
        return self

    def __exit__(self, *exc: Any) -> bool:
        return False

    def execute(self, sql: str, params: Any = None) -> int:
        normalized = " ".join(sql.split())
        self._conn.statements.append((normalized, params))
        self._rows = self._conn.handle(normalized, params)
        return len(self._rows)

    def fetchall(self) -> list[dict[str, Any]]:
        return self._rows


class FakeMariaDB:
    """PyMySQL connection double; also usable as the ``connect`` callable."""

    def __init__(self, version: str = "11.7.2-MariaDB", vector_functions: bool = True) -> None:
        self.version = version
        self.vector_functions = vector_functions
        self.reachable = True
        self.rows: list[dict[str, Any]] = []
        self.table_exists = False
        self.tables_created = 0
        self.ddl: list[str] = []
        self.database: str | None = None
        self.closed = False
        self.connect_kwargs: dict[str, Any] = {}
        self.statements: list[tuple[str, Any]] = []

    def __call__(self, **kwargs: Any) -> FakeMariaDB:
        if not self.reachable:
            raise pymysql.err.OperationalError(2003, "Can't connect to server")
        self.connect_kwargs = kwargs
        self.closed = False
        return self

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def select_db(self, db: str) -> None:
        self.database = db

    def close(self) -> None:
        self.closed = True

    def handle(self, sql: str, params: Any) -> list[dict[str, Any]]:
        if sql == "SELECT 1":
            return [{"1": 1}]
        if sql.startswith("CREATE DATABASE"):
            return []
        if sql.startswith("SELECT VERSION()"):
            return [{"version": self.version}]
        if sql.startswith("CREATE TABLE IF NOT EXISTS"):
            if not self.table_exists:
                self.table_exists = True
                self.tables_created += 1
                self.ddl.append(sql)
            return []
        if not self.table_exists:
            raise pymysql.err.ProgrammingError(1146, "Table doesn't exist")
        if sql.startswith("SELECT COUNT(*)"):
            return [{"count": len(self.rows)}]
        if sql.startswith("INSERT INTO"):
            doc_id, text, metadata, vector = params
            if any(r["id"] == doc_id for r in self.rows):
                raise pymysql.err.IntegrityError(1062, f"Duplicate entry '{doc_id}'")
            self.rows.append(
                {"id": doc_id, "text": text, "metadata": metadata, "vector": json.loads(vector)}
            )
            return []
        if sql.startswith("DELETE FROM"):
            self.rows.clear()
            return []
        if "VEC_DISTANCE_COSINE" in sql:
            if not self.vector_functions:
                raise pymysql.err.OperationalError(
                    1305, "FUNCTION VEC_DISTANCE_COSINE does not exist"
                )
            query_vec = json.loads(params[0])
            limit = params[1]
            scored = []
            for r in self.rows:
                dot = sum(a * b for a, b in zip(query_vec, r["vector"]))
                norm = math.sqrt(sum(a * a for a in query_vec)) * math.sqrt(
                    sum(b * b for b in r["vector"])
                )
                scored.append({**r, "distance": 1 - dot / norm if norm else 1.0})
            scored.sort(key=lambda r: r["distance"])
            return scored[:limit]
        if sql.startswith("SELECT id, text, metadata FROM"):
            *patterns, limit = params
            needles = [p.strip("%").replace("\\", "") for p in patterns]
            matches = [
                r for r in self.rows
                if not needles or any(n in r["text"].lower() for n in needles)
            ]
            return [
                {"id": r["id"], "text": r["text"], "metadata": r["metadata"]}
                for r in matches[:limit]
            ]
        raise AssertionError(f"unexpected SQL: {sql}")


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def fake_chroma() -> FakeChromaServer:
    return FakeChromaServer()


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def fake_mariadb() -> FakeMariaDB:
    return FakeMariaDB()


@pytest.fixture()
def store_config(tmp_path: Path) -> StoreConfig:
    """Config whose file store and event log live under tmp_path."""
    return StoreConfig(
        file=FileStoreConfig(storage_dir=str(tmp_path / "vector_store")),
        audit=AuditConfig(path=str(tmp_path / "events.jsonl")),
    )
