"""Unit tests for the MariaDB store, against a fake PyMySQL connection."""

from __future__ import annotations

from pathlib import Path

import pytest

from contracts.audit import AuditEvent
from contracts.config import MariaDBConfig
from contracts.vector_store import Document, QueryExecutionError, StoreConnectionError
from retrieval.audit.logger import JsonlAuditLogger
from retrieval.store_adapters.mariadb import (
    KEYWORD_FALLBACK_DISTANCE,
    MariaDBVectorStore,
    supports_native_vectors,
    vector_literal,
)


# ── helpers ─────────────────────────────────────────────────────────


DOCS = [
    Document(id="m1", text="machine learning models", metadata={"source": "a"}),
    Document(id="m2", text="the quick brown fox"),
    Document(id="m3", text="deep learning with neural networks"),
]


def _store(fake, **kwargs) -> MariaDBVectorStore:
    return MariaDBVectorStore(MariaDBConfig(database="cw_test"), connect=fake, **kwargs)


def _sql(fake) -> list[str]:
    return [sql for sql, _ in fake.statements]


# ── version gate ────────────────────────────────────────────────────


class TestVersionGate:
    @pytest.mark.parametrize(
        "version,expected",
        [
            ("11.6.2-MariaDB", True),
            ("11.7.1-MariaDB-ubu2404", True),
            ("12.0.1-MariaDB", True),
            ("11.5.2-MariaDB", False),
            ("10.11.6-MariaDB", False),
            ("not-a-version", False),
        ],
    )
    def test_supports_native_vectors(self, version: str, expected: bool) -> None:
        assert supports_native_vectors(version) is expected

    def test_vector_literal(self) -> None:
        assert vector_literal([0.5, 1, -0.25]) == "[0.5,1.0,-0.25]"


# ── store ───────────────────────────────────────────────────────────


class TestMariaDBVectorStore:
    @pytest.mark.asyncio
    async def test_init_bootstraps_database_and_table(self, fake_mariadb) -> None:
        store = _store(fake_mariadb, collection_name="notes")
        await store.init()

        assert fake_mariadb.database == "cw_test"
        assert fake_mariadb.connect_kwargs["charset"] == "utf8mb4"
        assert "CREATE DATABASE IF NOT EXISTS `cw_test`" in _sql(fake_mariadb)
        assert store.table_name == "notes_documents"
        assert store.native_vectors is True
        [ddl] = fake_mariadb.ddl
        assert "`notes_documents`" in ddl
        assert "VECTOR(384)" in ddl
        assert "VECTOR INDEX" in ddl

    @pytest.mark.asyncio
    async def test_old_server_uses_json_column(self, fake_mariadb) -> None:
        fake_mariadb.version = "10.11.6-MariaDB"
        store = _store(fake_mariadb)
        await store.init()

        assert store.native_vectors is False
        [ddl] = fake_mariadb.ddl
        assert "vector JSON NOT NULL" in ddl
        assert "VECTOR INDEX" not in ddl

    @pytest.mark.asyncio
    async def test_init_fails_when_unreachable(self, fake_mariadb) -> None:
        fake_mariadb.reachable = False
        with pytest.raises(StoreConnectionError):
            await _store(fake_mariadb).init()

    @pytest.mark.asyncio
    async def test_health_check_probes_without_connection(self, fake_mariadb) -> None:
        store = _store(fake_mariadb)
        assert await store.health_check() is True
        fake_mariadb.reachable = False
        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, fake_mariadb) -> None:
        store = _store(fake_mariadb)
        await store.init()

        first = await store.get_or_create_collection()
        second = await store.get_or_create_collection()
        assert first.count == second.count == 0
        assert fake_mariadb.tables_created == 1

    @pytest.mark.asyncio
    async def test_get_or_create_recreates_dropped_table(self, fake_mariadb) -> None:
        store = _store(fake_mariadb)
        await store.init()
        fake_mariadb.table_exists = False

        info = await store.get_or_create_collection()
        assert info.count == 0
        assert fake_mariadb.table_exists is True
        assert fake_mariadb.tables_created == 2

    @pytest.mark.asyncio
    async def test_add_uses_vec_fromtext_on_native_layout(self, fake_mariadb) -> None:
        store = _store(fake_mariadb)
        await store.init()
        await store.add_documents(DOCS)

        inserts = [s for s in _sql(fake_mariadb) if s.startswith("INSERT")]
        assert len(inserts) == 3
        assert all("VEC_FromText(%s)" in s for s in inserts)
        assert (await store.get_or_create_collection()).count == 3

    @pytest.mark.asyncio
    async def test_duplicate_id_raises(self, fake_mariadb) -> None:
        store = _store(fake_mariadb)
        await store.init()
        await store.add_documents(DOCS[:1])

        with pytest.raises(QueryExecutionError, match="m1"):
            await store.add_documents(DOCS[:1])

    @pytest.mark.asyncio
    async def test_vector_query(self, fake_mariadb) -> None:
        store = _store(fake_mariadb)
        await store.init()
        await store.add_documents(DOCS)

        result = await store.query_documents("the quick brown fox", 2)
        assert len(result) == 2
        assert result.documents[0] == "the quick brown fox"
        assert result.metadatas[0] == {}
        assert result.distances[0] == pytest.approx(0.0, abs=1e-9)

    @pytest.mark.asyncio
    async def test_vector_failure_falls_back_to_keywords(
        self, fake_mariadb, tmp_path: Path
    ) -> None:
        fake_mariadb.vector_functions = False
        audit = JsonlAuditLogger(tmp_path / "events.jsonl")
        store = _store(fake_mariadb, audit=audit)
        await store.init()
        await store.add_documents(DOCS)

        result = await store.query_documents("learning", 4)

        assert result.documents == ["machine learning models", "deep learning with neural networks"]
        assert result.metadatas[0] == {"source": "a"}
        assert result.distances == [KEYWORD_FALLBACK_DISTANCE] * 2
        assert len(audit.query_by_event(AuditEvent.QUERY_DEGRADED)) == 1

    @pytest.mark.asyncio
    async def test_json_layout_queries_by_keyword_only(self, fake_mariadb) -> None:
        fake_mariadb.version = "10.11.6-MariaDB"
        store = _store(fake_mariadb)
        await store.init()
        await store.add_documents(DOCS)

        result = await store.query_documents("fox")

        assert result.documents == ["the quick brown fox"]
        assert result.distances == [KEYWORD_FALLBACK_DISTANCE]
        assert not any("VEC_" in s for s in _sql(fake_mariadb))

    @pytest.mark.asyncio
    async def test_keyword_patterns_are_escaped(self, fake_mariadb) -> None:
        fake_mariadb.version = "10.11.6-MariaDB"
        store = _store(fake_mariadb)
        await store.init()

        await store.query_documents("100%")

        _, params = fake_mariadb.statements[-1]
        assert params == ("%100\\%%", 4)

    @pytest.mark.asyncio
    async def test_clear(self, fake_mariadb) -> None:
        store = _store(fake_mariadb)
        await store.init()
        await store.add_documents(DOCS)

        await store.clear_collection()

        assert (await store.get_or_create_collection()).count == 0
        assert len(await store.query_documents("fox")) == 0

    @pytest.mark.asyncio
    async def test_close(self, fake_mariadb) -> None:
        store = _store(fake_mariadb)
        await store.init()
        await store.close()
        assert fake_mariadb.closed is True
        with pytest.raises(StoreConnectionError):
            await store.get_or_create_collection()
