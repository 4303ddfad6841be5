"""Flat-file keyword store.

Keeps the whole collection in one JSON array file and ranks documents by
keyword overlap. This is the default backend and the target of every
factory fallback, so it needs nothing but a writable directory.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from pydantic import ValidationError

from contracts.audit import AuditEvent, AuditLogger
from contracts.config import FileStoreConfig
from contracts.vector_store import (
    DEFAULT_COLLECTION,
    DEFAULT_N_RESULTS,
    CollectionInfo,
    Document,
    SearchResult,
    StoreType,
    VectorStore,
)
from retrieval.audit.logger import log_event
from retrieval.scoring import rank_by_overlap

logger = logging.getLogger(__name__)

# Score assigned when nothing overlaps the query, so a non-empty corpus
# always yields some context.
PLACEHOLDER_SCORE = 0.3


class FileVectorStore(VectorStore):
    """Store backed by a single JSON file, scored by substring overlap.

    Every operation reads the full file; concurrent ``add_documents`` calls
    race and the last writer wins.
    """

    store_type = StoreType.FILE

    def __init__(
        self,
        config: FileStoreConfig | None = None,
        collection_name: str = DEFAULT_COLLECTION,
        audit: AuditLogger | None = None,
    ) -> None:
        config = config or FileStoreConfig()
        self._collection_name = collection_name
        self._storage_dir = Path(config.storage_dir)
        self._storage_file = self._storage_dir / config.file_name
        self._audit = audit

    @property
    def storage_file(self) -> Path:
        return self._storage_file

    # ── lifecycle ─────────────────────────────────────────────────────

    async def init(self) -> None:
        await asyncio.to_thread(self._storage_dir.mkdir, parents=True, exist_ok=True)
        log_event(
            self._audit,
            AuditEvent.STORE_INIT,
            backend=self.store_type.value,
            collection=self._collection_name,
            path=str(self._storage_file),
        )

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self._storage_dir.mkdir, parents=True, exist_ok=True)
        except OSError:
            return False
        return True

    async def close(self) -> None:
        """No-op for the file store."""

    # ── collection ────────────────────────────────────────────────────

    async def get_or_create_collection(self) -> CollectionInfo:
        docs = await self._load()
        return CollectionInfo(name=self._collection_name, count=len(docs))

    async def add_documents(self, documents: list[Document]) -> None:
        existing = await self._load()
        updated = existing + list(documents)
        await self._save(updated)
        log_event(
            self._audit,
            AuditEvent.DOCUMENTS_ADDED,
            backend=self.store_type.value,
            collection=self._collection_name,
            added=len(documents),
            total=len(updated),
        )

    async def clear_collection(self) -> None:
        await self._save([])
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
        documents = await self._load()
        if not documents:
            return SearchResult.empty()

        ranked = rank_by_overlap(query, documents, lambda d: d.text, n_results)
        if not any(score > 0 for _, score in ranked):
            ranked = [(doc, PLACEHOLDER_SCORE) for doc in documents[:n_results]]

        return SearchResult(
            documents=[doc.text for doc, _ in ranked],
            metadatas=[doc.metadata for doc, _ in ranked],
            distances=[1 - score for _, score in ranked],
        )

    # ── persistence ───────────────────────────────────────────────────

    async def _load(self) -> list[Document]:
        return await asyncio.to_thread(self._read_documents)

    async def _save(self, documents: list[Document]) -> None:
        await asyncio.to_thread(self._write_documents, documents)

    def _read_documents(self) -> list[Document]:
        if not self._storage_file.exists():
            return []
        try:
            raw = json.loads(self._storage_file.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Unreadable store file %s, treating as empty", self._storage_file)
            return []
        if not isinstance(raw, list):
            logger.warning("Store file %s is not a JSON array, treating as empty", self._storage_file)
            return []

        documents: list[Document] = []
        for position, item in enumerate(raw):
            try:
                documents.append(Document.model_validate(item))
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid record %d in %s: %s", position, self._storage_file, exc
                )
        return documents

    def _write_documents(self, documents: list[Document]) -> None:
        self._storage_dir.mkdir(parents=True, exist_ok=True)
        payload = [doc.model_dump() for doc in documents]
        self._storage_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")
