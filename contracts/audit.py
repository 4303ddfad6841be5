"""Retrieval event log contracts.

Append-only JSONL, one record per event. Degraded paths (backend
substitution, keyword fallback) always leave a record here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class AuditEvent(str, Enum):
    STORE_INIT = "store.init"
    STORE_FALLBACK = "store.fallback"
    QUERY_DEGRADED = "query.degraded"
    DOCUMENTS_ADDED = "documents.added"
    COLLECTION_CLEARED = "collection.cleared"


class AuditEntry(BaseModel):
    """A single event log record."""

    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event: AuditEvent
    backend: str = ""
    collection: str = ""
    detail: dict[str, Any] = {}  # reason, counts, requested type, etc.


class AuditLogger(ABC):
    """Interface for the append-only event log."""

    @abstractmethod
    def log(self, entry: AuditEntry) -> None:
        """Append an entry to the log."""
        ...

    @abstractmethod
    def query_by_event(self, event: AuditEvent, limit: int = 100) -> list[AuditEntry]:
        """Return recent entries of a given event type."""
        ...

    @abstractmethod
    def tail(self, n: int = 20) -> list[AuditEntry]:
        """Return the last N entries."""
        ...
