"""Vector store contracts.

Defines the capability contract every retrieval backend satisfies, the
shared data models for documents and search results, and the error
taxonomy surfaced to callers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, Field, field_validator, model_validator


DEFAULT_COLLECTION = "clonewriter"
DEFAULT_N_RESULTS = 4


class StoreType(str, Enum):
    FILE = "file"
    CHROMA = "chroma"
    REDIS = "redis"
    MARIADB = "mariadb"


# ── Data models ──────────────────────────────────────────────────────


class Document(BaseModel):
    """A unit of retrievable text plus optional metadata."""

    id: str
    text: str = Field(min_length=1)
    metadata: dict[str, Any] = {}

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_metadata(cls, value: Any) -> Any:
        return {} if value is None else value


class SearchResult(BaseModel):
    """Parallel, relevance-ordered hits; index i refers to one document."""

    documents: list[str] = []
    metadatas: list[dict[str, Any]] = []
    distances: list[float] = []

    @model_validator(mode="after")
    def _check_parallel(self) -> SearchResult:
        if not len(self.documents) == len(self.metadatas) == len(self.distances):
            raise ValueError(
                "documents, metadatas and distances must have equal length "
                f"(got {len(self.documents)}, {len(self.metadatas)}, {len(self.distances)})"
            )
        return self

    @classmethod
    def empty(cls) -> SearchResult:
        return cls(documents=[], metadatas=[], distances=[])

    def __len__(self) -> int:
        return len(self.documents)


class CollectionInfo(BaseModel):
    name: str
    count: int | None = None


# ── Errors ───────────────────────────────────────────────────────────


class VectorStoreError(Exception):
    """Base exception for all retrieval backend errors."""


class StoreConnectionError(VectorStoreError, ConnectionError):
    """Raised when a backend's external dependency is unreachable."""


class SchemaError(VectorStoreError):
    """Raised when collection, table or index bootstrap fails."""


class QueryExecutionError(VectorStoreError):
    """Raised when the external engine rejects a request."""


class EmbeddingError(VectorStoreError):
    """Raised when text cannot be turned into a vector."""


# ── Abstract store ───────────────────────────────────────────────────


class VectorStore(ABC):
    """Capability contract shared by every retrieval backend."""

    store_type: ClassVar[StoreType]

    @abstractmethod
    async def init(self) -> None:
        """Connect and bootstrap the collection."""
        ...

    @abstractmethod
    async def add_documents(self, documents: list[Document]) -> None:
        """Append documents to the collection."""
        ...

    @abstractmethod
    async def query_documents(
        self, query: str, n_results: int = DEFAULT_N_RESULTS
    ) -> SearchResult:
        """Return at most *n_results* hits, best first."""
        ...

    @abstractmethod
    async def clear_collection(self) -> None:
        """Remove every document while keeping the collection usable."""
        ...

    @abstractmethod
    async def get_or_create_collection(self) -> CollectionInfo:
        """Return the collection name and count, creating it on first call."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Probe readiness. Never raises."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release connections held by the store."""
        ...
