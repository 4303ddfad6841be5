"""Retrieval configuration schema — Pydantic models.

Mirrors the structure of clonewriter.yaml. Every field has a local
default so an empty file (or no file at all) yields a working setup.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, field_validator, model_validator

from contracts.vector_store import DEFAULT_COLLECTION, StoreType

logger = logging.getLogger(__name__)


# ── Per-backend connection settings ─────────────────────────────────


class FileStoreConfig(BaseModel):
    storage_dir: str = "vector_store"
    file_name: str = "documents.json"


class ChromaConfig(BaseModel):
    url: str = "http://localhost:8000"
    api_path: str = "/api/v1"
    timeout: float = 30.0


class RedisConfig(BaseModel):
    url: str = "redis://localhost:6379"


class MariaDBConfig(BaseModel):
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = "clonewriter"


# ── Embedding ────────────────────────────────────────────────────────


HASH_DIMENSIONS = 384

# Output sizes of common Ollama embedding models.
OLLAMA_MODEL_DIMENSIONS = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
    "snowflake-arctic-embed": 1024,
}


class EmbeddingConfig(BaseModel):
    backend: str = "hash"          # "hash" or "ollama"
    model: str = "nomic-embed-text"
    base_url: str = "http://localhost:11434"
    dimensions: int | None = None  # None: derived from backend and model

    @model_validator(mode="after")
    def _default_dimensions(self) -> EmbeddingConfig:
        if self.dimensions is not None:
            return self
        if self.backend != "ollama":
            self.dimensions = HASH_DIMENSIONS
            return self
        model = self.model.split(":", 1)[0]
        if model not in OLLAMA_MODEL_DIMENSIONS:
            raise ValueError(
                f"embedding.dimensions must be set for Ollama model {self.model!r}"
            )
        self.dimensions = OLLAMA_MODEL_DIMENSIONS[model]
        return self


# ── Event log ────────────────────────────────────────────────────────


class AuditConfig(BaseModel):
    enabled: bool = True
    path: str = "vector_store/events.jsonl"


# ── Root config ──────────────────────────────────────────────────────


class StoreConfig(BaseModel):
    backend: StoreType = StoreType.FILE
    collection_name: str = DEFAULT_COLLECTION
    file: FileStoreConfig = FileStoreConfig()
    chroma: ChromaConfig = ChromaConfig()
    redis: RedisConfig = RedisConfig()
    mariadb: MariaDBConfig = MariaDBConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    audit: AuditConfig = AuditConfig()

    @field_validator("backend", mode="before")
    @classmethod
    def _coerce_backend(cls, value: Any) -> Any:
        if isinstance(value, StoreType):
            return value
        name = str(value or StoreType.FILE.value).strip().lower()
        try:
            return StoreType(name)
        except ValueError:
            logger.warning("Invalid vector store type %r, falling back to 'file'", value)
            return StoreType.FILE
