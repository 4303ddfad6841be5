"""Config loader — parse clonewriter.yaml and apply environment overrides."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from contracts.config import StoreConfig

CONFIG_ENV_VAR = "CLONEWRITER_CONFIG"

# env var -> (section, field); section None means a root field
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "VECTOR_STORE_TYPE": (None, "backend"),
    "CHROMA_URL": ("chroma", "url"),
    "REDIS_URL": ("redis", "url"),
    "MARIADB_HOST": ("mariadb", "host"),
    "MARIADB_PORT": ("mariadb", "port"),
    "MARIADB_USER": ("mariadb", "user"),
    "MARIADB_PASSWORD": ("mariadb", "password"),
    "MARIADB_DATABASE": ("mariadb", "database"),
}


def load_config(path: str | Path) -> StoreConfig:
    """Load a clonewriter.yaml file and return a validated StoreConfig."""
    return StoreConfig(**_read_yaml(path))


def config_from_env(environ: Mapping[str, str] | None = None) -> StoreConfig:
    """Build the active config from ``CLONEWRITER_CONFIG`` plus env overrides.

    Called on every factory resolution so a changed ``VECTOR_STORE_TYPE``
    is picked up without restarting the process.
    """
    env = os.environ if environ is None else environ

    data: dict[str, Any] = {}
    config_path = env.get(CONFIG_ENV_VAR)
    if config_path:
        data = _read_yaml(config_path)

    for var, (section, field) in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        if section is None:
            data[field] = value
        else:
            data[section] = {**(data.get(section) or {}), field: value}

    return StoreConfig(**data)


def _read_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    raw = p.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config must be a YAML mapping, got {type(data).__name__}")
    return data
