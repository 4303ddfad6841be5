"""Event log query helpers.

Standalone read-only functions so the CLI can inspect the log without
constructing a logger (which would create the parent directory).
"""

from __future__ import annotations

import json
from pathlib import Path

from contracts.audit import AuditEntry, AuditEvent


def query_by_event(
    log_path: str | Path, event: AuditEvent, limit: int = 100
) -> list[AuditEntry]:
    """Return recent entries of a given event type."""
    matches = [e for e in _read_all(log_path) if e.event == event]
    return matches[-limit:]


def query_by_backend(
    log_path: str | Path, backend: str, limit: int = 100
) -> list[AuditEntry]:
    """Return recent entries emitted by one backend type."""
    matches = [e for e in _read_all(log_path) if e.backend == backend]
    return matches[-limit:]


def tail(log_path: str | Path, n: int = 20) -> list[AuditEntry]:
    """Return the last N entries from the event log."""
    entries = _read_all(log_path)
    return entries[-n:]


def _read_all(log_path: str | Path) -> list[AuditEntry]:
    p = Path(log_path)
    if not p.exists():
        return []
    entries: list[AuditEntry] = []
    with p.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            entries.append(AuditEntry(**json.loads(line)))
    return entries
