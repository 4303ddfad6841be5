"""CloneWriter retrieval CLI — validate config, probe stores, smoke-test them, read event logs."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Ensure project root is importable when running as script
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

SMOKE_DOCUMENTS = [
    {"id": "test-1", "text": "The quick brown fox jumps over the lazy dog", "metadata": {"source": "test"}},
    {"id": "test-2", "text": "Machine learning is a subset of artificial intelligence", "metadata": {"source": "test"}},
    {"id": "test-3", "text": "Vector databases are used for similarity search", "metadata": {"source": "test"}},
]


def _resolve_config(path: str | None):
    from retrieval.config_loader import config_from_env, load_config

    if path:
        return load_config(path)
    return config_from_env()


def cmd_validate(args: argparse.Namespace) -> None:
    """Validate a clonewriter.yaml config."""
    from retrieval.config_loader import load_config

    path = args.config
    try:
        config = load_config(path)
    except FileNotFoundError:
        print(f"Error: config not found: {path}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Error: invalid config: {exc}", file=sys.stderr)
        sys.exit(1)

    print(f"Config OK: {path}")
    print(f"  Backend:     {config.backend.value}")
    print(f"  Collection:  {config.collection_name}")
    print(f"  Embedding:   {config.embedding.backend} ({config.embedding.dimensions} dims)")
    print(f"  Event log:   {config.audit.path if config.audit.enabled else '(disabled)'}")


def cmd_status(args: argparse.Namespace) -> None:
    """Health-check every backend and show which one the factory resolves."""
    from contracts.vector_store import StoreType
    from retrieval.factory import StoreFactory, available_stores, create_store
    from retrieval.service import RetrievalService

    try:
        config = _resolve_config(args.config)
    except Exception as exc:
        print(f"Error loading config: {exc}", file=sys.stderr)
        sys.exit(1)

    async def _run() -> None:
        print("Available stores:")
        for desc in available_stores():
            store = create_store(desc.type, config)
            try:
                healthy = await store.health_check()
            finally:
                await store.close()
            marker = "*" if desc.type == config.backend else " "
            state = "up" if healthy else "down"
            print(f" {marker} {desc.type.value:8s} {state:5s} {desc.name} — {desc.description}")

        service = RetrievalService(StoreFactory(lambda: config))
        try:
            info = await service.get_or_create_collection()
            active = service.factory.current_type or StoreType.FILE
        finally:
            await service.close()
        print()
        print(f"Configured backend: {config.backend.value}")
        print(f"Resolved backend:   {active.value}")
        print(f"Collection:         {info.name} ({info.count or 0} documents)")

    asyncio.run(_run())


def cmd_smoke(args: argparse.Namespace) -> None:
    """Run add/query/clear against each requested backend."""
    from contracts.vector_store import Document, StoreType
    from retrieval.factory import create_store

    try:
        config = _resolve_config(args.config)
    except Exception as exc:
        print(f"Error loading config: {exc}", file=sys.stderr)
        sys.exit(1)

    types = [StoreType(t) for t in args.type] if args.type else list(StoreType)
    docs = [Document(**d) for d in SMOKE_DOCUMENTS]

    async def _smoke(store_type: StoreType) -> bool:
        print(f"\n=== {store_type.value.upper()} ===")
        store = create_store(store_type, config)
        try:
            healthy = await store.health_check()
            print(f"  health check: {'passed' if healthy else 'failed'}")
            if not healthy and store_type != StoreType.FILE:
                print("  not running, skipped")
                return True

            await store.init()
            info = await store.get_or_create_collection()
            print(f"  collection:   {info.name} ({info.count or 0} documents)")

            await store.add_documents(docs)
            result = await store.query_documents("machine learning", 2)
            top = result.documents[0][:50] if result.documents else "(none)"
            print(f"  query:        {len(result)} hits, top: {top!r}")

            await store.clear_collection()
            print("  cleared")
            return True
        except Exception as exc:
            print(f"  failed: {exc}", file=sys.stderr)
            return False
        finally:
            await store.close()

    async def _run() -> bool:
        results = [await _smoke(t) for t in types]
        return all(results)

    if not asyncio.run(_run()):
        sys.exit(1)


def cmd_logs(args: argparse.Namespace) -> None:
    """Query the retrieval event log."""
    from contracts.audit import AuditEvent
    from retrieval.audit.query import query_by_backend, query_by_event, tail

    log_path = args.log_path

    if not Path(log_path).exists():
        print(f"No event log found at {log_path}", file=sys.stderr)
        sys.exit(1)

    if args.event:
        try:
            event = AuditEvent(args.event)
        except ValueError:
            valid = ", ".join(e.value for e in AuditEvent)
            print(f"Unknown event type: {args.event}", file=sys.stderr)
            print(f"Valid events: {valid}", file=sys.stderr)
            sys.exit(1)
        entries = query_by_event(log_path, event, limit=args.limit)
    elif args.backend:
        entries = query_by_backend(log_path, args.backend, limit=args.limit)
    else:
        entries = tail(log_path, n=args.limit)

    if not entries:
        print("No matching events.")
        return

    for entry in entries:
        record = json.loads(entry.model_dump_json())
        if args.json:
            print(json.dumps(record))
        else:
            ts = record["ts"][:19]
            event = record["event"]
            backend = record["backend"] or "-"
            detail = json.dumps(record.get("detail", {}))
            print(f"{ts}  [{event:18s}]  {backend:8s}  {detail}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="clonewriter",
        description="CloneWriter — retrieval store CLI",
    )
    sub = parser.add_subparsers(dest="command")

    # validate
    p_val = sub.add_parser("validate", help="Validate a clonewriter.yaml config")
    p_val.add_argument(
        "config", nargs="?", default="clonewriter.yaml", help="Path to config"
    )
    p_val.set_defaults(func=cmd_validate)

    # status
    p_status = sub.add_parser("status", help="Health-check the vector stores")
    p_status.add_argument("--config", "-c", help="Path to config (default: environment)")
    p_status.set_defaults(func=cmd_status)

    # smoke
    p_smoke = sub.add_parser("smoke", help="Smoke-test add/query/clear on each store")
    p_smoke.add_argument("--config", "-c", help="Path to config (default: environment)")
    p_smoke.add_argument(
        "--type", "-t", action="append", choices=["file", "chroma", "redis", "mariadb"],
        help="Store type to test (repeatable, default: all)",
    )
    p_smoke.set_defaults(func=cmd_smoke)

    # logs
    p_logs = sub.add_parser("logs", help="Query the event log")
    p_logs.add_argument("log_path", help="Path to event JSONL file")
    p_logs.add_argument("--event", "-e", help="Filter by event type")
    p_logs.add_argument("--backend", "-b", help="Filter by backend type")
    p_logs.add_argument("--limit", "-n", type=int, default=20, help="Max entries")
    p_logs.add_argument("--json", action="store_true", help="Output raw JSON")
    p_logs.set_defaults(func=cmd_logs)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
