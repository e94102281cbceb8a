"""
OpenPaw — memory console.

Operator commands over the memory store:

    python -m openpaw stats
    python -m openpaw search "dentist" --limit 3
    python -m openpaw list --type fact
    python -m openpaw forget <id>
    python -m openpaw reindex
    python -m openpaw flush "Wrapped up the quarterly report"
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from openpaw.config import settings
from openpaw.memory import MemoryManager
from openpaw.memory.models import ENTRY_KINDS


def setup_logging(level: str = "DEBUG") -> None:
    """Configures loguru."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="openpaw", description="Inspect and maintain agent memory.")
    parser.add_argument(
        "--memory-dir",
        type=Path,
        default=None,
        help=f"memory directory (default: {settings.memory_dir})",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="entry counts, short-term length, storage location")

    search = sub.add_parser("search", help="full-text search")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=5)

    list_cmd = sub.add_parser("list", help="most recent entries")
    list_cmd.add_argument("--type", dest="kind", choices=ENTRY_KINDS, default=None)
    list_cmd.add_argument("--limit", type=int, default=20)

    forget = sub.add_parser("forget", help="delete a long-term entry by id")
    forget.add_argument("id")

    sub.add_parser("reindex", help="rebuild the index from MEMORY.md and daily logs")

    flush = sub.add_parser("flush", help="write a session-summary log entry")
    flush.add_argument("summary", nargs="?", default=None)

    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def run(args: argparse.Namespace, manager: MemoryManager) -> int:
    """Executes one console command. Returns the exit code."""
    if args.command == "stats":
        _print_json(manager.stats())
        return 0

    if args.command == "search":
        results = manager.search(args.query, limit=args.limit)
        _print_json([
            {
                "id": r.entry.id,
                "type": r.entry.kind,
                "score": r.score,
                "snippet": r.snippet,
                "tags": r.entry.tags,
            }
            for r in results
        ])
        return 0

    if args.command == "list":
        entries = manager.list_entries(kind=args.kind, limit=args.limit)
        _print_json([
            {
                "id": e.id,
                "type": e.kind,
                "tags": e.tags,
                "preview": e.preview(120),
                "updatedAt": e.updated_at.isoformat(),
            }
            for e in entries
        ])
        return 0

    if args.command == "forget":
        if manager.forget(args.id):
            print(f"Memory {args.id} deleted.")
            return 0
        print(f"Memory {args.id} not found.", file=sys.stderr)
        return 1

    if args.command == "reindex":
        count = manager.reindex()
        print(f"Indexed {count} entries")
        return 0

    if args.command == "flush":
        entry = manager.flush(args.summary)
        print(f"Session summary saved (id: {entry.id})")
        return 0

    raise ValueError(f"unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(settings.log_level)

    memory_dir = args.memory_dir or settings.memory_dir
    manager = MemoryManager(
        memory_dir,
        short_term_window=settings.short_term_window,
        max_facts=settings.max_facts,
    )

    manager.init()
    try:
        return run(args, manager)
    finally:
        # console commands are not conversation sessions
        manager.close(flush=False)


if __name__ == "__main__":
    sys.exit(main())
