"""
Memory Storage — file-based entry store.

Two partitions:
1. MEMORY.md — long-term entries (facts, preferences, decisions, summaries),
   upsert by id, capped at max_facts
2. memory/YYYY-MM-DD.md — daily logs (append-only, one file per local day)

Every entry is a self-delimited block:

    id: 3f2a9c01b7de
    type: fact
    tags: user, work
    createdAt: 2026-03-01T09:12:44.120301+00:00
    updatedAt: 2026-03-01T09:12:44.120301+00:00
    source: agent

    Free-form content, may span several lines.

    ---

Files stay human-editable: blocks without an id or without content are
skipped on read, unknown type/source fall back to defaults.
"""

import contextlib
import os
import re
import tempfile
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable

from loguru import logger

from openpaw.config import DEFAULT_MAX_FACTS
from openpaw.memory.errors import ImmutableEntryError, InvalidEntryError
from openpaw.memory.models import (
    ENTRY_KINDS,
    ENTRY_SOURCES,
    EntryKind,
    EntrySource,
    MemoryEntry,
    utcnow,
)


TERMINATOR = "---"
METADATA_KEYS = frozenset({"id", "type", "tags", "createdAt", "updatedAt", "source"})

LONG_TERM_TITLE = "# OpenPaw Long-Term Memory"

_META_LINE = re.compile(r"^([A-Za-z_]+):[ \t]?(.*)$")
_COMMENT_LINE = re.compile(r"^<!--.*-->$")
# Content lines that would read back as a terminator get one extra backslash
_TERMINATOR_LIKE = re.compile(r"\s*\\*---\s*")
_VALID_ID = re.compile(r"[A-Za-z0-9_.:-]+")


def new_entry_id() -> str:
    return uuid.uuid4().hex[:12]


# =========================================================================
# Block format
# =========================================================================


def normalize_tags(tags: Iterable[str] | str | None) -> list[str]:
    """Strips tags, splits on commas and line breaks, drops empties. Order and duplicates kept."""
    if isinstance(tags, str):
        tags = [tags]
    result: list[str] = []
    for tag in tags or []:
        for part in ",".join(str(tag).splitlines()).split(","):
            part = part.strip()
            if part:
                result.append(part)
    return result


def _format_ts(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    # naive timestamps (hand-edited files) are local time
    return ts.astimezone(timezone.utc)


def _escape_line(line: str) -> str:
    if _TERMINATOR_LIKE.fullmatch(line):
        return "\\" + line
    return line


def _unescape_line(line: str) -> str:
    if line.startswith("\\") and _TERMINATOR_LIKE.fullmatch(line[1:]):
        return line[1:]
    return line


def serialize_entry(entry: MemoryEntry) -> str:
    """Renders an entry as a terminated block."""
    body = "\n".join(_escape_line(line) for line in entry.content.split("\n"))
    lines = [
        f"id: {entry.id}",
        f"type: {entry.kind}",
        f"tags: {', '.join(entry.tags)}".rstrip(),
        f"createdAt: {_format_ts(entry.created_at)}",
        f"updatedAt: {_format_ts(entry.updated_at)}",
        f"source: {entry.source}",
        "",
        body,
        "",
        TERMINATOR,
    ]
    return "\n".join(lines) + "\n"


def _split_lines(text: str) -> list[str]:
    """Splits on newlines only; other line-break characters stay inside content."""
    return text.replace("\r\n", "\n").replace("\r", "\n").split("\n")


def _split_blocks(text: str) -> list[list[str]]:
    blocks: list[list[str]] = []
    current: list[str] = []
    for line in _split_lines(text):
        if line.strip() == TERMINATOR:
            blocks.append(current)
            current = []
        else:
            current.append(line)
    # last block may be unterminated in a hand-edited file
    blocks.append(current)
    return blocks


def _parse_block(lines: list[str]) -> MemoryEntry | None:
    meta: dict[str, str] = {}
    content_lines: list[str] = []
    in_content = False

    for line in lines:
        if in_content:
            content_lines.append(_unescape_line(line))
            continue

        stripped = line.strip()
        if not stripped:
            if meta:
                in_content = True
            continue
        if _COMMENT_LINE.match(stripped):
            continue

        match = _META_LINE.match(stripped)
        if match and match.group(1) in METADATA_KEYS:
            meta[match.group(1)] = match.group(2).strip()
            continue

        in_content = True
        content_lines.append(_unescape_line(line))

    entry_id = meta.get("id", "")
    content = "\n".join(content_lines).strip()
    if not entry_id or not _VALID_ID.fullmatch(entry_id) or not content:
        return None

    kind = meta.get("type", "fact")
    source = meta.get("source", "agent")
    now = utcnow()

    return MemoryEntry(
        id=entry_id,
        kind=kind if kind in ENTRY_KINDS else "fact",
        content=content,
        tags=normalize_tags(meta.get("tags", "").split(",")),
        created_at=_parse_ts(meta.get("createdAt")) or now,
        updated_at=_parse_ts(meta.get("updatedAt")) or now,
        source=source if source in ENTRY_SOURCES else "agent",
    )


def parse_blocks(text: str) -> list[MemoryEntry]:
    """Parses every usable block, in file order. Never raises on bad input."""
    entries = []
    skipped = 0
    for block in _split_blocks(text):
        if not any(line.strip() for line in block):
            continue
        entry = _parse_block(block)
        if entry is None:
            # headers carry no id, only count blocks that look like entries
            if any(line.strip().startswith("id:") for line in block):
                skipped += 1
            continue
        entries.append(entry)
    if skipped:
        logger.debug(f"Skipped {skipped} block(s) without id or content")
    return entries


def _ensure_terminated(text: str) -> str:
    """Closes a trailing unterminated block so an append cannot merge into it."""
    lines = [line for line in _split_lines(text) if line.strip()]
    if lines and lines[-1].strip() != TERMINATOR:
        return f"{text.rstrip()}\n\n{TERMINATOR}\n"
    return text if text.endswith("\n") else text + "\n"


def atomic_write(path: Path, text: str) -> None:
    """Writes via a temp file + rename, readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


# =========================================================================
# Storage
# =========================================================================


class MemoryStorage:
    """File-based entry store (long-term partition + daily logs)."""

    def __init__(self, root: Path, max_facts: int = DEFAULT_MAX_FACTS) -> None:
        if max_facts <= 0:
            raise ValueError("max_facts must be positive")
        self._root = root
        self._memory_dir = root / "memory"
        self._max_facts = max_facts

    @property
    def root(self) -> Path:
        return self._root

    @property
    def max_facts(self) -> int:
        return self._max_facts

    def init_structure(self) -> None:
        """Creates directories and MEMORY.md (with header) if missing."""
        self._memory_dir.mkdir(parents=True, exist_ok=True)

        if not self.memory_file.exists():
            atomic_write(self.memory_file, self._long_term_header())
            logger.info(f"Created {self.memory_file}")

    # =========================================================================
    # Long-term Memory (MEMORY.md)
    # =========================================================================

    @property
    def memory_file(self) -> Path:
        return self._root / "MEMORY.md"

    def read_long_term(self) -> list[MemoryEntry]:
        return parse_blocks(self._read_text(self.memory_file))

    def _long_term_header(self) -> str:
        return (
            f"{LONG_TERM_TITLE}\n\n"
            f"Last updated: {_format_ts(utcnow())}\n\n"
            f"{TERMINATOR}\n"
        )

    def _write_long_term(self, entries: list[MemoryEntry]) -> None:
        body = "\n".join(serialize_entry(e) for e in entries)
        atomic_write(self.memory_file, self._long_term_header() + body)

    def _trim(self, entries: list[MemoryEntry]) -> tuple[list[MemoryEntry], list[MemoryEntry]]:
        """Sorts by updatedAt (stable) and keeps the newest max_facts."""
        ordered = sorted(entries, key=lambda e: e.updated_at)
        if len(ordered) <= self._max_facts:
            return ordered, []
        cut = len(ordered) - self._max_facts
        return ordered[cut:], ordered[:cut]

    # =========================================================================
    # Daily Logs (memory/YYYY-MM-DD.md)
    # =========================================================================

    @property
    def daily_dir(self) -> Path:
        return self._memory_dir

    def daily_log_path(self, day: date | None = None) -> Path:
        if day is None:
            day = datetime.now().date()
        return self._memory_dir / f"{day.isoformat()}.md"

    def list_daily_logs(self) -> list[Path]:
        if not self._memory_dir.is_dir():
            return []
        return sorted(p for p in self._memory_dir.glob("*.md") if p.is_file())

    def read_daily_logs(self) -> list[MemoryEntry]:
        entries: list[MemoryEntry] = []
        for path in self.list_daily_logs():
            entries.extend(parse_blocks(self._read_text(path)))
        return entries

    def _append_daily_log(self, entry: MemoryEntry) -> Path:
        path = self.daily_log_path(entry.created_at.astimezone().date())
        current = self._read_text(path)
        if not current.strip():
            current = f"# Daily Log: {path.stem}\n\n{TERMINATOR}\n"
        atomic_write(path, _ensure_terminated(current) + "\n" + serialize_entry(entry))
        return path

    # =========================================================================
    # Entry operations
    # =========================================================================

    def read_all(self) -> list[MemoryEntry]:
        """All entries: MEMORY.md first, then daily logs by date, file order within each."""
        return self.read_long_term() + self.read_daily_logs()

    def get(self, entry_id: str) -> MemoryEntry | None:
        for entry in self.read_all():
            if entry.id == entry_id:
                return entry
        return None

    def list_entries(self, kind: EntryKind | None = None, limit: int = 20) -> list[MemoryEntry]:
        """The last `limit` entries of read_all(), optionally of one kind."""
        entries = self.read_all()
        if kind is not None:
            entries = [e for e in entries if e.kind == kind]
        if limit <= 0:
            return []
        return entries[-limit:]

    def save(
        self,
        content: str,
        kind: EntryKind = "fact",
        tags: Iterable[str] | None = None,
        source: EntrySource = "agent",
        entry_id: str | None = None,
    ) -> MemoryEntry:
        entry, _ = self.persist(content, kind, tags, source, entry_id)
        return entry

    def persist(
        self,
        content: str,
        kind: EntryKind = "fact",
        tags: Iterable[str] | None = None,
        source: EntrySource = "agent",
        entry_id: str | None = None,
    ) -> tuple[MemoryEntry, list[MemoryEntry]]:
        """
        Saves an entry and reports what the capacity policy evicted.

        log → appended to today's daily file with a fresh id if the given one
        is taken; anything else → upserted into MEMORY.md by id, keeping
        createdAt and source of the previous version.

        Returns:
            (saved entry, entries dropped from MEMORY.md by trimming)
        """
        if kind not in ENTRY_KINDS:
            raise InvalidEntryError(f"unknown memory type: {kind!r}")
        if source not in ENTRY_SOURCES:
            raise InvalidEntryError(f"unknown memory source: {source!r}")

        content = (content or "").replace("\r\n", "\n").replace("\r", "\n").strip()
        if not content:
            raise InvalidEntryError("memory content is empty")

        if entry_id is not None:
            entry_id = entry_id.strip()
            if not _VALID_ID.fullmatch(entry_id):
                raise InvalidEntryError(f"invalid memory id: {entry_id!r}")

        tags = normalize_tags(tags)

        if kind == "log":
            return self._save_log(content, tags, source, entry_id), []
        return self._upsert_long_term(content, kind, tags, source, entry_id)

    def _save_log(
        self,
        content: str,
        tags: list[str],
        source: EntrySource,
        entry_id: str | None,
    ) -> MemoryEntry:
        if entry_id is not None and self.get(entry_id) is not None:
            logger.debug(f"Log id {entry_id} already taken, generating a fresh one")
            entry_id = None

        now = utcnow()
        entry = MemoryEntry(
            id=entry_id or new_entry_id(),
            kind="log",
            content=content,
            tags=tags,
            created_at=now,
            updated_at=now,
            source=source,
        )
        path = self._append_daily_log(entry)
        logger.debug(f"Appended to {path.name}: {content[:50]}...")
        return entry

    def _upsert_long_term(
        self,
        content: str,
        kind: EntryKind,
        tags: list[str],
        source: EntrySource,
        entry_id: str | None,
    ) -> tuple[MemoryEntry, list[MemoryEntry]]:
        entries = self.read_long_term()
        now = utcnow()

        existing = None
        if entry_id is not None:
            existing = next((e for e in entries if e.id == entry_id), None)
            if existing is None and any(e.id == entry_id for e in self.read_daily_logs()):
                raise ImmutableEntryError(f"memory {entry_id} is a daily log entry and cannot be updated")

        if existing is not None:
            entries = [e for e in entries if e.id != entry_id]
            entry = MemoryEntry(
                id=existing.id,
                kind=kind,
                content=content,
                tags=tags,
                created_at=existing.created_at,
                updated_at=max(now, existing.updated_at),
                source=existing.source,
            )
        else:
            entry = MemoryEntry(
                id=entry_id or new_entry_id(),
                kind=kind,
                content=content,
                tags=tags,
                created_at=now,
                updated_at=now,
                source=source,
            )

        entries.append(entry)
        kept, evicted = self._trim(entries)
        self._write_long_term(kept)

        action = "Updated" if existing is not None else "Saved"
        logger.debug(f"{action} {entry.kind} {entry.id}: {content[:50]}...")
        if evicted:
            logger.info(f"MEMORY.md over capacity ({self._max_facts}), dropped {len(evicted)} oldest entries")
        return entry, evicted

    def forget(self, entry_id: str) -> bool:
        """Removes an entry from MEMORY.md. Daily logs are never touched."""
        entries = self.read_long_term()
        kept = [e for e in entries if e.id != entry_id]
        if len(kept) == len(entries):
            return False

        self._write_long_term(kept)
        logger.debug(f"Forgot {entry_id}")
        return True

    @staticmethod
    def _read_text(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ""
