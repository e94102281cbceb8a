"""
Memory Index — full-text search over memory entries.

Uses:
- FTS5 (SQLite) for BM25 ranking and snippets
- substring matching as a fallback when the FTS query cannot be parsed

The index is a cache: memory.db can be deleted at any time and is rebuilt
from MEMORY.md + daily logs on startup.
"""

import json
import re
import sqlite3
from datetime import datetime
from pathlib import Path

from loguru import logger

from openpaw.memory.models import MemoryEntry, SearchResult


COLUMNS = (
    "id",
    "kind",
    "content",
    "tags",
    "tags_json",
    "source",
    "created_at",
    "updated_at",
)

# Column of `content` for snippet()
CONTENT_COLUMN = 2
SNIPPET_TOKENS = 16
SNIPPET_MARKERS = ("[", "]")
PREVIEW_CHARS = 120

# Substring matches have no relevance signal
FALLBACK_SCORE = 1.0

_FTS_SYNTAX = re.compile(r'["*()^]')
# `:` is FTS5 syntax only as a column filter ("tags: work", "{content tags}: x")
_COLUMN_FILTER = re.compile(r"(?:\b(?:content|tags)|\})\s*:")
_NEEDLE_NOISE = re.compile(r'["*():^{}]')
_FTS_OPERATOR = re.compile(r"\b(?:AND|OR|NOT|NEAR)\b")
_TERM = re.compile(r"\w+")


def tokenize(text: str) -> list[str]:
    """Lower-cased word runs, the way the unicode61 tokenizer splits text."""
    return _TERM.findall(text.lower())


class MemoryIndex:
    """
    Full-text index over memory entries.

    DB structure:
    - memory_fts: FTS5 table, `content` and `tags` indexed, the rest stored
      UNINDEXED so a hit can be turned back into a MemoryEntry
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _get_conn(self) -> sqlite3.Connection:
        """Returns the connection, recreating a corrupt artifact."""
        if self._conn is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                self._conn = self._open()
            except sqlite3.DatabaseError as e:
                logger.warning(f"Index {self._db_path.name} unreadable ({e}), recreating")
                self._discard_artifact()
                self._conn = self._open()
        return self._conn

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            self._init_schema(conn)
        except sqlite3.DatabaseError:
            conn.close()
            raise
        return conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        """Creates the FTS table, replacing one with a different column set."""
        existing = [row[1] for row in conn.execute("PRAGMA table_info(memory_fts)")]
        if existing and tuple(existing) != COLUMNS:
            logger.info("Index schema changed, dropping memory_fts")
            conn.execute("DROP TABLE memory_fts")

        conn.execute("""
            CREATE VIRTUAL TABLE IF NOT EXISTS memory_fts USING fts5(
                id UNINDEXED,
                kind UNINDEXED,
                content,
                tags,
                tags_json UNINDEXED,
                source UNINDEXED,
                created_at UNINDEXED,
                updated_at UNINDEXED,
                tokenize = 'unicode61'
            )
        """)
        conn.commit()

    def _discard_artifact(self) -> None:
        for suffix in ("", "-wal", "-shm"):
            Path(f"{self._db_path}{suffix}").unlink(missing_ok=True)

    # =========================================================================
    # Indexing
    # =========================================================================

    @staticmethod
    def _to_row(entry: MemoryEntry) -> tuple:
        return (
            entry.id,
            entry.kind,
            entry.content,
            " ".join(entry.tags),
            json.dumps(entry.tags, ensure_ascii=False),
            entry.source,
            entry.created_at.isoformat(),
            entry.updated_at.isoformat(),
        )

    @staticmethod
    def _to_entry(row: sqlite3.Row) -> MemoryEntry:
        return MemoryEntry(
            id=row["id"],
            kind=row["kind"],
            content=row["content"],
            tags=json.loads(row["tags_json"] or "[]"),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            source=row["source"],
        )

    _INSERT = f"INSERT INTO memory_fts({', '.join(COLUMNS)}) VALUES ({', '.join('?' * len(COLUMNS))})"

    def rebuild(self, entries: list[MemoryEntry]) -> int:
        """
        Discards the index and indexes every entry, in the given order.

        Returns:
            Number of indexed entries.
        """
        conn = self._get_conn()
        with conn:
            conn.execute("DELETE FROM memory_fts")
            conn.executemany(self._INSERT, [self._to_row(e) for e in entries])
        logger.info(f"Memory index rebuilt ({len(entries)} entries)")
        return len(entries)

    def upsert(self, entry: MemoryEntry) -> None:
        """Replaces the postings of entry.id."""
        conn = self._get_conn()
        with conn:
            conn.execute("DELETE FROM memory_fts WHERE id = ?", (entry.id,))
            conn.execute(self._INSERT, self._to_row(entry))

    def remove(self, entry_id: str) -> bool:
        conn = self._get_conn()
        with conn:
            cursor = conn.execute("DELETE FROM memory_fts WHERE id = ?", (entry_id,))
        return cursor.rowcount > 0

    def count(self) -> int:
        row = self._get_conn().execute("SELECT count(*) FROM memory_fts").fetchone()
        return row[0]

    # =========================================================================
    # Search
    # =========================================================================

    @staticmethod
    def build_match(query: str) -> str | None:
        """
        Turns a user query into an FTS5 MATCH expression.

        Queries that already use FTS5 syntax (phrases, prefixes, operators,
        column filters) pass through as-is; plain text becomes an OR of
        quoted terms.
        """
        if _FTS_SYNTAX.search(query) or _COLUMN_FILTER.search(query) or _FTS_OPERATOR.search(query):
            return query
        terms = list(dict.fromkeys(tokenize(query)))
        if not terms:
            return None
        return " OR ".join(f'"{term}"' for term in terms)

    def search(self, query: str, limit: int = 5) -> list[SearchResult]:
        """
        BM25 search.

        Args:
            query: Search query (plain words or FTS5 syntax)
            limit: Max results

        Returns:
            SearchResult list, most relevant first. Equal scores keep
            insertion order.
        """
        query = (query or "").strip()
        if not query or limit <= 0:
            return []

        match = self.build_match(query)
        if match is None:
            return []

        conn = self._get_conn()
        open_mark, close_mark = SNIPPET_MARKERS
        try:
            rows = conn.execute(
                f"""
                SELECT {', '.join(COLUMNS)},
                       -bm25(memory_fts) AS score,
                       snippet(memory_fts, {CONTENT_COLUMN}, ?, ?, '...', {SNIPPET_TOKENS}) AS snippet
                FROM memory_fts
                WHERE memory_fts MATCH ?
                ORDER BY score DESC, rowid ASC
                LIMIT ?
                """,
                (open_mark, close_mark, match, limit),
            ).fetchall()
        except sqlite3.OperationalError as e:
            logger.warning(f"FTS query {query!r} failed ({e}), falling back to substring match")
            return self._search_substring(query, limit)

        results = []
        for row in rows:
            entry = self._to_entry(row)
            results.append(SearchResult(
                entry=entry,
                score=float(row["score"]),
                snippet=row["snippet"] or entry.content[:PREVIEW_CHARS],
            ))
        return results

    def _search_substring(self, query: str, limit: int) -> list[SearchResult]:
        """
        Case-insensitive substring match over content and tags. Never raises.

        The query is tried as typed first, then with FTS5 syntax characters
        removed ('Bob"' → "bob").
        """
        raw = " ".join(query.split()).casefold()
        stripped = " ".join(_NEEDLE_NOISE.sub(" ", query).split()).casefold()
        needles = [n for n in dict.fromkeys((raw, stripped)) if n]
        if not needles:
            return []

        try:
            rows = self._get_conn().execute(
                f"SELECT {', '.join(COLUMNS)} FROM memory_fts ORDER BY rowid"
            ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Substring search failed: {e}")
            return []

        entries = [self._to_entry(row) for row in rows]
        for needle in needles:
            results = []
            for entry in entries:
                haystacks = [entry.content, *entry.tags]
                if any(needle in text.casefold() for text in haystacks):
                    results.append(SearchResult(
                        entry=entry,
                        score=FALLBACK_SCORE,
                        snippet=entry.content[:PREVIEW_CHARS],
                    ))
                    if len(results) >= limit:
                        break
            if results:
                return results
        return []

    def close(self) -> None:
        """Closes the connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
