"""
Event ledger (SQLite, append-only)

Purpose
-------
Remember every item the pipeline has acted on so restarts and duplicate
deliveries never alert twice.

Design
------
- One table: events(hash TEXT UNIQUE, ...). Rows are never updated or deleted.
- ``claim()`` is the atomic insert-if-absent primitive: a single
  ``INSERT OR IGNORE`` under the store lock, ``rowcount == 1`` means the
  caller won the item.
- Positive ``seen()`` results are cached in an LRU. Nothing is ever
  removed, so a cached positive can never go stale. Negatives are not cached.
- Connections are thread-local (workers reach the ledger via
  ``asyncio.to_thread``) and all are closed by ``close()``.

Env
---
DB_PATH            (default: "data/events.db")
LEDGER_CACHE_SIZE  (default: "2048")
"""

from __future__ import annotations

import hashlib
import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple, Union

import cachetools

from .config import get_settings
from .logging_utils import get_logger
from .models import LedgerRecord, RawItem
from .storage import init_optimized_connection

log = get_logger("ledger")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    hash TEXT NOT NULL UNIQUE,
    provider_id TEXT,
    source TEXT NOT NULL,
    title TEXT NOT NULL,
    url TEXT,
    symbols TEXT NOT NULL,
    klass TEXT,
    score REAL,
    published_at TEXT,
    created_at INTEGER NOT NULL
)
"""

_INSERT = """
INSERT OR IGNORE INTO events
    (hash, provider_id, source, title, url, symbols, klass, score, published_at, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


class Ledger:
    def __init__(
        self,
        path: Union[str, Path, None] = None,
        cache_size: Optional[int] = None,
    ):
        s = get_settings()
        self.path = str(path if path is not None else s.db_path)
        if self.path == ":memory:":
            # each worker thread would get its own empty database
            raise ValueError("ledger needs a file path; :memory: is per-connection")
        self._lock = threading.Lock()
        self._thread_local = threading.local()
        self._conns: List[sqlite3.Connection] = []
        self._cache: cachetools.LRUCache = cachetools.LRUCache(
            maxsize=max(1, int(cache_size or s.ledger_cache_size))
        )
        self._closed = False
        self._init_schema()

    @staticmethod
    def make_hash(title: Optional[str], url: Optional[str], source: Optional[str]) -> str:
        """Stable identity of an item: sha256 of ``source|title|url``."""
        key = f"{source or ''}|{title or ''}|{url or ''}"
        return hashlib.sha256(key.encode("utf-8")).hexdigest()

    @classmethod
    def hash_item(cls, item: RawItem) -> str:
        return cls.make_hash(item.title, item.url, item.source)

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._thread_local, "conn", None)
        if conn is None:
            if self._closed:
                raise sqlite3.ProgrammingError("ledger is closed")
            conn = init_optimized_connection(self.path, timeout=30, check_same_thread=False)
            self._thread_local.conn = conn
            with self._lock:
                self._conns.append(conn)
            log.debug(
                "ledger_thread_connection_created thread_id=%s",
                threading.current_thread().ident,
            )
        return conn

    def _init_schema(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute(_SCHEMA)
            conn.commit()
            log.info("ledger_initialized path=%s", self.path)
        except sqlite3.Error as e:
            log.error("ledger_schema_init_failed err=%s", str(e), exc_info=True)
            raise

    def _row(
        self, h: str, item: RawItem, category: Optional[str], score: Optional[float]
    ) -> Tuple:
        return (
            h,
            item.id,
            item.source,
            item.title,
            item.url,
            json.dumps(list(item.symbols)),
            category,
            None if score is None else float(score),
            item.published_at,
            int(time.time()),
        )

    def seen(self, h: str) -> bool:
        with self._lock:
            if self._cache.get(h):
                return True
        conn = self._get_connection()
        row = conn.execute("SELECT 1 FROM events WHERE hash = ? LIMIT 1", (h,)).fetchone()
        if row is None:
            return False
        with self._lock:
            self._cache[h] = True
        return True

    def save(
        self,
        item: RawItem,
        category: Optional[str] = None,
        score: Optional[float] = None,
    ) -> str:
        """Insert ``item`` if absent and return its hash; re-saving is a no-op."""
        h, _ = self.claim(item, category=category, score=score)
        return h

    def claim(
        self,
        item: RawItem,
        category: Optional[str] = None,
        score: Optional[float] = None,
    ) -> Tuple[str, bool]:
        """
        Atomically record ``item`` unless it is already present.

        Returns ``(hash, inserted)``.  Exactly one of any number of concurrent
        callers for the same hash sees ``inserted=True``.
        """
        h = self.hash_item(item)
        conn = self._get_connection()
        with self._lock:
            try:
                cur = conn.execute(_INSERT, self._row(h, item, category, score))
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            inserted = cur.rowcount == 1
            self._cache[h] = True
        log.debug("ledger_claimed hash=%s inserted=%s", h[:12], inserted)
        return h, inserted

    def get(self, h: str) -> Optional[LedgerRecord]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT hash, provider_id, source, title, url, symbols, klass, score, "
            "published_at, created_at FROM events WHERE hash = ?",
            (h,),
        ).fetchone()
        if row is None:
            return None
        try:
            symbols = tuple(json.loads(row[5] or "[]"))
        except ValueError:
            symbols = ()
        return LedgerRecord(
            hash=row[0],
            provider_id=row[1],
            source=row[2],
            title=row[3],
            url=row[4],
            symbols=symbols,
            category=row[6],
            score=row[7],
            published_at=row[8],
            created_at=int(row[9]),
        )

    def count(self) -> int:
        conn = self._get_connection()
        (n,) = conn.execute("SELECT COUNT(*) FROM events").fetchone()
        return int(n)

    def close(self) -> None:
        """Close every connection opened by any thread and truncate the WAL."""
        with self._lock:
            conns, self._conns = self._conns, []
            self._closed = True
        for conn in conns:
            try:
                conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            except sqlite3.Error as e:
                log.warning("ledger_checkpoint_failed err=%s", str(e))
            conn.close()
        self._thread_local = threading.local()
        log.debug("ledger_closed connections=%d", len(conns))

    def __enter__(self) -> "Ledger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
