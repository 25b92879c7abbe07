# src/neon_pr/storage.py
from __future__ import annotations

import os
import pathlib
import sqlite3


def _ensure_dir(p: str):
    pathlib.Path(os.path.dirname(p) or ".").mkdir(parents=True, exist_ok=True)


def init_optimized_connection(
    db_path: str, timeout: int = 30, check_same_thread: bool = True
) -> sqlite3.Connection:
    """
    Open a SQLite connection tuned for a single writer with concurrent readers.

    Parameters
    ----------
    db_path : str
        Path to SQLite database file
    timeout : int, optional
        Busy timeout in seconds (default: 30)
    check_same_thread : bool, optional
        Passed to sqlite3; False lets an owner close the handle from another thread

    Environment Variables
    --------------------
    SQLITE_WAL_MODE : str
        Enable Write-Ahead Logging (1=on, 0=off, default: 1)
    SQLITE_SYNCHRONOUS : str
        Synchronous mode (FULL, NORMAL, OFF; default: NORMAL)
    SQLITE_CACHE_SIZE : str
        Cache size in pages (default: 2000)
    """
    if db_path != ":memory:":
        _ensure_dir(db_path)
    conn = sqlite3.connect(db_path, timeout=timeout, check_same_thread=check_same_thread)

    if os.getenv("SQLITE_WAL_MODE", "1") == "1":
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA wal_autocheckpoint=500")

    synchronous_mode = os.getenv("SQLITE_SYNCHRONOUS", "NORMAL").upper()
    if synchronous_mode not in {"FULL", "NORMAL", "OFF"}:
        synchronous_mode = "NORMAL"
    conn.execute(f"PRAGMA synchronous={synchronous_mode}")

    cache_size = int(os.getenv("SQLITE_CACHE_SIZE", "2000"))
    conn.execute(f"PRAGMA cache_size={cache_size}")
    conn.execute("PRAGMA temp_store=MEMORY")
    return conn
