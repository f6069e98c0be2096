from __future__ import annotations

import os
import re
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Iterator

from .migrations import apply_migrations

DEFAULT_DATA_DIR = "./data"
_INSERT_OR_IGNORE = re.compile(r"\bINSERT\s+OR\s+IGNORE\b", re.IGNORECASE)

_MIGRATIONS_APPLIED: set[str] = set()
_MIGRATIONS_LOCK = threading.Lock()


def get_db_url() -> str | None:
    url = os.environ.get("BC_DB_URL", "").strip()
    return url or None


def is_postgres_url(url: str | None) -> bool:
    if not url:
        return False
    return url.startswith("postgres://") or url.startswith("postgresql://")


def get_state_db_path() -> str:
    data_dir = os.environ.get("BC_DATA_DIR", DEFAULT_DATA_DIR)
    return os.path.join(data_dir, "state.sqlite3")


class DBConn:
    def __init__(self, conn: Any, backend: str) -> None:
        self._conn = conn
        self.backend = backend

    def execute(self, sql: str, params: tuple | list | None = None):
        sql = _normalize_sql(sql, self.backend)
        params = params or ()
        cursor = self._conn.cursor()
        cursor.execute(sql, params)
        return cursor

    def executemany(self, sql: str, seq_of_params):
        sql = _normalize_sql(sql, self.backend)
        cursor = self._conn.cursor()
        cursor.executemany(sql, seq_of_params)
        return cursor

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator["DBConn"]:
        try:
            yield self
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def __getattr__(self, name: str):
        return getattr(self._conn, name)


def connect_db(path: str | None = None) -> DBConn:
    url = get_db_url()
    if url and is_postgres_url(url):
        try:
            import psycopg
        except ImportError as exc:  # pragma: no cover - depends on env
            raise RuntimeError("psycopg is required for PostgreSQL support") from exc
        conn = DBConn(psycopg.connect(url), "postgres")
        _ensure_migrated(conn, f"postgres:{url}")
        return conn

    path = path or get_state_db_path()
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    raw = sqlite3.connect(path, timeout=30)
    raw.execute("PRAGMA journal_mode=WAL")
    raw.execute("PRAGMA synchronous=NORMAL")
    raw.execute("PRAGMA busy_timeout=5000")
    raw.execute("PRAGMA foreign_keys=ON")
    conn = DBConn(raw, "sqlite")
    _ensure_migrated(conn, f"sqlite:{os.path.abspath(path)}")
    return conn


def _ensure_migrated(conn: DBConn, key: str) -> None:
    with _MIGRATIONS_LOCK:
        if key in _MIGRATIONS_APPLIED:
            return
        apply_migrations(conn)
        _MIGRATIONS_APPLIED.add(key)


def _normalize_sql(sql: str, backend: str) -> str:
    """Translate the SQLite dialect used by storage into PostgreSQL."""
    if backend != "postgres":
        return sql
    if sql.strip().upper() == "BEGIN IMMEDIATE":
        return "BEGIN"
    if _INSERT_OR_IGNORE.search(sql):
        sql = _INSERT_OR_IGNORE.sub("INSERT", sql, count=1)
        if "ON CONFLICT" not in sql.upper():
            sql = sql.rstrip().rstrip(";") + " ON CONFLICT DO NOTHING"
    return _placeholders_to_pyformat(sql)


def _placeholders_to_pyformat(sql: str) -> str:
    # Quoted literals and identifiers keep their question marks.
    parts = []
    quote: str | None = None
    for ch in sql:
        if quote is None and ch in ("'", '"'):
            quote = ch
        elif ch == quote:
            quote = None
        parts.append("%s" if ch == "?" and quote is None else ch)
    return "".join(parts)
