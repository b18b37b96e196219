"""Database adapters for the forms engine: Postgres pool and embedded SQLite."""

from __future__ import annotations

import os
import sqlite3
import time
from contextlib import contextmanager
import contextvars
from typing import Any, Iterable, Sequence

import psycopg2
from psycopg2.pool import SimpleConnectionPool
import threading
import logging

from structbi.database import POSTGRES, SQLITE, Dialect
from structbi.errors import DatabaseError
from structbi.results import ResultSet


def get_db_url() -> str:
    url = os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("SUPABASE_DB_URL or DATABASE_URL is required when USE_DB=1")
    return url


def use_db() -> bool:
    return os.getenv("USE_DB", "").strip() == "1"


_POOL: SimpleConnectionPool | None = None
_DB_MS = 0.0
_DB_LOCK = threading.Lock()
_logger = logging.getLogger("structbi.db")
_query_logger = logging.getLogger("structbi.db.query")
_DB_STATS: contextvars.ContextVar[dict] = contextvars.ContextVar("structbi_db_stats", default=None)
_DB_QUERY_LOG: contextvars.ContextVar[list] = contextvars.ContextVar("structbi_db_query_log", default=None)
_SLOW_MS = float(os.getenv("STRUCTBI_QUERY_SLOW_MS", "200"))
_LOG_ALL = os.getenv("STRUCTBI_QUERY_LOG", "").strip() == "1"


def _redact_params(params: Iterable[Any] | None) -> list[Any] | None:
    if params is None:
        return None
    redacted: list[Any] = []
    for val in params:
        if isinstance(val, (bytes, bytearray)):
            redacted.append(f"<bytes:{len(val)}>")
        elif isinstance(val, str) and len(val) > 80:
            redacted.append(f"{val[:40]}…{val[-10:]}")
        else:
            redacted.append(val)
    return redacted


def _log_query(
    *,
    query_name: str | None,
    sql: str,
    params: Iterable[Any] | None,
    elapsed_ms: float,
    rowcount: int | None,
) -> None:
    log = get_db_query_log()
    log.append(query_name or "unnamed")
    _DB_QUERY_LOG.set(log)
    if not _LOG_ALL and elapsed_ms < _SLOW_MS:
        return
    message = {
        "query": query_name or "unnamed",
        "ms": round(elapsed_ms, 2),
        "rowcount": rowcount,
        "params": _redact_params(params),
    }
    if elapsed_ms >= _SLOW_MS:
        _query_logger.warning("db_slow_query=%s sql=%s", message, sql)
    else:
        _query_logger.info("db_query=%s", message)


def reset_db_ms() -> None:
    global _DB_MS
    with _DB_LOCK:
        _DB_MS = 0.0
    _DB_STATS.set({"queries": 0, "acquire_ms": 0.0, "total_ms": 0.0})
    _DB_QUERY_LOG.set([])


def get_db_stats() -> dict:
    stats = _DB_STATS.get()
    if not isinstance(stats, dict):
        return {"queries": 0, "acquire_ms": 0.0, "total_ms": 0.0}
    return stats


def get_db_query_log() -> list:
    log = _DB_QUERY_LOG.get()
    if not isinstance(log, list):
        return []
    return log


def add_db_ms(delta: float) -> None:
    global _DB_MS
    with _DB_LOCK:
        _DB_MS += delta
    stats = get_db_stats()
    stats["total_ms"] = stats.get("total_ms", 0.0) + delta
    stats["queries"] = stats.get("queries", 0) + 1
    _DB_STATS.set(stats)


def add_db_acquire_ms(delta: float) -> None:
    stats = get_db_stats()
    stats["acquire_ms"] = stats.get("acquire_ms", 0.0) + delta
    _DB_STATS.set(stats)


def get_db_ms() -> float:
    with _DB_LOCK:
        return _DB_MS


def to_pyformat(sql: str) -> str:
    """Rewrite ``?`` placeholders to psycopg2's ``%s``; literal ``%`` is doubled."""
    out: list[str] = []
    quote: str | None = None
    for ch in sql:
        if ch == "%":
            out.append("%%")
            continue
        if quote:
            if ch == quote:
                quote = None
            out.append(ch)
            continue
        if ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif ch == "?":
            out.append("%s")
        else:
            out.append(ch)
    return "".join(out)


def _timed(run):
    def wrapper(self, sql: str, params: Sequence[Any] = (), query_name: str | None = None) -> ResultSet:
        start = time.perf_counter()
        result = run(self, sql, params, query_name)
        elapsed_ms = (time.perf_counter() - start) * 1000
        add_db_ms(elapsed_ms)
        _log_query(query_name=query_name, sql=sql, params=params, elapsed_ms=elapsed_ms, rowcount=result.rowcount)
        return result

    return wrapper


def init_pool(minconn: int | None = None, maxconn: int | None = None) -> SimpleConnectionPool:
    global _POOL
    if _POOL is None:
        if minconn is None:
            minconn = int(os.getenv("STRUCTBI_DB_POOL_MIN", "1"))
        if maxconn is None:
            maxconn = int(os.getenv("STRUCTBI_DB_POOL_MAX", "10"))
        _POOL = SimpleConnectionPool(minconn, maxconn, dsn=get_db_url())
    return _POOL


class PostgresDatabase:
    """psycopg2 pool; every statement commits on its own connection checkout."""

    dialect: Dialect = POSTGRES

    def __init__(self, pool: SimpleConnectionPool | None = None) -> None:
        self._pool = pool

    @property
    def pool(self) -> SimpleConnectionPool:
        if self._pool is None:
            self._pool = init_pool()
        return self._pool

    @contextmanager
    def get_conn(self):
        acquire_start = time.perf_counter()
        conn = self.pool.getconn()
        add_db_acquire_ms((time.perf_counter() - acquire_start) * 1000)
        _logger.debug("db_conn borrowed")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.pool.putconn(conn)
            _logger.debug("db_conn returned")

    @_timed
    def run(self, sql: str, params: Sequence[Any] = (), query_name: str | None = None) -> ResultSet:
        try:
            with self.get_conn() as conn:
                with conn.cursor() as cur:
                    cur.execute(to_pyformat(sql), list(params))
                    if cur.description is None:
                        return ResultSet(rowcount=cur.rowcount)
                    columns = [col[0] for col in cur.description]
                    return ResultSet(columns, cur.fetchall(), cur.rowcount)
        except psycopg2.Error as exc:
            _logger.warning("db_error query=%s pgcode=%s error=%s", query_name or "unnamed", exc.pgcode, exc)
            raise DatabaseError(str(exc).strip()) from exc


class SqliteDatabase:
    """Embedded backend for development and tests; one shared connection behind a lock."""

    dialect: Dialect = SQLITE

    def __init__(self, path: str | None = None) -> None:
        self.path = path or os.getenv("STRUCTBI_SQLITE_PATH", ":memory:")
        self._conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.Lock()

    @_timed
    def run(self, sql: str, params: Sequence[Any] = (), query_name: str | None = None) -> ResultSet:
        with self._lock:
            try:
                cur = self._conn.execute(sql, list(params))
                if cur.description is None:
                    return ResultSet(rowcount=cur.rowcount)
                columns = [col[0] for col in cur.description]
                rows = cur.fetchall()
                return ResultSet(columns, rows, cur.rowcount)
            except sqlite3.Error as exc:
                _logger.warning("db_error query=%s error=%s", query_name or "unnamed", exc)
                raise DatabaseError(str(exc)) from exc

    def close(self) -> None:
        self._conn.close()


def open_database():
    if use_db():
        _logger.info("db_backend=postgres")
        return PostgresDatabase()
    _logger.info("db_backend=sqlite path=%s", os.getenv("STRUCTBI_SQLITE_PATH", ":memory:"))
    return SqliteDatabase()
