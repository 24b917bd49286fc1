"""
Lab Pool — SQLite Backend

One shared sqlite3 connection per database file, used by the item store
and the custody audit trail. All access goes through a re-entrant lock,
which is what turns the store's `UPDATE ... WHERE version = ?` into an
atomic compare-and-swap when many request threads share one pool.

    db = SQLiteBackend("labpool.db", busy_timeout=5000)
    db.executescript(SCHEMA)
    with db.transaction():
        row = db.fetchone("SELECT ... WHERE item_id = ?", (item_id,))
        db.execute("UPDATE ...", params)

Faults the caller can only wait out (locked file, disk I/O, a closed
connection) surface as DatabaseUnavailable; malformed SQL and constraint
violations keep their sqlite3 types.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Iterator

logger = logging.getLogger("labpool.db")


class DatabaseUnavailable(Exception):
    """The database cannot serve the request right now."""


@contextmanager
def _faults_as_unavailable() -> Iterator[None]:
    try:
        yield
    except sqlite3.OperationalError as e:
        raise DatabaseUnavailable(str(e)) from e
    except sqlite3.ProgrammingError as e:
        if "closed" in str(e).lower():
            raise DatabaseUnavailable(str(e)) from e
        raise


class SQLiteBackend:
    """Serialized access to one SQLite database; rows come back as dicts."""

    def __init__(self, path: str = ":memory:", busy_timeout: int = 5000, wal: bool = True):
        self.path = path
        self._lock = threading.RLock()
        self._depth = 0
        with _faults_as_unavailable():
            self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout)}")
            if wal and path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
        logger.debug("Opened SQLite database %s", path)

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock, _faults_as_unavailable():
            return self._conn.execute(sql, params)

    def executescript(self, script: str) -> None:
        with self._lock, _faults_as_unavailable():
            self._conn.executescript(script)

    def fetchone(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        with self._lock, _faults_as_unavailable():
            row = self._conn.execute(sql, params).fetchone()
        return dict(row) if row is not None else None

    def fetchall(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        with self._lock, _faults_as_unavailable():
            rows = self._conn.execute(sql, params).fetchall()
        return [dict(r) for r in rows]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Hold the lock and a write transaction for the block. Nested use
        joins the outer transaction; only the outermost commits or rolls back.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            with _faults_as_unavailable():
                self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
                with _faults_as_unavailable():
                    self._conn.execute("COMMIT")
            except BaseException:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise
            finally:
                self._depth = 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()
