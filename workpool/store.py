"""
Lab Pool — Item Store

Durable record of pool items keyed by item_id. The single source of
truth for item state; every other component reads and writes through it.

Contract:
  - get(item_id)                       read by id, None if unknown
  - list_items(...)                    read by filter
  - insert(item)                       create (upstream intake only)
  - compare_and_set(item, expected)    write iff stored version == expected,
                                       returns False on mismatch

The conditional write is the primitive atomic claiming is built on. A
version mismatch is a normal outcome, never an exception. The store does
not know the state machine; it only guards the version counter.

Implementations:
  - InMemoryItemStore:   dev/test, same process
  - SQLiteItemStore:     durable, single UPDATE ... WHERE version = ?
  - ResilientItemStore:  wraps either with transport retry + circuit breaker
"""

from __future__ import annotations

import abc
import json
import sqlite3
import threading
from typing import Any, Iterable

from engine.db import DatabaseUnavailable, SQLiteBackend
from engine.retry import Retrier, RetryPolicy
from workpool.errors import StoreUnavailable
from workpool.types import ItemStatus, PoolItem, ResultEntry, Urgency


# ─── Abstract Store Interface ────────────────────────────────────────

class ItemStore(abc.ABC):
    """
    Abstract item store. Implementations handle persistence.
    Items returned are copies; mutating them never changes stored state.
    """

    @abc.abstractmethod
    def insert(self, item: PoolItem) -> PoolItem:
        """Persist a new item. Raises ValueError on duplicate id."""
        ...

    @abc.abstractmethod
    def get(self, item_id: str) -> PoolItem | None:
        """Get an item by id."""
        ...

    @abc.abstractmethod
    def list_items(
        self,
        status: ItemStatus | str | None = None,
        statuses: Iterable[ItemStatus | str] | None = None,
        urgency: Urgency | str | None = None,
        owner_id: str | None = None,
        closed_by: str | None = None,
        kind: str | None = None,
        group_id: str | None = None,
        eligible: bool | None = None,
    ) -> list[PoolItem]:
        """List items matching every given filter, oldest first."""
        ...

    @abc.abstractmethod
    def compare_and_set(self, item: PoolItem, expected_version: int) -> bool:
        """
        Replace the stored item iff its version equals expected_version.
        The new state must carry version expected_version + 1.
        """
        ...

    def ping(self) -> bool:
        """Readiness probe."""
        self.list_items(status=ItemStatus.PENDING, kind="__ping__")
        return True


def _check_next_version(item: PoolItem, expected_version: int) -> None:
    if item.version != expected_version + 1:
        raise ValueError(
            f"Item {item.item_id}: new version must be {expected_version + 1}, "
            f"got {item.version}"
        )


def _matches(
    item: PoolItem,
    status: ItemStatus | None,
    statuses: set[ItemStatus] | None,
    urgency: Urgency | None,
    owner_id: str | None,
    closed_by: str | None,
    kind: str | None,
    group_id: str | None,
    eligible: bool | None,
) -> bool:
    if status is not None and item.status != status:
        return False
    if statuses is not None and item.status not in statuses:
        return False
    if urgency is not None and item.urgency != urgency:
        return False
    if owner_id is not None and item.owner_id != owner_id:
        return False
    if closed_by is not None and item.closed_by != closed_by:
        return False
    if kind is not None and item.kind != kind:
        return False
    if group_id is not None and item.group_id != group_id:
        return False
    if eligible is not None and item.eligible != eligible:
        return False
    return True


# ─── In-Memory Implementation ────────────────────────────────────────

class InMemoryItemStore(ItemStore):
    """In-process item store for dev/test. One lock guards every access."""

    def __init__(self):
        self._items: dict[str, PoolItem] = {}
        self._lock = threading.Lock()

    def insert(self, item: PoolItem) -> PoolItem:
        with self._lock:
            if item.item_id in self._items:
                raise ValueError(f"Duplicate item id: {item.item_id}")
            self._items[item.item_id] = item.copy()
        return item.copy()

    def get(self, item_id: str) -> PoolItem | None:
        with self._lock:
            item = self._items.get(item_id)
            return item.copy() if item else None

    def list_items(
        self,
        status=None,
        statuses=None,
        urgency=None,
        owner_id=None,
        closed_by=None,
        kind=None,
        group_id=None,
        eligible=None,
    ) -> list[PoolItem]:
        st = ItemStatus(status) if status else None
        sts = {ItemStatus(s) for s in statuses} if statuses is not None else None
        urg = Urgency(urgency) if urgency else None
        with self._lock:
            items = [
                i.copy() for i in self._items.values()
                if _matches(i, st, sts, urg, owner_id, closed_by, kind, group_id, eligible)
            ]
        return sorted(items, key=lambda i: i.created_at)

    def compare_and_set(self, item: PoolItem, expected_version: int) -> bool:
        _check_next_version(item, expected_version)
        with self._lock:
            current = self._items.get(item.item_id)
            if current is None or current.version != expected_version:
                return False
            self._items[item.item_id] = item.copy()
            return True


# ─── SQLite Implementation ───────────────────────────────────────────

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS pool_items (
        item_id TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'PENDING',
        urgency TEXT NOT NULL DEFAULT 'ROUTINE',
        owner_id TEXT,
        version INTEGER NOT NULL DEFAULT 0,
        group_id TEXT DEFAULT '',
        eligible INTEGER NOT NULL DEFAULT 1,
        payload TEXT DEFAULT '{}',
        result TEXT,
        notes TEXT DEFAULT '',
        cancellation_reason TEXT,
        closed_by TEXT,
        created_at REAL NOT NULL,
        claimed_at REAL,
        started_at REAL,
        completed_at REAL,
        cancelled_at REAL
    );
    CREATE INDEX IF NOT EXISTS idx_pool_status ON pool_items(status);
    CREATE INDEX IF NOT EXISTS idx_pool_owner ON pool_items(owner_id);
    CREATE INDEX IF NOT EXISTS idx_pool_group ON pool_items(group_id);
"""

_MUTABLE_COLUMNS = (
    "status", "owner_id", "version", "eligible", "result", "notes",
    "cancellation_reason", "closed_by",
    "claimed_at", "started_at", "completed_at", "cancelled_at",
)


class SQLiteItemStore(ItemStore):
    """
    SQLite-backed item store.

    compare_and_set is a single UPDATE guarded by `version = ?`; the
    backend lock plus SQLite's write lock make it a true CAS, so of two
    writers holding the same expected version exactly one sees rowcount 1.
    """

    def __init__(self, db: SQLiteBackend | str = ":memory:"):
        self.db = SQLiteBackend(path=db) if isinstance(db, str) else db
        self._guard(self.db.executescript, _SCHEMA)

    @staticmethod
    def _guard(fn, *args):
        try:
            return fn(*args)
        except DatabaseUnavailable as e:
            raise StoreUnavailable(f"item store unavailable: {e}") from e

    def insert(self, item: PoolItem) -> PoolItem:
        row = self._item_to_row(item)
        cols = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        try:
            self._guard(
                self.db.execute,
                f"INSERT INTO pool_items ({cols}) VALUES ({marks})",
                tuple(row.values()),
            )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Duplicate item id: {item.item_id}") from e
        return item.copy()

    def get(self, item_id: str) -> PoolItem | None:
        row = self._guard(
            self.db.fetchone,
            "SELECT * FROM pool_items WHERE item_id = ?", (item_id,),
        )
        return self._row_to_item(row) if row else None

    def list_items(
        self,
        status=None,
        statuses=None,
        urgency=None,
        owner_id=None,
        closed_by=None,
        kind=None,
        group_id=None,
        eligible=None,
    ) -> list[PoolItem]:
        query = "SELECT * FROM pool_items WHERE 1=1"
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(ItemStatus(status).value)
        if statuses is not None:
            values = [ItemStatus(s).value for s in statuses]
            if not values:
                return []
            query += f" AND status IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        if urgency:
            query += " AND urgency = ?"
            params.append(Urgency(urgency).value)
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        if closed_by is not None:
            query += " AND closed_by = ?"
            params.append(closed_by)
        if kind is not None:
            query += " AND kind = ?"
            params.append(kind)
        if group_id is not None:
            query += " AND group_id = ?"
            params.append(group_id)
        if eligible is not None:
            query += " AND eligible = ?"
            params.append(1 if eligible else 0)
        query += " ORDER BY created_at ASC"
        rows = self._guard(self.db.fetchall, query, tuple(params))
        return [self._row_to_item(r) for r in rows]

    def compare_and_set(self, item: PoolItem, expected_version: int) -> bool:
        _check_next_version(item, expected_version)
        row = self._item_to_row(item)
        sets = ", ".join(f"{c} = ?" for c in _MUTABLE_COLUMNS)
        params = tuple(row[c] for c in _MUTABLE_COLUMNS) + (item.item_id, expected_version)
        cursor = self._guard(
            self.db.execute,
            f"UPDATE pool_items SET {sets} WHERE item_id = ? AND version = ?",
            params,
        )
        return cursor.rowcount == 1

    def close(self):
        self.db.close()

    @staticmethod
    def _item_to_row(item: PoolItem) -> dict[str, Any]:
        return {
            "item_id": item.item_id,
            "kind": item.kind,
            "status": item.status.value,
            "urgency": item.urgency.value,
            "owner_id": item.owner_id,
            "version": item.version,
            "group_id": item.group_id,
            "eligible": 1 if item.eligible else 0,
            "payload": json.dumps(item.payload, default=str),
            "result": (
                json.dumps([r.to_dict() for r in item.result])
                if item.result is not None else None
            ),
            "notes": item.notes,
            "cancellation_reason": item.cancellation_reason,
            "closed_by": item.closed_by,
            "created_at": item.created_at,
            "claimed_at": item.claimed_at,
            "started_at": item.started_at,
            "completed_at": item.completed_at,
            "cancelled_at": item.cancelled_at,
        }

    @staticmethod
    def _row_to_item(row: dict[str, Any]) -> PoolItem:
        result = None
        if row["result"] is not None:
            result = [ResultEntry.from_dict(r) for r in json.loads(row["result"])]
        return PoolItem(
            item_id=row["item_id"],
            kind=row["kind"],
            status=ItemStatus(row["status"]),
            urgency=Urgency(row["urgency"]),
            created_at=row["created_at"],
            payload=json.loads(row["payload"] or "{}"),
            owner_id=row["owner_id"],
            version=row["version"],
            group_id=row["group_id"] or "",
            eligible=bool(row["eligible"]),
            result=result,
            notes=row["notes"] or "",
            cancellation_reason=row["cancellation_reason"],
            closed_by=row["closed_by"],
            claimed_at=row["claimed_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            cancelled_at=row["cancelled_at"],
        )


# ─── Retry Wrapper ───────────────────────────────────────────────────

class ResilientItemStore(ItemStore):
    """
    Wraps a store so transport faults (StoreUnavailable) are retried with
    backoff behind a circuit breaker. A CAS that returns False is a
    business outcome and is handed back untouched.
    """

    def __init__(
        self,
        inner: ItemStore,
        policy: RetryPolicy | None = None,
        sleep_fn=None,
    ):
        self.inner = inner
        extra = {"sleep": sleep_fn} if sleep_fn else {}
        self.retrier = Retrier(policy, retry_on=(StoreUnavailable,), name="item_store", **extra)

    def _call(self, fn, *args, **kwargs):
        return self.retrier(fn, *args, **kwargs)

    def insert(self, item: PoolItem) -> PoolItem:
        return self._call(self.inner.insert, item)

    def get(self, item_id: str) -> PoolItem | None:
        return self._call(self.inner.get, item_id)

    def list_items(
        self,
        status: ItemStatus | str | None = None,
        statuses: Iterable[ItemStatus | str] | None = None,
        urgency: Urgency | str | None = None,
        owner_id: str | None = None,
        closed_by: str | None = None,
        kind: str | None = None,
        group_id: str | None = None,
        eligible: bool | None = None,
    ) -> list[PoolItem]:
        return self._call(
            self.inner.list_items,
            status=status, statuses=statuses, urgency=urgency, owner_id=owner_id,
            closed_by=closed_by, kind=kind, group_id=group_id, eligible=eligible,
        )

    def compare_and_set(self, item: PoolItem, expected_version: int) -> bool:
        return self._call(self.inner.compare_and_set, item, expected_version)
