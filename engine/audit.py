"""
Lab Pool — Custody Audit Trail

Append-only record of every accepted pool transition, kept in its own
SQLite database apart from the item store. Answers "who had this
specimen, and when" long after the item itself has been archived.

Each record carries the hash of the record before it, so any edit or
deletion in the table breaks the chain and shows up in verify().

Usage:
    trail = AuditTrail("audit_trail.db")
    pool = WorkPool(sinks=[LoggingSink(), trail])
    ...
    for rec in trail.custody("itm_1a2b"):
        print(rec.at, rec.actor_id, rec.from_status, "→", rec.to_status)
    ok, message = trail.verify()
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any

from engine.db import SQLiteBackend

logger = logging.getLogger("labpool.audit")

GENESIS_HASH = "0" * 64

_SCHEMA = """
CREATE TABLE IF NOT EXISTS custody (
    seq         INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id     TEXT NOT NULL,
    from_status TEXT NOT NULL,
    to_status   TEXT NOT NULL,
    actor_id    TEXT NOT NULL,
    at          REAL NOT NULL,
    prev_hash   TEXT NOT NULL,
    hash        TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_custody_item ON custody(item_id);
CREATE INDEX IF NOT EXISTS idx_custody_actor ON custody(actor_id);
"""

_FIELDS = ("item_id", "from_status", "to_status", "actor_id", "at")


@dataclass(frozen=True)
class CustodyRecord:
    seq: int
    item_id: str
    from_status: str
    to_status: str
    actor_id: str
    at: float
    prev_hash: str
    hash: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def chain_hash(prev_hash: str, item_id: str, from_status: str,
               to_status: str, actor_id: str, at: float) -> str:
    """SHA-256 over the previous hash and the record's fields."""
    body = json.dumps([prev_hash, item_id, from_status, to_status, actor_id, at])
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


class AuditTrail:
    """Transition sink writing one hash-chained custody record per transition."""

    def __init__(self, db_path: str = "audit_trail.db"):
        self.db_path = db_path
        self._db = SQLiteBackend(path=db_path)
        self._db.executescript(_SCHEMA)

    # ─── Sink Interface ──────────────────────────────────────────────

    def on_transition(self, item_id, from_status, to_status, actor_id, timestamp) -> CustodyRecord:
        values = (
            item_id,
            str(getattr(from_status, "value", from_status)),
            str(getattr(to_status, "value", to_status)),
            actor_id,
            float(timestamp),
        )
        with self._db.transaction():
            last = self._db.fetchone("SELECT hash FROM custody ORDER BY seq DESC LIMIT 1")
            prev = last["hash"] if last else GENESIS_HASH
            digest = chain_hash(prev, *values)
            cursor = self._db.execute(
                "INSERT INTO custody (item_id, from_status, to_status, actor_id, at, prev_hash, hash)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (*values, prev, digest),
            )
        return CustodyRecord(cursor.lastrowid, *values, prev_hash=prev, hash=digest)

    # ─── Queries ─────────────────────────────────────────────────────

    def custody(self, item_id: str) -> list[CustodyRecord]:
        """Every transition of one item, oldest first."""
        return self._select("WHERE item_id = ?", (item_id,))

    def handled_by(self, actor_id: str) -> list[CustodyRecord]:
        """Every transition one worker or admin performed, oldest first."""
        return self._select("WHERE actor_id = ?", (actor_id,))

    def __len__(self) -> int:
        return self._db.fetchone("SELECT COUNT(*) AS n FROM custody")["n"]

    def _select(self, where: str, params: tuple) -> list[CustodyRecord]:
        rows = self._db.fetchall(f"SELECT * FROM custody {where} ORDER BY seq", params)
        return [CustodyRecord(**r) for r in rows]

    # ─── Integrity ───────────────────────────────────────────────────

    def verify(self) -> tuple[bool, str]:
        """
        Walk the whole chain. Returns (ok, message); the message names
        the first record that does not line up.
        """
        prev = GENESIS_HASH
        count = 0
        for rec in self._select("", ()):
            if rec.prev_hash != prev:
                logger.error("Custody chain broken before record %d", rec.seq)
                return False, f"record {rec.seq}: link broken (a record before it was removed or altered)"
            if chain_hash(rec.prev_hash, *(getattr(rec, f) for f in _FIELDS)) != rec.hash:
                logger.error("Custody record %d does not match its hash", rec.seq)
                return False, f"record {rec.seq}: contents altered"
            prev = rec.hash
            count += 1
        return True, f"{count} record(s) verified"

    def close(self):
        self._db.close()
