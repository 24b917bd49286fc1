"""
Lab Pool — Type Definitions

Data structures for pool items, result entries, and the enumerations
that drive the claim lifecycle.
"""

from __future__ import annotations

import copy
import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any


# ─── Enumerations ───────────────────────────────────────────────────

class ItemStatus(str, enum.Enum):
    """Lifecycle states for a pool item."""
    PENDING = "PENDING"
    CLAIMED = "CLAIMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_owned(self) -> bool:
        return self in OWNED_STATUSES


TERMINAL_STATUSES = frozenset({ItemStatus.COMPLETED, ItemStatus.CANCELLED})
OWNED_STATUSES = frozenset({ItemStatus.CLAIMED, ItemStatus.IN_PROGRESS})


class Urgency(str, enum.Enum):
    """Ordered priority. Affects sort order only, never claim eligibility."""
    ROUTINE = "ROUTINE"
    URGENT = "URGENT"
    STAT = "STAT"

    @property
    def rank(self) -> int:
        return _URGENCY_RANK[self]


_URGENCY_RANK = {Urgency.ROUTINE: 0, Urgency.URGENT: 1, Urgency.STAT: 2}


class ResultFlag(str, enum.Enum):
    NORMAL = "NORMAL"
    CRITICAL = "CRITICAL"


class ItemKind:
    """Well-known item kinds. Any string is accepted."""
    LAB_TEST = "lab_test"
    LAB_REQUEST = "lab_request"


# ─── Result Entry ───────────────────────────────────────────────────

@dataclass
class ResultEntry:
    """One structured result attached to a completed item."""
    label: str
    value: str
    unit: str = ""
    reference_range: str = ""
    flag: ResultFlag = ResultFlag.NORMAL
    note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "value": self.value,
            "unit": self.unit,
            "reference_range": self.reference_range,
            "flag": self.flag.value,
            "note": self.note,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ResultEntry:
        return ResultEntry(
            label=data.get("label", ""),
            value=data.get("value", ""),
            unit=data.get("unit") or "",
            reference_range=data.get("reference_range") or "",
            flag=ResultFlag(data.get("flag") or ResultFlag.NORMAL.value),
            note=data.get("note") or "",
        )


# ─── Pool Item ──────────────────────────────────────────────────────

@dataclass
class PoolItem:
    """
    A unit of work awaiting processing.

    Created PENDING by the upstream order workflow. Mutated only through
    the claim coordinator and the lifecycle service; never deleted.
    owner_id is set iff status is CLAIMED or IN_PROGRESS. closed_by
    records who moved the item into its terminal state.
    """
    item_id: str
    kind: str
    status: ItemStatus
    urgency: Urgency
    created_at: float

    payload: dict[str, Any] = field(default_factory=dict)
    owner_id: str | None = None
    version: int = 0

    # Upstream grouping (lab order / treatment) and release gate
    group_id: str = ""
    eligible: bool = True

    # Result / cancellation
    result: list[ResultEntry] | None = None
    notes: str = ""
    cancellation_reason: str | None = None
    closed_by: str | None = None

    # Transition timestamps, each set exactly once
    claimed_at: float | None = None
    started_at: float | None = None
    completed_at: float | None = None
    cancelled_at: float | None = None

    @staticmethod
    def create(
        kind: str,
        payload: dict[str, Any] | None = None,
        urgency: Urgency | str = Urgency.ROUTINE,
        group_id: str = "",
        eligible: bool = True,
        created_at: float | None = None,
    ) -> PoolItem:
        return PoolItem(
            item_id=f"itm_{uuid.uuid4().hex[:12]}",
            kind=kind,
            status=ItemStatus.PENDING,
            urgency=Urgency(urgency),
            created_at=created_at if created_at is not None else time.time(),
            payload=dict(payload or {}),
            group_id=group_id,
            eligible=eligible,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def has_critical(self) -> bool:
        return any(r.flag == ResultFlag.CRITICAL for r in self.result or [])

    @property
    def last_transition_at(self) -> float:
        stamps = [
            self.created_at, self.claimed_at, self.started_at,
            self.completed_at, self.cancelled_at,
        ]
        return max(s for s in stamps if s is not None)

    def copy(self) -> PoolItem:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "kind": self.kind,
            "status": self.status.value,
            "urgency": self.urgency.value,
            "owner_id": self.owner_id,
            "version": self.version,
            "group_id": self.group_id,
            "eligible": self.eligible,
            "payload": self.payload,
            "result": [r.to_dict() for r in self.result] if self.result is not None else None,
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "closed_by": self.closed_by,
            "created_at": self.created_at,
            "claimed_at": self.claimed_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "cancelled_at": self.cancelled_at,
        }
