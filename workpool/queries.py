"""
Lab Pool — Query Facade

Read-side views over the item store. No writes, no caching; every call
goes to the store.
"""

from __future__ import annotations

import time
from collections import Counter
from typing import Any, Callable

from workpool.errors import NotFound, ValidationError
from workpool.store import ItemStore
from workpool.types import (
    OWNED_STATUSES, ItemStatus, PoolItem, Urgency,
)


def _parse(enum_cls, value, field_name):
    if value is None or value == "" or isinstance(value, enum_cls):
        return value or None
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        raise ValidationError(
            f"invalid {field_name} {value!r}",
            [f"{field_name}: must be one of {[m.value for m in enum_cls]}"],
        ) from None


def _available_order(item: PoolItem):
    # Most urgent first, then oldest first
    return (-item.urgency.rank, item.created_at)


class QueryFacade:

    def __init__(self, store: ItemStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def get(self, item_id: str) -> PoolItem:
        item = self.store.get(item_id)
        if item is None:
            raise NotFound(f"Item {item_id} not found", {"item_id": item_id})
        return item

    def list_available(
        self,
        urgency: Urgency | str | None = None,
        status: ItemStatus | str | None = None,
        kind: str | None = None,
    ) -> list[PoolItem]:
        """
        Unclaimed, released items ordered STAT → URGENT → ROUTINE, then
        oldest first. A status filter other than PENDING yields nothing:
        only pending items are available.
        """
        urgency = _parse(Urgency, urgency, "urgency")
        status = _parse(ItemStatus, status, "status")
        if status and status != ItemStatus.PENDING:
            return []
        items = self.store.list_items(
            status=ItemStatus.PENDING, urgency=urgency, kind=kind, eligible=True,
        )
        return sorted(items, key=_available_order)

    def list_mine(
        self,
        worker_id: str,
        status: ItemStatus | str | None = None,
        include_history: bool = False,
    ) -> list[PoolItem]:
        """
        Items the worker currently holds (CLAIMED / IN_PROGRESS), most
        recently claimed first. Terminal items the worker closed are
        included when asked for by status or with include_history.
        """
        wanted = _parse(ItemStatus, status, "status")

        items: list[PoolItem] = []
        if wanted is None or wanted.is_owned:
            items.extend(self.store.list_items(
                statuses=[wanted] if wanted else OWNED_STATUSES,
                owner_id=worker_id,
            ))
        if (wanted is not None and wanted.is_terminal) or (wanted is None and include_history):
            items.extend(self.store.list_items(
                statuses=[wanted] if wanted else [ItemStatus.COMPLETED, ItemStatus.CANCELLED],
                closed_by=worker_id,
            ))
        return sorted(items, key=lambda i: i.claimed_at or i.created_at, reverse=True)

    def list_results(
        self,
        kind: str | None = None,
        critical_only: bool = False,
    ) -> list[PoolItem]:
        """Completed items with their results, newest first."""
        items = self.store.list_items(status=ItemStatus.COMPLETED, kind=kind)
        if critical_only:
            items = [i for i in items if i.has_critical]
        return sorted(items, key=lambda i: i.completed_at or 0.0, reverse=True)

    def list_stale(self, older_than_seconds: float) -> list[PoolItem]:
        """
        Owned items with no transition for longer than the window.
        Candidates for administrative cancel; nothing is released
        automatically.
        """
        cutoff = self.clock() - older_than_seconds
        items = self.store.list_items(statuses=OWNED_STATUSES)
        return sorted(
            (i for i in items if i.last_transition_at < cutoff),
            key=lambda i: i.last_transition_at,
        )

    def group_summary(self, group_id: str) -> dict[str, Any]:
        """
        Per-status counts for one upstream order/treatment. `complete` is
        True once every item is terminal and at least one completed.
        """
        items = self.store.list_items(group_id=group_id)
        if not items:
            raise NotFound(f"Group {group_id} has no items", {"group_id": group_id})
        counts = Counter(i.status.value for i in items)
        return {
            "group_id": group_id,
            "total": len(items),
            "by_status": {s.value: counts.get(s.value, 0) for s in ItemStatus},
            "complete": (
                all(i.is_terminal for i in items)
                and counts.get(ItemStatus.COMPLETED.value, 0) > 0
            ),
            "has_critical": any(i.has_critical for i in items),
        }

    def stats(self) -> dict[str, Any]:
        items = self.store.list_items()
        by_status = Counter(i.status.value for i in items)
        pending = [i for i in items if i.status == ItemStatus.PENDING]
        return {
            "total": len(items),
            "by_status": {s.value: by_status.get(s.value, 0) for s in ItemStatus},
            "pending_by_urgency": {
                u.value: sum(1 for i in pending if i.urgency == u) for u in Urgency
            },
            "awaiting_release": sum(1 for i in pending if not i.eligible),
            "critical_results": sum(1 for i in items if i.has_critical),
        }
