"""
Lab Pool — Intake

Boundary with the upstream order/treatment workflow. New work enters the
pool here as PENDING items; items created on hold (e.g. their order is
not paid yet) become claimable once the upstream system releases them.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from workpool.errors import Conflict, InvalidTransition, NotFound, ValidationError
from workpool.store import ItemStore
from workpool.types import ItemStatus, PoolItem, Urgency

logger = logging.getLogger("labpool.intake")


class Intake:

    def __init__(self, store: ItemStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def create_item(
        self,
        kind: str,
        payload: dict[str, Any] | None = None,
        urgency: Urgency | str = Urgency.ROUTINE,
        group_id: str = "",
        eligible: bool = True,
    ) -> PoolItem:
        """Create a PENDING item with owner None and version 0."""
        errors = []
        if not kind or not isinstance(kind, str):
            errors.append("kind: required")
        if payload is not None and not isinstance(payload, dict):
            errors.append("payload: must be an object")
        try:
            if not isinstance(urgency, Urgency):
                urgency = Urgency(str(urgency).upper())
        except ValueError:
            errors.append(f"urgency: must be one of {[u.value for u in Urgency]}")
        if errors:
            raise ValidationError("invalid pool item", errors)

        item = PoolItem.create(
            kind=kind, payload=payload, urgency=urgency,
            group_id=group_id, eligible=eligible, created_at=self.clock(),
        )
        self.store.insert(item)
        logger.info(
            "Item %s created (kind=%s, urgency=%s, group=%s, eligible=%s)",
            item.item_id, kind, item.urgency.value, group_id or "-", eligible,
        )
        return item

    def create_group(
        self,
        group_id: str,
        kind: str,
        payloads: list[dict[str, Any]],
        urgency: Urgency | str = Urgency.ROUTINE,
        eligible: bool = True,
    ) -> list[PoolItem]:
        """One item per payload, all sharing group_id (one lab order, many tests)."""
        if not group_id:
            raise ValidationError("group_id is required", ["group_id: required"])
        return [
            self.create_item(kind, p, urgency=urgency, group_id=group_id, eligible=eligible)
            for p in payloads
        ]

    def mark_eligible(self, item_id: str) -> PoolItem:
        """
        Release a held PENDING item for claiming. Releasing an item that
        is already eligible returns it unchanged.
        """
        item = self.store.get(item_id)
        if item is None:
            raise NotFound(f"Item {item_id} not found", {"item_id": item_id})
        if item.eligible:
            return item
        if item.status != ItemStatus.PENDING:
            raise InvalidTransition(
                f"Item {item_id} is {item.status.value}; only pending items can be released",
                {"item_id": item_id, "status": item.status.value},
            )

        released = item.copy()
        released.eligible = True
        released.version = item.version + 1
        if not self.store.compare_and_set(released, item.version):
            raise Conflict(
                f"Item {item_id} changed concurrently; re-read and retry",
                {"item_id": item_id, "expected_version": item.version},
            )
        logger.info("Item %s released for claiming (v%d)", item_id, released.version)
        return released

    def release_group(self, group_id: str) -> list[PoolItem]:
        """Release every held item of a group (the order was paid)."""
        held = self.store.list_items(
            group_id=group_id, status=ItemStatus.PENDING, eligible=False,
        )
        return [self.mark_eligible(i.item_id) for i in held]
