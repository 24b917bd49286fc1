"""
Lab Pool — Claim Coordinator

The only path by which an item gains an owner. A claim is a
read → check → conditional write against the version that was read:

    item = store.get(id)                      # version v
    transition(PENDING, CLAIM) accepted?
    store.compare_and_set(item', expected=v)  # item'.version = v + 1

Two workers that both read version v race on the conditional write;
the store guarantees exactly one of them sees True. The loser re-reads
and gets AlreadyClaimed. There is no automatic retry: the caller goes
back to the pool listing and picks another item.

A repeated claim by the worker that already owns the item (a retried
network call) returns the current record instead of AlreadyClaimed.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

from workpool.errors import AlreadyClaimed, NotEligible, NotFound, ValidationError
from workpool.machine import Event, apply_decision, transition
from workpool.sinks import TransitionSink, notify_sinks
from workpool.store import ItemStore
from workpool.types import PoolItem

logger = logging.getLogger("labpool.claims")


class ClaimCoordinator:
    """Atomic claim-if-unclaimed over an ItemStore."""

    def __init__(
        self,
        store: ItemStore,
        sinks: Iterable[TransitionSink] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.sinks = list(sinks or [])
        self.clock = clock

    def claim(self, item_id: str, worker_id: str) -> PoolItem:
        """
        Claim a PENDING item for worker_id.

        Raises:
            NotFound:        unknown item_id
            AlreadyClaimed:  item is not PENDING or another claim won the race
            NotEligible:     item has not been released for claiming
            ValidationError: empty worker_id
        """
        if not worker_id or not str(worker_id).strip():
            raise ValidationError("worker_id is required", ["worker_id: required"])

        item = self.store.get(item_id)
        if item is None:
            raise NotFound(f"Item {item_id} not found", {"item_id": item_id})

        if item.status.is_owned and item.owner_id == worker_id:
            logger.info("Duplicate claim of %s by owner %s (v%d)", item_id, worker_id, item.version)
            return item

        decision = transition(item.status, Event.CLAIM, worker_id, item.owner_id)
        if not decision.accepted:
            logger.info("Claim of %s by %s rejected: %s", item_id, worker_id, decision.message)
            raise AlreadyClaimed(
                f"Item {item_id} is no longer available",
                {"item_id": item_id, "status": item.status.value},
            )

        if not item.eligible:
            raise NotEligible(
                f"Item {item_id} has not been released for claiming",
                {"item_id": item_id},
            )

        claimed = apply_decision(item, decision, worker_id, self.clock())
        if not self.store.compare_and_set(claimed, item.version):
            return self._lost_race(item_id, worker_id, item.version)

        logger.info("Item %s claimed by %s (v%d)", item_id, worker_id, claimed.version)
        notify_sinks(
            self.sinks, item_id, item.status, claimed.status,
            worker_id, claimed.claimed_at,
        )
        return claimed

    def _lost_race(self, item_id: str, worker_id: str, read_version: int) -> PoolItem:
        current = self.store.get(item_id)
        if (current is not None and current.status.is_owned
                and current.owner_id == worker_id):
            # Our own earlier attempt committed (concurrent duplicate request)
            return current
        logger.info(
            "Claim race on %s lost by %s (read v%d, now v%s)",
            item_id, worker_id, read_version,
            current.version if current else "?",
        )
        raise AlreadyClaimed(
            f"Item {item_id} was claimed by another worker",
            {
                "item_id": item_id,
                "status": current.status.value if current else None,
            },
        )
