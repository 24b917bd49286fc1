"""
Lab Pool — Lifecycle Service

Start, complete, and cancel for claimed items. Every operation:

  1. read the current item (NotFound if unknown)
  2. recognise a duplicate terminal call from the actor that closed the
     item and hand back the existing record
  3. ask the state machine (NotOwner / InvalidTransition / ValidationError)
  4. conditional write with the version read in step 1
  5. on version mismatch raise Conflict; the caller re-reads and retries
  6. notify transition sinks

complete() validates its result payload before step 1, so a malformed
payload is rejected even before the item is read.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable

from workpool.errors import (
    Conflict, NotFound, NotOwner, ValidationError, error_for_code,
)
from workpool.machine import (
    TERMINAL_EVENT_STATUS, Event, TransitionDecision, apply_decision, transition,
)
from workpool.results import validate_results
from workpool.sinks import TransitionSink, notify_sinks
from workpool.store import ItemStore
from workpool.types import PoolItem, ResultEntry

logger = logging.getLogger("labpool.lifecycle")


class LifecycleService:
    """Owner-gated transitions for items already in the pool."""

    def __init__(
        self,
        store: ItemStore,
        sinks: Iterable[TransitionSink] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.sinks = list(sinks or [])
        self.clock = clock

    # ─── Public Operations ───────────────────────────────────────────

    def start(self, item_id: str, worker_id: str) -> PoolItem:
        """CLAIMED → IN_PROGRESS for the owner."""
        return self._apply(item_id, worker_id, Event.START)

    def complete(
        self,
        item_id: str,
        worker_id: str,
        results: Iterable[ResultEntry | dict[str, Any]] | None,
        notes: str = "",
    ) -> PoolItem:
        """IN_PROGRESS → COMPLETED with validated results."""
        entries = validate_results(results)
        return self._apply(
            item_id, worker_id, Event.COMPLETE, results=entries, notes=notes,
        )

    def cancel(self, item_id: str, worker_id: str, reason: str) -> PoolItem:
        """CLAIMED / IN_PROGRESS → CANCELLED for the owner."""
        _require_reason(reason)
        return self._apply(item_id, worker_id, Event.CANCEL, reason=reason)

    def admin_cancel(self, item_id: str, admin_id: str, reason: str) -> PoolItem:
        """
        Cancel an abandoned CLAIMED / IN_PROGRESS item regardless of owner.
        There is no timeout-based release; this is the recovery path for
        stuck claims.
        """
        _require_reason(reason)
        if not admin_id:
            raise ValidationError("admin_id is required", ["admin_id: required"])
        return self._apply(item_id, admin_id, Event.ADMIN_CANCEL, reason=reason)

    # ─── Internals ───────────────────────────────────────────────────

    def _apply(
        self,
        item_id: str,
        actor_id: str,
        event: Event,
        results: list[ResultEntry] | None = None,
        notes: str = "",
        reason: str = "",
    ) -> PoolItem:
        item = self.store.get(item_id)
        if item is None:
            raise NotFound(f"Item {item_id} not found", {"item_id": item_id})

        if item.is_terminal and TERMINAL_EVENT_STATUS.get(event) == item.status:
            if item.closed_by == actor_id:
                logger.info(
                    "Duplicate %s of %s by %s, returning existing record (v%d)",
                    event.value, item_id, actor_id, item.version,
                )
                return item
            raise NotOwner(
                f"Item {item_id} was closed by another worker",
                {"item_id": item_id, "status": item.status.value},
            )

        decision = transition(item.status, event, actor_id, item.owner_id, reason)
        if not decision.accepted:
            self._reject(item, actor_id, decision)

        updated = apply_decision(
            item, decision, actor_id, self.clock(),
            results=results, notes=notes, reason=reason,
        )
        if not self.store.compare_and_set(updated, item.version):
            logger.warning(
                "Conflict on %s %s by %s: expected v%d",
                event.value, item_id, actor_id, item.version,
            )
            raise Conflict(
                f"Item {item_id} changed concurrently; re-read and retry",
                {"item_id": item_id, "expected_version": item.version},
            )

        logger.info(
            "Item %s %s → %s by %s (v%d)",
            item_id, item.status.value, updated.status.value,
            actor_id, updated.version,
        )
        notify_sinks(
            self.sinks, item_id, item.status, updated.status,
            actor_id, updated.last_transition_at,
        )
        return updated

    @staticmethod
    def _reject(item: PoolItem, actor_id: str, decision: TransitionDecision):
        logger.info(
            "Rejected %s of %s by %s: %s (%s)",
            decision.event.value, item.item_id, actor_id,
            decision.error_code, decision.message,
        )
        cls = error_for_code(decision.error_code)
        if cls is ValidationError:
            raise ValidationError(decision.message, ["reason: required"])
        raise cls(
            f"Item {item.item_id}: {decision.message}",
            {"item_id": item.item_id, "status": item.status.value},
        )


def _require_reason(reason: str | None) -> None:
    if not reason or not str(reason).strip():
        raise ValidationError(
            "a non-empty cancellation reason is required", ["reason: required"],
        )
