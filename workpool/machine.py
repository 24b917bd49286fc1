"""
Lab Pool — Item State Machine

Pure decision logic, no I/O. Given the current status, the requested
event, the actor, and the current owner, returns the next status or a
typed rejection. The claim coordinator and lifecycle service wire the
decision to the item store.

    PENDING ──claim──▶ CLAIMED ──start──▶ IN_PROGRESS ──complete──▶ COMPLETED
                          │                    │
                          └──cancel──┐ ┌──cancel┘
                                     ▼ ▼
                                  CANCELLED

Admin cancel moves any owned item to CANCELLED regardless of owner.

apply_decision() turns an accepted decision into the next item snapshot
(timestamps, owner, version + 1) without touching storage.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from workpool.types import ItemStatus, PoolItem, ResultEntry


class Event(str, enum.Enum):
    CLAIM = "claim"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"
    ADMIN_CANCEL = "admin_cancel"


# Rejection codes, aligned with workpool.errors
ALREADY_CLAIMED = "already_claimed"
NOT_OWNER = "not_owner"
INVALID_TRANSITION = "invalid_transition"
VALIDATION_ERROR = "validation_error"


# Allowed transitions: (from_state, event) → to_state
_TRANSITIONS: dict[tuple[ItemStatus, Event], ItemStatus] = {
    (ItemStatus.PENDING, Event.CLAIM): ItemStatus.CLAIMED,
    (ItemStatus.CLAIMED, Event.START): ItemStatus.IN_PROGRESS,
    (ItemStatus.CLAIMED, Event.CANCEL): ItemStatus.CANCELLED,
    (ItemStatus.IN_PROGRESS, Event.COMPLETE): ItemStatus.COMPLETED,
    (ItemStatus.IN_PROGRESS, Event.CANCEL): ItemStatus.CANCELLED,
    (ItemStatus.CLAIMED, Event.ADMIN_CANCEL): ItemStatus.CANCELLED,
    (ItemStatus.IN_PROGRESS, Event.ADMIN_CANCEL): ItemStatus.CANCELLED,
}

_OWNER_GATED = {Event.START, Event.COMPLETE, Event.CANCEL}
_NEEDS_REASON = {Event.CANCEL, Event.ADMIN_CANCEL}

# Terminal status each event produces; used to recognise duplicate calls
TERMINAL_EVENT_STATUS = {
    Event.COMPLETE: ItemStatus.COMPLETED,
    Event.CANCEL: ItemStatus.CANCELLED,
    Event.ADMIN_CANCEL: ItemStatus.CANCELLED,
}


@dataclass
class TransitionDecision:
    """Outcome of a transition evaluation."""
    accepted: bool
    from_status: ItemStatus
    event: Event
    to_status: ItemStatus | None = None
    error_code: str = ""
    message: str = ""


def _reject(current: ItemStatus, event: Event, code: str, message: str) -> TransitionDecision:
    return TransitionDecision(
        accepted=False, from_status=current, event=event,
        error_code=code, message=message,
    )


def transition(
    current: ItemStatus,
    event: Event,
    actor_id: str,
    owner_id: str | None,
    reason: str = "",
) -> TransitionDecision:
    """
    Evaluate one requested transition.

    Rejection precedence: claim on a non-pending item is ALREADY_CLAIMED;
    an owner-gated event on an owned item by someone else is NOT_OWNER;
    a cancel without a reason is VALIDATION_ERROR; anything outside the
    table is INVALID_TRANSITION.
    """
    current = ItemStatus(current)
    event = Event(event)

    if event == Event.CLAIM and current != ItemStatus.PENDING:
        return _reject(
            current, event, ALREADY_CLAIMED,
            f"item is {current.value}, not available for claiming",
        )

    if event in _OWNER_GATED and current.is_owned and actor_id != owner_id:
        return _reject(
            current, event, NOT_OWNER,
            f"{event.value} is reserved for the current owner",
        )

    to = _TRANSITIONS.get((current, event))
    if to is None:
        return _reject(
            current, event, INVALID_TRANSITION,
            f"{event.value} is not allowed from {current.value}",
        )

    if event in _NEEDS_REASON and not (reason or "").strip():
        return _reject(
            current, event, VALIDATION_ERROR,
            "a non-empty cancellation reason is required",
        )

    return TransitionDecision(
        accepted=True, from_status=current, event=event, to_status=to,
    )


def apply_decision(
    item: PoolItem,
    decision: TransitionDecision,
    actor_id: str,
    now: float,
    results: list[ResultEntry] | None = None,
    notes: str = "",
    reason: str = "",
) -> PoolItem:
    """
    Build the next snapshot of an item for an accepted decision.
    Returns a new PoolItem with version + 1; the input is not modified.
    """
    if not decision.accepted or decision.to_status is None:
        raise ValueError(f"cannot apply a rejected decision ({decision.error_code})")

    nxt = item.copy()
    nxt.status = decision.to_status
    nxt.version = item.version + 1

    if nxt.status == ItemStatus.CLAIMED:
        nxt.owner_id = actor_id
        nxt.claimed_at = now
    elif nxt.status == ItemStatus.IN_PROGRESS:
        nxt.started_at = now
    elif nxt.status == ItemStatus.COMPLETED:
        nxt.result = list(results or [])
        nxt.notes = notes or ""
        nxt.completed_at = now
    elif nxt.status == ItemStatus.CANCELLED:
        nxt.cancellation_reason = reason.strip()
        nxt.cancelled_at = now

    if nxt.status.is_terminal:
        nxt.owner_id = None
        nxt.closed_by = actor_id
    return nxt


def allowed_events(current: ItemStatus) -> set[Event]:
    """Events the table accepts from a status, ignoring actor checks."""
    return {ev for (st, ev) in _TRANSITIONS if st == ItemStatus(current)}
