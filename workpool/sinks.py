"""
Lab Pool — Transition Sinks

Collaborators notified after every accepted transition. Delivery is
fire-and-forget: a failing sink is logged and never undoes or blocks
the committed transition.

Any object with an on_transition(item_id, from_status, to_status,
actor_id, timestamp) method is a sink. Shipped implementations:
  - LoggingSink                     structured log line per transition
  - engine.audit.AuditTrail         hash-chained custody log
  - engine.webhooks.WebhookNotifier HTTP POST to external systems
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from engine.logging import log_event
from workpool.types import ItemStatus

logger = logging.getLogger("labpool.sinks")


class TransitionSink(Protocol):
    def on_transition(
        self,
        item_id: str,
        from_status: ItemStatus,
        to_status: ItemStatus,
        actor_id: str,
        timestamp: float,
    ) -> object: ...


class LoggingSink:
    """Emits one `transition` event per accepted transition on labpool.transitions."""

    def __init__(self, level: int = logging.INFO):
        self.level = level
        self._logger = logging.getLogger("labpool.transitions")

    def on_transition(self, item_id, from_status, to_status, actor_id, timestamp):
        log_event(
            self._logger, self.level, "transition",
            item_id=item_id,
            from_status=getattr(from_status, "value", from_status),
            to_status=getattr(to_status, "value", to_status),
            actor_id=actor_id,
            transition_at=timestamp,
        )


def notify_sinks(
    sinks: Iterable[TransitionSink],
    item_id: str,
    from_status: ItemStatus,
    to_status: ItemStatus,
    actor_id: str,
    timestamp: float,
) -> None:
    for sink in sinks:
        try:
            sink.on_transition(item_id, from_status, to_status, actor_id, timestamp)
        except Exception as e:
            logger.warning(
                "Transition sink %s failed for %s (%s → %s): %s",
                type(sink).__name__, item_id,
                from_status.value, to_status.value, e,
            )
