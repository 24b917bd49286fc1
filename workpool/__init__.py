"""
Lab Pool — Shared Work Pool

Lab technicians claim pending lab tests and requests from a shared pool,
move them through CLAIMED → IN_PROGRESS → COMPLETED (or CANCELLED), and
attach structured results. At most one worker owns an item at a time;
claims race on a versioned conditional write in the item store.

Usage:
    from workpool import WorkPool

    pool = WorkPool()
    item = pool.create_item("lab_test", {"test": "Glucose"}, urgency="STAT")
    pool.claim(item.item_id, "tech-1")
    pool.start(item.item_id, "tech-1")
    pool.complete(item.item_id, "tech-1", [{"label": "Glucose", "value": "5.4"}])
"""

from workpool.types import (
    ItemStatus,
    ItemKind,
    PoolItem,
    ResultEntry,
    ResultFlag,
    Urgency,
)
from workpool.errors import (
    PoolError,
    NotFound,
    AlreadyClaimed,
    NotOwner,
    InvalidTransition,
    ValidationError,
    Conflict,
    NotEligible,
    StoreUnavailable,
)
from workpool.store import (
    ItemStore,
    InMemoryItemStore,
    SQLiteItemStore,
    ResilientItemStore,
)
from workpool.machine import Event, TransitionDecision, transition
from workpool.results import validate_results
from workpool.claims import ClaimCoordinator
from workpool.lifecycle import LifecycleService
from workpool.queries import QueryFacade
from workpool.intake import Intake
from workpool.sinks import LoggingSink, TransitionSink
from workpool.runtime import PoolSettings, WorkPool, create_pool
