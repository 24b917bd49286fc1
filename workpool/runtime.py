"""
Lab Pool — Runtime

Wires the pool together from configuration: store (with transport
retry), claim coordinator, lifecycle service, query facade, intake, and
the transition sinks. The CLI and the API server both talk to a WorkPool;
nothing above this layer constructs components directly.

    cfg = load_config("pool_config.yaml")
    pool = WorkPool.from_config(cfg)

    for item in pool.list_available():
        pool.claim(item.item_id, "tech-1")
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from engine.config import get_config_value
from engine.db import SQLiteBackend
from engine.retry import RetryPolicy
from workpool.claims import ClaimCoordinator
from workpool.intake import Intake
from workpool.lifecycle import LifecycleService
from workpool.queries import QueryFacade
from workpool.sinks import LoggingSink, TransitionSink
from workpool.store import (
    InMemoryItemStore, ItemStore, ResilientItemStore, SQLiteItemStore,
)
from workpool.types import PoolItem

logger = logging.getLogger("labpool.runtime")

DEFAULT_STALE_SECONDS = 4 * 3600


# ═══════════════════════════════════════════════════════════════════
# Settings
# ═══════════════════════════════════════════════════════════════════

@dataclass
class PoolSettings:
    """Typed view of pool_config.yaml."""
    store_backend: str = "sqlite"           # sqlite | memory
    store_path: str = "labpool.db"
    busy_timeout_ms: int = 5000
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    log_level: str = "INFO"
    log_format: str = "json"                # json | text
    audit_enabled: bool = False
    audit_path: str = "audit_trail.db"
    webhooks: list[dict[str, Any]] = field(default_factory=list)
    stale_after_seconds: float = DEFAULT_STALE_SECONDS

    @staticmethod
    def from_config(cfg: dict[str, Any] | None) -> PoolSettings:
        cfg = cfg or {}

        def value(path, default):
            found = get_config_value(path, cfg, default)
            return default if found is None else found

        backend = str(value("store.backend", "sqlite")).lower()
        if backend not in ("sqlite", "memory"):
            raise ValueError(f"Unknown store backend: {backend!r} (expected sqlite or memory)")
        return PoolSettings(
            store_backend=backend,
            store_path=str(value("store.path", "labpool.db")),
            busy_timeout_ms=int(value("store.busy_timeout_ms", 5000)),
            retry=RetryPolicy.from_config(value("retry", {})),
            log_level=str(value("logging.level", "INFO")),
            log_format=str(value("logging.format", "json")),
            audit_enabled=bool(value("audit.enabled", False)),
            audit_path=str(value("audit.path", "audit_trail.db")),
            webhooks=list(value("webhooks", [])),
            stale_after_seconds=float(value("stale_after_seconds", DEFAULT_STALE_SECONDS)),
        )


def build_store(settings: PoolSettings) -> ItemStore:
    if settings.store_backend == "memory":
        inner: ItemStore = InMemoryItemStore()
    else:
        inner = SQLiteItemStore(SQLiteBackend(
            path=settings.store_path, busy_timeout=settings.busy_timeout_ms,
        ))
    return ResilientItemStore(inner, policy=settings.retry)


def build_sinks(settings: PoolSettings) -> list[TransitionSink]:
    sinks: list[TransitionSink] = [LoggingSink()]
    if settings.audit_enabled:
        from engine.audit import AuditTrail
        sinks.append(AuditTrail(db_path=settings.audit_path))
    if settings.webhooks:
        from engine.webhooks import WebhookNotifier
        sinks.append(WebhookNotifier.from_config(settings.webhooks))
    return sinks


# ═══════════════════════════════════════════════════════════════════
# Work Pool
# ═══════════════════════════════════════════════════════════════════

class WorkPool:
    """
    One pool, one store. Every operation goes straight to the store;
    the pool holds no item state of its own.
    """

    def __init__(
        self,
        store: ItemStore | None = None,
        sinks: Iterable[TransitionSink] | None = None,
        clock: Callable[[], float] = time.time,
        settings: PoolSettings | None = None,
    ):
        self.settings = settings or PoolSettings(store_backend="memory")
        self.store = store or InMemoryItemStore()
        self.sinks = list(sinks) if sinks is not None else [LoggingSink()]
        self.claims = ClaimCoordinator(self.store, self.sinks, clock=clock)
        self.lifecycle = LifecycleService(self.store, self.sinks, clock=clock)
        self.queries = QueryFacade(self.store, clock=clock)
        self.intake = Intake(self.store, clock=clock)

    @classmethod
    def from_config(cls, cfg: dict[str, Any] | None) -> WorkPool:
        settings = PoolSettings.from_config(cfg)
        store = build_store(settings)
        sinks = build_sinks(settings)
        logger.info(
            "Work pool ready (store=%s, sinks=%s)",
            settings.store_backend if settings.store_backend == "memory" else settings.store_path,
            ", ".join(type(s).__name__ for s in sinks),
        )
        return cls(store=store, sinks=sinks, settings=settings)

    # ─── Worker Operations ───────────────────────────────────────────

    def claim(self, item_id: str, worker_id: str) -> PoolItem:
        return self.claims.claim(item_id, worker_id)

    def start(self, item_id: str, worker_id: str) -> PoolItem:
        return self.lifecycle.start(item_id, worker_id)

    def complete(self, item_id: str, worker_id: str, results, notes: str = "") -> PoolItem:
        return self.lifecycle.complete(item_id, worker_id, results, notes=notes)

    def cancel(self, item_id: str, worker_id: str, reason: str) -> PoolItem:
        return self.lifecycle.cancel(item_id, worker_id, reason)

    def admin_cancel(self, item_id: str, admin_id: str, reason: str) -> PoolItem:
        return self.lifecycle.admin_cancel(item_id, admin_id, reason)

    # ─── Upstream Operations ─────────────────────────────────────────

    def create_item(self, kind: str, payload=None, urgency="ROUTINE",
                    group_id: str = "", eligible: bool = True) -> PoolItem:
        return self.intake.create_item(
            kind, payload, urgency=urgency, group_id=group_id, eligible=eligible,
        )

    def create_group(self, group_id: str, kind: str, payloads, urgency="ROUTINE",
                     eligible: bool = True) -> list[PoolItem]:
        return self.intake.create_group(
            group_id, kind, payloads, urgency=urgency, eligible=eligible,
        )

    def release(self, item_id: str) -> PoolItem:
        return self.intake.mark_eligible(item_id)

    def release_group(self, group_id: str) -> list[PoolItem]:
        return self.intake.release_group(group_id)

    # ─── Queries ─────────────────────────────────────────────────────

    def get(self, item_id: str) -> PoolItem:
        return self.queries.get(item_id)

    def list_available(self, urgency=None, status=None, kind=None) -> list[PoolItem]:
        return self.queries.list_available(urgency=urgency, status=status, kind=kind)

    def list_mine(self, worker_id: str, status=None, include_history: bool = False) -> list[PoolItem]:
        return self.queries.list_mine(worker_id, status=status, include_history=include_history)

    def list_results(self, kind=None, critical_only: bool = False) -> list[PoolItem]:
        return self.queries.list_results(kind=kind, critical_only=critical_only)

    def list_stale(self, older_than_seconds: float | None = None) -> list[PoolItem]:
        if older_than_seconds is None:
            older_than_seconds = self.settings.stale_after_seconds
        return self.queries.list_stale(older_than_seconds)

    def group_summary(self, group_id: str) -> dict[str, Any]:
        return self.queries.group_summary(group_id)

    def stats(self) -> dict[str, Any]:
        return self.queries.stats()

    def ready(self) -> bool:
        return self.store.ping()

    def close(self):
        for obj in [self.store, getattr(self.store, "inner", None), *self.sinks]:
            closer = getattr(obj, "close", None)
            if callable(closer):
                closer()


def create_pool(
    config_path: str = "pool_config.yaml",
    env: str = "",
    log_format: str | None = None,
) -> WorkPool:
    """Load layered configuration, set up logging, and build a pool from it."""
    from engine.config import load_config
    from engine.logging import configure_logging

    cfg = load_config(base_path=config_path, env=env)
    settings = PoolSettings.from_config(cfg)
    configure_logging(level=settings.log_level, fmt=log_format or settings.log_format)
    return WorkPool.from_config(cfg)
