"""
Lab Pool — Webhook Transition Notifications

Forwards pool transitions to external systems (ward dashboards, a
Slack channel, an interface engine). Implements the transition sink
interface, so it is wired like any other sink:

    notifier = WebhookNotifier([
        WebhookTarget(url="https://hooks.example.org/lab", on_status={"COMPLETED"}),
    ])
    pool = WorkPool(sinks=[LoggingSink(), notifier])

Transitions are queued and posted by a single background worker, so a
slow or dead endpoint never delays a claim or a completion. Failed posts
are retried with capped exponential backoff; every attempt is kept in a
bounded delivery log for diagnostics.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger("labpool.webhooks")

HttpPost = Callable[..., dict[str, Any]]

_STOP = object()


# ═══════════════════════════════════════════════════════════════════
# Targets & Deliveries
# ═══════════════════════════════════════════════════════════════════

@dataclass
class WebhookTarget:
    url: str
    style: str = "json"                 # json, slack
    enabled: bool = True
    on_status: set[str] = field(default_factory=set)   # empty = every destination
    attempts: int = 2
    timeout: float = 10.0
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> WebhookTarget:
        if not d.get("url"):
            raise ValueError("webhook target needs a url")
        style = d.get("style", "json")
        if style not in _PAYLOAD_STYLES:
            raise ValueError(f"webhook style must be one of {sorted(_PAYLOAD_STYLES)}, got {style!r}")
        return cls(
            url=d["url"],
            style=style,
            enabled=bool(d.get("enabled", True)),
            on_status={str(s).upper() for s in d.get("on_status") or []},
            attempts=max(1, int(d.get("attempts", 2))),
            timeout=float(d.get("timeout", 10.0)),
            headers=dict(d.get("headers") or {}),
        )

    def wants(self, to_status: str) -> bool:
        return self.enabled and (not self.on_status or to_status in self.on_status)


@dataclass
class Delivery:
    delivery_id: str
    url: str
    item_id: str
    to_status: str
    outcome: str = "queued"     # queued, delivered, failed
    attempts: int = 0
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "delivery_id": self.delivery_id,
            "url": self.url,
            "item_id": self.item_id,
            "to_status": self.to_status,
            "outcome": self.outcome,
            "attempts": self.attempts,
            "error": self.error,
        }


# ═══════════════════════════════════════════════════════════════════
# Notifier
# ═══════════════════════════════════════════════════════════════════

class WebhookNotifier:
    """
    Transition sink posting JSON to each interested target.

    `post` and `sleep` are injectable for tests. `flush()` blocks until
    the queue drains; `close()` stops the worker.
    """

    def __init__(
        self,
        targets: list[WebhookTarget] | None = None,
        post: HttpPost | None = None,
        sleep: Callable[[float], None] = time.sleep,
        history: int = 100,
    ):
        self.targets = list(targets or [])
        self._post = post or post_json
        self._sleep = sleep
        self._queue: queue.Queue = queue.Queue()
        self._log: deque[Delivery] = deque(maxlen=history)
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None

    @classmethod
    def from_config(cls, entries: list[dict[str, Any]]) -> WebhookNotifier:
        return cls([WebhookTarget.from_dict(e) for e in entries])

    def on_transition(self, item_id, from_status, to_status, actor_id, timestamp) -> None:
        event = {
            "item_id": item_id,
            "from_status": getattr(from_status, "value", from_status),
            "to_status": getattr(to_status, "value", to_status),
            "actor_id": actor_id,
            "timestamp": timestamp,
        }
        for target in self.targets:
            if not target.wants(event["to_status"]):
                continue
            delivery = Delivery(
                delivery_id=f"dlv_{uuid.uuid4().hex[:12]}",
                url=target.url,
                item_id=item_id,
                to_status=event["to_status"],
            )
            with self._lock:
                self._log.append(delivery)
            self._ensure_worker()
            self._queue.put((target, build_payload(target.style, event), delivery))

    def flush(self) -> None:
        if self._worker is not None:
            self._queue.join()

    def close(self, timeout: float = 30.0) -> None:
        """Send what is still queued, then stop the worker."""
        if self._worker is not None:
            self._queue.put(_STOP)
            self._worker.join(timeout=timeout)
            if self._worker.is_alive():
                logger.warning("Webhook worker still busy after %.0fs; pending posts dropped", timeout)
            self._worker = None

    @property
    def deliveries(self) -> list[dict[str, Any]]:
        with self._lock:
            return [d.to_dict() for d in self._log]

    # ─── Worker ──────────────────────────────────────────────────────

    def _ensure_worker(self):
        with self._lock:
            if self._worker is None:
                self._worker = threading.Thread(
                    target=self._run, name="labpool-webhooks", daemon=True,
                )
                self._worker.start()

    def _run(self):
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                self._send(*job)
            finally:
                self._queue.task_done()

    def _send(self, target: WebhookTarget, payload: dict, delivery: Delivery):
        for attempt in range(1, target.attempts + 1):
            delivery.attempts = attempt
            try:
                reply = self._post(
                    target.url, payload, headers=target.headers, timeout=target.timeout,
                )
            except Exception as e:
                # one bad post must not take the delivery worker down
                logger.debug("Webhook post to %s raised %s", target.url, type(e).__name__)
                reply = {"ok": False, "error": f"{type(e).__name__}: {e}"[:200]}

            if reply.get("ok"):
                delivery.outcome = "delivered"
                delivery.error = ""
                logger.debug("Posted %s for %s to %s", delivery.to_status, delivery.item_id, target.url)
                return

            delivery.error = reply.get("error") or f"HTTP {reply.get('status', '?')}"
            if attempt < target.attempts:
                self._sleep(min(0.5 * 2 ** (attempt - 1), 8.0))

        delivery.outcome = "failed"
        logger.warning(
            "Webhook %s gave up on %s (%s) after %d attempt(s): %s",
            target.url, delivery.item_id, delivery.to_status,
            delivery.attempts, delivery.error,
        )


# ═══════════════════════════════════════════════════════════════════
# Payloads & Transport
# ═══════════════════════════════════════════════════════════════════

def _json_payload(event: dict[str, Any]) -> dict[str, Any]:
    return {"event": "pool.transition", **event}


def _slack_payload(event: dict[str, Any]) -> dict[str, Any]:
    to_status = event["to_status"]
    return {
        "text": f"{event['item_id']} {event['from_status']} → {to_status} by {event['actor_id']}",
        "blocks": [{
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"*{to_status.replace('_', ' ').title()}*  `{event['item_id']}`\n"
                    f"from {event['from_status']} by {event['actor_id']}"
                ),
            },
        }],
    }


_PAYLOAD_STYLES = {"json": _json_payload, "slack": _slack_payload}


def build_payload(style: str, event: dict[str, Any]) -> dict[str, Any]:
    return _PAYLOAD_STYLES[style](event)


def post_json(url: str, payload: dict, headers=None, timeout: float = 10.0) -> dict[str, Any]:
    """POST `payload` as JSON. Returns {"ok": bool, "status": int, "error": str}."""
    import http.client
    import urllib.error
    import urllib.request

    req = urllib.request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", **(headers or {})},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return {"ok": 200 <= resp.status < 300, "status": resp.status, "error": ""}
    except urllib.error.HTTPError as e:
        return {"ok": False, "status": e.code, "error": f"HTTP {e.code} {e.reason}"}
    except http.client.HTTPException as e:
        return {"ok": False, "status": 0, "error": f"{type(e).__name__}: {e}"[:200]}
