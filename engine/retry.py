"""
Lab Pool — Transport Retry & Circuit Breaker

The item store is the only thing in the pool worth retrying, and only
for transport faults: a locked SQLite file, a flaky network mount. A
claim that lost its race or an item that does not exist must never be
retried; callers list exactly which exception types count as transient.

    retrier = Retrier(RetryPolicy.from_config(cfg.get("retry")),
                      retry_on=(StoreUnavailable,), name="item_store")
    item = retrier(store.get, item_id)

After `trip_after` calls in a row exhaust their attempts, the breaker
opens and calls fail fast with CircuitBreakerOpen for `cool_down`
seconds; then one probe call is let through.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger("labpool.retry")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 0.05    # seconds before the 2nd attempt, doubling after
    max_delay: float = 2.0
    jitter: float = 0.2         # fraction of the delay, applied ±
    trip_after: int = 5
    cool_down: float = 30.0

    @classmethod
    def from_config(cls, section: dict[str, Any] | None) -> RetryPolicy:
        """
        Build from the `retry:` section of pool_config.yaml. Missing keys
        keep their defaults; attempts and trip_after are at least 1.
        """
        section = section or {}
        d = cls()
        return cls(
            attempts=max(1, int(section.get("attempts", d.attempts))),
            base_delay=float(section.get("base_delay", d.base_delay)),
            max_delay=float(section.get("max_delay", d.max_delay)),
            jitter=float(section.get("jitter", d.jitter)),
            trip_after=max(1, int(section.get("trip_after", d.trip_after))),
            cool_down=float(section.get("cool_down", d.cool_down)),
        )

    def delay(self, retry_number: int, rand: Callable[[], float] = random.random) -> float:
        """Sleep before retry `retry_number` (1 = first retry)."""
        base = min(self.base_delay * 2 ** (retry_number - 1), self.max_delay)
        spread = base * self.jitter
        return max(0.0, base - spread + 2 * spread * rand())


# ═══════════════════════════════════════════════════════════════════
# Circuit Breaker
# ═══════════════════════════════════════════════════════════════════

class CircuitBreakerOpen(Exception):
    """Calls are being refused until the cool-down elapses."""


class CircuitBreaker:
    """closed → open after `trip_after` failures → half_open after `cool_down`."""

    def __init__(self, trip_after: int = 5, cool_down: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.trip_after = trip_after
        self.cool_down = cool_down
        self._clock = clock
        self._failures = 0
        self._opened_at: float | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._lock:
            if self._opened_at is None:
                return "closed"
            if self._clock() - self._opened_at >= self.cool_down:
                return "half_open"
            return "open"

    def before_call(self, name: str = ""):
        if self.state == "open":
            raise CircuitBreakerOpen(
                f"{name or 'breaker'} open after {self._failures} consecutive failures"
            )

    def succeeded(self):
        with self._lock:
            self._failures = 0
            self._opened_at = None

    def failed(self):
        with self._lock:
            self._failures += 1
            if self._failures >= self.trip_after:
                self._opened_at = self._clock()


# ═══════════════════════════════════════════════════════════════════
# Retrier
# ═══════════════════════════════════════════════════════════════════

class Retrier:
    """Calls a function, retrying `retry_on` errors per the policy."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        retry_on: tuple[type[BaseException], ...] = (TimeoutError, ConnectionError),
        name: str = "",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policy = policy or RetryPolicy()
        self.retry_on = retry_on
        self.name = name
        self._sleep = sleep
        self.breaker = CircuitBreaker(self.policy.trip_after, self.policy.cool_down, clock=clock)

    def __call__(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        self.breaker.before_call(self.name)
        op = getattr(fn, "__name__", "call")
        for attempt in range(1, self.policy.attempts + 1):
            try:
                result = fn(*args, **kwargs)
            except self.retry_on as e:
                if attempt == self.policy.attempts:
                    self.breaker.failed()
                    logger.error("%s.%s failed after %d attempt(s): %s", self.name, op, attempt, e)
                    raise
                logger.warning("%s.%s attempt %d failed, retrying: %s", self.name, op, attempt, e)
                self._sleep(self.policy.delay(attempt))
                continue
            self.breaker.succeeded()
            return result
