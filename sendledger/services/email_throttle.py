"""
Lightweight abuse throttle for public email routes.

Best-effort only: counters live in process memory and are not shared
between instances. It exists to cut provider spam and UI hammering
before a request reaches the ledger; duplicate-send protection comes
solely from the ledger claim, so clearing this store is always safe.
Throttling MUST NOT change the response a caller sees.
"""

import threading
from dataclasses import dataclass
from typing import Protocol

from fastapi import Request

from sendledger.config import get_config
from sendledger.core.datetime_utils import epoch_ms_now
from sendledger.core.logging import get_logger

logger = get_logger(__name__)

WINDOW_MS = 60_000
MAX_PER_WINDOW = 10  # generous for UX; still stops spam-click floods
MAX_STORE_SIZE = 5_000
PRUNE_INTERVAL_CALLS = 200


class ThrottleStore(Protocol):
    """Fixed-window counter store; swap for a shared cache-backed limiter."""

    def increment(self, key: str, now_ms: int) -> int:
        """Count a hit for key and return the count in its current window."""
        ...

    def prune(self, now_ms: int) -> None:
        ...


@dataclass(slots=True)
class _WindowState:
    count: int
    window_start_ms: int


class InMemoryThrottleStore:
    """Process-local fixed-window counters with periodic pruning."""

    def __init__(
        self,
        window_ms: int = WINDOW_MS,
        max_store_size: int = MAX_STORE_SIZE,
        prune_interval_calls: int = PRUNE_INTERVAL_CALLS,
    ) -> None:
        self.window_ms = window_ms
        self.max_store_size = max_store_size
        self.prune_interval_calls = max(1, prune_interval_calls)
        self._entries: dict[str, _WindowState] = {}
        self._calls = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def increment(self, key: str, now_ms: int) -> int:
        with self._lock:
            self._calls += 1
            over_cap = len(self._entries) > self.max_store_size
            if over_cap or self._calls % self.prune_interval_calls == 0:
                self._prune_locked(now_ms)

            state = self._entries.get(key)
            if state is None or now_ms - state.window_start_ms > self.window_ms:
                self._entries[key] = _WindowState(count=1, window_start_ms=now_ms)
                return 1

            state.count += 1
            return state.count

    def prune(self, now_ms: int) -> None:
        with self._lock:
            self._prune_locked(now_ms)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._calls = 0

    def _prune_locked(self, now_ms: int) -> None:
        # Two windows back, so a window that just rolled over is never dropped early
        cutoff = now_ms - self.window_ms * 2
        expired = [k for k, v in self._entries.items() if v.window_start_ms < cutoff]
        for key in expired:
            del self._entries[key]

        # Still too large: coarse reset
        if len(self._entries) > self.max_store_size:
            logger.bind(size=len(self._entries)).warning("email_throttle_store_reset")
            self._entries.clear()


def build_throttle_key(route: str, email: str, ip: str) -> str:
    return f"{route}::{ip}::{email.strip().lower()}"


def get_request_ip(request: Request) -> str:
    """Best-effort client IP from proxy headers, falling back to the socket peer."""
    headers = request.headers

    cf = headers.get("cf-connecting-ip")
    if cf:
        return cf

    real = headers.get("x-real-ip")
    if real:
        return real

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or "unknown"

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


def should_throttle_public_email(
    store: ThrottleStore,
    *,
    route: str,
    email: str,
    ip: str,
    max_per_window: int = MAX_PER_WINDOW,
    now_ms: int | None = None,
) -> bool:
    """Return True if this request exceeds the per-(route, ip, email) budget."""
    if now_ms is None:
        now_ms = epoch_ms_now()
    count = store.increment(build_throttle_key(route, email, ip), now_ms)
    return count > max_per_window


_throttle_store: InMemoryThrottleStore | None = None


def get_throttle_store() -> ThrottleStore:
    """Dependency returning the process-wide throttle store."""
    global _throttle_store
    if _throttle_store is None:
        throttle = get_config().throttle
        _throttle_store = InMemoryThrottleStore(
            window_ms=throttle.window_seconds * 1000,
            max_store_size=throttle.max_store_size,
            prune_interval_calls=throttle.prune_interval_calls,
        )
    return _throttle_store
