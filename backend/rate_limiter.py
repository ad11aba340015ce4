"""
Login attempt limiting per client key (usually the client IP).

Best-effort only: the in-memory store lives and dies with the process and is not
shared between replicas. Point the limiter at ``RedisAttemptStore`` to share it.
"""
import logging
import threading
import time
from typing import Callable, Dict, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

MAX_LOGIN_ATTEMPTS = 5
LOGIN_WINDOW_SECONDS = 10 * 60
SWEEP_INTERVAL_SECONDS = 60


class Attempt(NamedTuple):
    count: int
    last_attempt: float


class InMemoryAttemptStore:
    """Process-local store; entries expire ``ttl`` seconds after their last attempt.

    Expired entries are swept on write, at most once per ``SWEEP_INTERVAL_SECONDS``
    of attempt time, so keys that never come back do not accumulate.
    """

    def __init__(self):
        self._attempts: Dict[str, Tuple[Attempt, float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)

    def get(self, key: str) -> Optional[Attempt]:
        with self._lock:
            entry = self._attempts.get(key)
            return entry[0] if entry else None

    def set(self, key: str, attempt: Attempt, ttl: int) -> None:
        now = attempt.last_attempt
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
                self._next_sweep = now + min(ttl, SWEEP_INTERVAL_SECONDS)
            self._attempts[key] = (attempt, now + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._attempts.items() if expires_at <= now]
        for key in expired:
            del self._attempts[key]
        if expired:
            logger.debug("Dropped %s expired login attempt entries", len(expired))


class LoginRateLimiter:
    def __init__(
        self,
        store=None,
        max_attempts: int = MAX_LOGIN_ATTEMPTS,
        window_seconds: int = LOGIN_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else InMemoryAttemptStore()
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.clock = clock

    def is_limited(self, key: str) -> bool:
        """True once the key has used up its attempts in the current window.

        Fails open: if the store cannot be consulted the attempt is allowed.
        """
        try:
            entry = self.store.get(key)
            if entry is None:
                return False
            if self.clock() - entry.last_attempt > self.window_seconds:
                self.store.delete(key)
                return False
            return entry.count >= self.max_attempts
        except Exception:
            logger.exception("Rate limit lookup failed for %s, allowing attempt", key)
            return False

    def record_failure(self, key: str) -> None:
        now = self.clock()
        try:
            entry = self.store.get(key)
            if entry is None or now - entry.last_attempt > self.window_seconds:
                attempt = Attempt(1, now)
            else:
                attempt = Attempt(entry.count + 1, now)
            self.store.set(key, attempt, self.window_seconds)
        except Exception:
            logger.exception("Could not record login attempt for %s", key)
