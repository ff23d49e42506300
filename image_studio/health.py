"""Per-credential health: quota classification, rate-limit flags, circuit breaker.

The rate-limited flag and the consecutive-failure counter are stored
separately. A key is unhealthy when either one trips; both resets clear the
two together.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_PATTERNS: tuple[str, ...] = (
    "quota exceeded",
    "rate limit",
    "daily limit",
    "too many requests",
    "resource exhausted",
    "quota_exceeded",
    "rate_limit_exceeded",
    "daily_limit_exceeded",
    "429",
    "resource_exhausted",
    "api_quota_exceeded",
)

# Consecutive failures before a key is treated as unhealthy
FAILURE_THRESHOLD = 5

RESET_INTERVAL_SECONDS = 3600.0


def is_transient_failure(error: object) -> bool:
    """True if the error message carries a known quota / rate-limit signature."""
    text = str(error).lower()
    if not text:
        return False
    return any(p in text for p in TRANSIENT_ERROR_PATTERNS)


class HealthTracker:
    def __init__(
        self,
        names: Iterable[str],
        reset_interval: float = RESET_INTERVAL_SECONDS,
        failure_threshold: int = FAILURE_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._names = tuple(names)
        self._rate_limited: set[str] = set()
        self._failures: dict[str, int] = {}
        self.reset_interval = reset_interval
        self.failure_threshold = failure_threshold
        self._clock = clock
        self._last_reset = clock()

    @staticmethod
    def is_transient_failure(error: object) -> bool:
        return is_transient_failure(error)

    def mark_unhealthy(self, name: str) -> None:
        self._rate_limited.add(name)
        self._failures[name] = self._failures.get(name, 0) + 1
        logger.warning("API key %s has been rate limited and marked as unavailable (failures: %d)",
                       name, self._failures[name])

    def is_healthy(self, name: str) -> bool:
        return name not in self._rate_limited and self._failures.get(name, 0) < self.failure_threshold

    def is_rate_limited(self, name: str) -> bool:
        return name in self._rate_limited

    def failures(self, name: str) -> int:
        return self._failures.get(name, 0)

    @property
    def rate_limited_count(self) -> int:
        return len(self._rate_limited)

    def reset_all(self, now: Optional[float] = None) -> bool:
        """Clear every flag and counter if the reset interval has elapsed.

        Returns True when a reset happened; earlier calls are no-ops.
        """
        now = self._clock() if now is None else now
        if now - self._last_reset < self.reset_interval:
            return False
        self._rate_limited.clear()
        self._failures.clear()
        self._last_reset = now
        logger.info("Rate limits and circuit breakers reset for all API keys")
        return True

    def reset_one(self, name: str) -> bool:
        """Clear the flag and the failure counter of one key.

        Returns False when neither was set (healthy or unknown key).
        """
        if name not in self._rate_limited and not self._failures.get(name):
            return False
        self._rate_limited.discard(name)
        self._failures.pop(name, None)
        logger.info("Manually reset rate limit and circuit breaker for key: %s", name)
        return True
