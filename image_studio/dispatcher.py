"""Retry orchestration across the key pool, plus the monitoring surface.

One Dispatcher is built at startup and shared by reference; it owns the pool,
the health tracker, and the selector. All of its state is mutated from a
single event loop, and no mutation spans an await, so it needs no locks.

Per call:

    SELECT -> INVOKE -> SUCCESS
                     -> transient failure -> mark key, back off -> SELECT
                     -> other failure     -> re-raise unchanged

Keys already tried in a call are skipped. Once every key has been tried and
attempts remain, the tried set is released so a small pool can still be
retried up to max_attempts times.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from image_studio.config import FEATURE_KEY_MAP, Settings
from image_studio.dispatch_log import DispatchLog, DispatchRecord
from image_studio.errors import CredentialsExhaustedError
from image_studio.health import HealthTracker, is_transient_failure
from image_studio.models import UNASSIGNED, Credential, KeyUsage, SystemStatus
from image_studio.pool import CredentialPool
from image_studio.selector import CredentialSelector

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_CAP_SECONDS = 5.0


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after a failed attempt (0-based): 1, 2, 4, 5, 5, ..."""
    return min(BACKOFF_BASE_SECONDS * (2 ** attempt), BACKOFF_CAP_SECONDS)


def _tag(exc: BaseException, feature: str, attempts: int) -> None:
    try:
        exc.dispatch_feature = feature  # type: ignore[attr-defined]
        exc.dispatch_attempts = attempts  # type: ignore[attr-defined]
    except AttributeError:
        pass


def _identity(credential: Credential) -> Any:
    return credential


class Dispatcher:
    def __init__(
        self,
        pool: CredentialPool,
        health: Optional[HealthTracker] = None,
        feature_map: Mapping[str, str] = FEATURE_KEY_MAP,
        client_factory: Callable[[Credential], Any] = _identity,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        dispatch_log: Optional[DispatchLog] = None,
    ):
        self.pool = pool
        self.health = health or HealthTracker(pool.names)
        self.feature_map = feature_map
        self.selector = CredentialSelector(pool, self.health, feature_map)
        self.client_factory = client_factory
        self.max_attempts = max_attempts
        self._sleep = sleep
        self.log = dispatch_log or DispatchLog()
        self._maintenance: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls,
        slots: Mapping[str, str],
        settings: Settings,
        client_factory: Callable[[Credential], Any] = _identity,
    ) -> "Dispatcher":
        pool = CredentialPool(slots)
        return cls(
            pool,
            health=HealthTracker(pool.names, reset_interval=settings.reset_interval),
            client_factory=client_factory,
            max_attempts=settings.max_attempts,
            dispatch_log=DispatchLog(settings.dispatch_log),
        )

    async def execute_with_retry(
        self,
        feature: str,
        operation: Callable[[Any], Awaitable[T]],
        max_attempts: Optional[int] = None,
    ) -> T:
        """Run `operation` with a client bound to a selected key, failing over on quota errors.

        Raises:
            CredentialsExhaustedError: every attempt hit a quota error, or no
                key could be selected.
            Exception: any non-quota error from `operation`, unchanged, after
                a single attempt. It gains `dispatch_feature` and
                `dispatch_attempts` attributes.
        """
        limit = self.max_attempts if max_attempts is None else max_attempts
        if limit < 1:
            raise ValueError(f"max_attempts must be >= 1, got {limit}")

        tried: set[str] = set()
        attempts = 0
        last_error: Optional[Exception] = None
        record = DispatchRecord(feature)
        try:
            for attempt in range(limit):
                name = self.selector.select_for_attempt(feature, attempt, tried)
                if name is None and tried:
                    logger.warning("All %d keys already tried for feature %s; reusing them",
                                   len(tried), feature)
                    tried.clear()
                    name = self.selector.select_for_attempt(feature, attempt, tried)
                if name is None:
                    record.finish("exhausted", last_error)
                    raise CredentialsExhaustedError(
                        feature, attempts, last_error, reason="found no available API key",
                    ) from last_error

                tried.add(name)
                attempts += 1
                client = self.client_factory(self.pool.credential(name))
                start = time.monotonic()
                try:
                    result = await operation(client)
                except Exception as exc:
                    latency = (time.monotonic() - start) * 1000
                    last_error = exc
                    if not is_transient_failure(exc):
                        logger.error("Non-recoverable error for feature %s on key %s: %s",
                                     feature, name, exc)
                        record.add(name, "fatal", latency)
                        record.finish("fatal", exc)
                        _tag(exc, feature, attempts)
                        raise
                    self.health.mark_unhealthy(name)
                    record.add(name, "rate_limited", latency)
                    if attempt < limit - 1:
                        delay = backoff_delay(attempt)
                        logger.info("Rate limit detected on %s. Waiting %.0fms before retry...",
                                    name, delay * 1000)
                        await self._sleep(delay)
                    continue

                record.add(name, "success", (time.monotonic() - start) * 1000)
                record.finish("success")
                if attempts > 1:
                    logger.info("Operation succeeded on attempt %d for feature: %s", attempts, feature)
                return result

            logger.error("Giving up on feature %s after %d attempts", feature, attempts)
            record.finish("exhausted", last_error)
            raise CredentialsExhaustedError(
                feature, attempts, last_error, reason="exhausted its retries",
            ) from last_error
        finally:
            self.log.write(record)

    # ── monitoring ──

    def feature_for(self, name: str) -> str:
        for feature, key_name in self.feature_map.items():
            if key_name == name:
                return feature
        return UNASSIGNED

    def usage_snapshot(self) -> list[KeyUsage]:
        rows = [
            KeyUsage(
                name=name,
                usage_count=self.pool.usage(name),
                is_rate_limited=self.health.is_rate_limited(name),
                failures=self.health.failures(name),
                feature=self.feature_for(name),
            )
            for name in self.pool
        ]
        return sorted(rows, key=lambda r: r.usage_count, reverse=True)

    def system_snapshot(self) -> SystemStatus:
        names = self.pool.names
        return SystemStatus(
            total_credentials=len(names),
            healthy_credentials=sum(1 for n in names if self.health.is_healthy(n)),
            rate_limited_credentials=sum(1 for n in names if self.health.is_rate_limited(n)),
            total_requests=self.pool.total_usage,
        )

    def reset_one(self, name: str) -> bool:
        cleared = self.health.reset_one(name)
        if cleared:
            self.log.health_reset(name)
        return cleared

    # ── hourly maintenance ──

    def start_maintenance(self) -> None:
        """Schedule the periodic reset sweep on the running loop."""
        if self._maintenance is None or self._maintenance.done():
            self._maintenance = asyncio.create_task(self._maintenance_loop())
            logger.info("Health reset sweep started. Interval: %.0f seconds.",
                        self.health.reset_interval)

    async def stop_maintenance(self) -> None:
        task, self._maintenance = self._maintenance, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _maintenance_loop(self) -> None:
        while True:
            await asyncio.sleep(self.health.reset_interval)
            if self.health.reset_all():
                self.log.health_reset()
