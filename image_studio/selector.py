"""Credential selection: pure decision logic, no I/O.

Attempt 0 prefers the feature's home key. Later attempts, and attempt 0 when
the home key is unavailable, take the least-used healthy key. If no healthy
key remains, the least-used untried key is used regardless of health.

The chosen key's usage counter is bumped inside the selection call, before
any remote call, so two interleaved calls never read the same stale
"least used" value.
"""

from __future__ import annotations

import logging
from typing import AbstractSet, Mapping, Optional

from image_studio.config import FEATURE_KEY_MAP
from image_studio.health import HealthTracker
from image_studio.pool import CredentialPool

logger = logging.getLogger(__name__)


class CredentialSelector:
    def __init__(
        self,
        pool: CredentialPool,
        health: HealthTracker,
        feature_map: Mapping[str, str] = FEATURE_KEY_MAP,
    ):
        self.pool = pool
        self.health = health
        self.feature_map = feature_map

    def preferred_for(self, feature: str) -> str:
        return self.feature_map.get(feature) or self.feature_map["default"]

    def least_used(self, excluded: AbstractSet[str] = frozenset()) -> Optional[str]:
        """Least-used healthy key not in `excluded`; ties go to pool order."""
        candidates = [n for n in self.pool if n not in excluded and self.health.is_healthy(n)]
        if not candidates:
            return None
        # min() keeps the first of equal keys, i.e. pool order
        return min(candidates, key=self.pool.usage)

    def _emergency(self, excluded: AbstractSet[str]) -> Optional[str]:
        candidates = [n for n in self.pool if n not in excluded]
        if not candidates:
            return None
        return min(candidates, key=self.pool.usage)

    def select_for_attempt(
        self,
        feature: str,
        attempt: int,
        excluded: AbstractSet[str] = frozenset(),
    ) -> Optional[str]:
        choice: Optional[str] = None
        if attempt == 0:
            preferred = self.preferred_for(feature)
            if preferred in self.pool and preferred not in excluded and self.health.is_healthy(preferred):
                choice = preferred
                logger.info("Using preferred API key %s for feature: %s", preferred, feature)

        if choice is None:
            choice = self.least_used(excluded)
            if choice is not None:
                logger.info("Fallback: using API key %s for feature: %s (attempt %d)",
                            choice, feature, attempt + 1)

        if choice is None:
            choice = self._emergency(excluded)
            if choice is None:
                logger.debug("No untried API keys left for feature %s", feature)
                return None
            logger.warning("Emergency fallback: using potentially rate-limited key %s for feature: %s",
                           choice, feature)

        self.pool.record_use(choice)
        return choice
