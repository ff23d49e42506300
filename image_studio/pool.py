"""Credential pool: the fixed set of non-empty keys known at startup."""

from __future__ import annotations

import logging
from typing import Iterator, Mapping

from image_studio.errors import NoCredentialsConfiguredError
from image_studio.models import Credential

logger = logging.getLogger(__name__)


class CredentialPool:
    """Ordered, immutable set of credentials plus their usage counters.

    Usage counters only grow; nothing in the pool ever decrements or clears
    them.
    """

    def __init__(self, slots: Mapping[str, str]):
        self._credentials: dict[str, Credential] = {
            name: Credential(name=name, secret=value.strip())
            for name, value in slots.items()
            if value and value.strip()
        }
        if not self._credentials:
            raise NoCredentialsConfiguredError(list(slots))
        self._usage: dict[str, int] = {name: 0 for name in self._credentials}
        logger.info("Loaded %d API keys for feature rotation with automatic fallback",
                    len(self._credentials))

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._credentials)

    def credential(self, name: str) -> Credential:
        try:
            return self._credentials[name]
        except KeyError:
            raise KeyError(f"Unknown credential: {name}") from None

    def usage(self, name: str) -> int:
        return self._usage.get(name, 0)

    def record_use(self, name: str) -> int:
        if name not in self._usage:
            raise KeyError(f"Unknown credential: {name}")
        self._usage[name] += 1
        return self._usage[name]

    @property
    def total_usage(self) -> int:
        return sum(self._usage.values())

    def __contains__(self, name: object) -> bool:
        return name in self._credentials

    def __iter__(self) -> Iterator[str]:
        return iter(self._credentials)

    def __len__(self) -> int:
        return len(self._credentials)
