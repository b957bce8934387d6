from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

import anyio

from .errors import ConfigurationError, SecretFetchError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

LOG = logging.getLogger("cloud_proxy.cache")

SecretValue = str | bytes


@dataclass(frozen=True)
class CachedSecret:
    name: str
    value: SecretValue
    fetched_at: float


class SecretCache:
    """Time and capacity bounded cache in front of a remote secret store.

    A lookup returns the cached value while it is younger than ``ttl``;
    otherwise the value is fetched again through ``fetch``. When an insert
    pushes the cache past ``max_entries`` only the ``max_entries`` most
    recently fetched entries are kept. Equal fetch times are ordered by
    insertion, the later insert counting as newer.

    The whole lookup (check, fetch, insert, evict) runs under a single lock,
    so concurrent misses for the same name result in one remote call.
    """

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[SecretValue]],
        *,
        max_entries: int = 10,
        ttl: timedelta = timedelta(hours=1),
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries <= 0:
            msg = f"max_entries must be positive, got {max_entries}"
            raise ConfigurationError(msg)
        if ttl <= timedelta(0):
            msg = f"ttl must be positive, got {ttl}"
            raise ConfigurationError(msg)
        self._fetch = fetch
        self._max_entries = max_entries
        self._ttl = ttl.total_seconds()
        self._clock = clock
        self._entries: dict[str, CachedSecret] = {}
        self._lock = anyio.Lock()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self._ttl)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def entries(self) -> list[CachedSecret]:
        """Snapshot of the cached entries in insertion order."""
        return list(self._entries.values())

    async def get(self, name: str) -> SecretValue:
        if not name:
            msg = "secret name must not be empty"
            raise ConfigurationError(msg)

        async with self._lock:
            cached = self._entries.get(name)
            if cached is not None and self._clock() - cached.fetched_at < self._ttl:
                LOG.debug("secret cache hit name=%s", name)
                return cached.value

            LOG.debug(
                "secret cache %s name=%s", "stale" if cached else "miss", name
            )
            try:
                value = await self._fetch(name)
            except SecretFetchError:
                raise
            except Exception as error:
                msg = f"unable to retrieve secret {name}"
                raise SecretFetchError(msg, error) from error

            self._entries.pop(name, None)
            self._entries[name] = CachedSecret(name, value, self._clock())
            if len(self._entries) > self._max_entries:
                self._evict()
            return value

    def invalidate(self, name: str) -> None:
        self._entries.pop(name, None)

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self) -> None:
        # sorted() is stable, so equal fetch times keep insertion order and the
        # newest entries end up last
        ranked = sorted(self._entries.values(), key=lambda entry: entry.fetched_at)
        keep = {entry.name for entry in ranked[-self._max_entries :]}
        evicted = [name for name in self._entries if name not in keep]
        self._entries = {
            name: entry for name, entry in self._entries.items() if name in keep
        }
        LOG.debug("evicted %d secret(s) from cache: %s", len(evicted), evicted)
