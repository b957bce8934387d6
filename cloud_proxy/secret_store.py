from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import TYPE_CHECKING, Any

from .cache import SecretCache, SecretValue
from .errors import SecretFetchError
from .settings import SecretCacheSettings
from .tasks import run_sync

if TYPE_CHECKING:
    from collections.abc import Callable

LOG = logging.getLogger("cloud_proxy.secret_store")


class CloudSecretsProxy(ABC):
    """Cached access to a remote secret store.

    Every proxy owns its own :class:`SecretCache`; nothing is shared between
    instances.
    """

    provider = "unknown"

    def __init__(
        self,
        client: Any,
        settings: SecretCacheSettings | None = None,
        *,
        clock: Callable[[], float] | None = None,
    ):
        settings = settings or SecretCacheSettings()
        self._client = client
        cache_kwargs: dict[str, Any] = {}
        if clock is not None:
            cache_kwargs["clock"] = clock
        self._cache = SecretCache(
            self._fetch,
            max_entries=settings.max_entries,
            ttl=settings.ttl,
            **cache_kwargs,
        )

    @property
    def client(self) -> Any:
        return self._client

    @property
    def cache(self) -> SecretCache:
        return self._cache

    async def get_secret(self, name: str) -> str:
        value = await self._cache.get(name)
        if isinstance(value, bytes):
            try:
                return value.decode("utf-8")
            except UnicodeDecodeError as error:
                msg = f"secret {name} is binary, not UTF-8 text"
                raise SecretFetchError(msg, error) from error
        return value

    async def get_binary_secret(self, name: str) -> bytes:
        value = await self._cache.get(name)
        if isinstance(value, str):
            return value.encode("utf-8")
        return value

    def invalidate(self, name: str) -> None:
        self._cache.invalidate(name)

    @abstractmethod
    async def _fetch(self, name: str) -> SecretValue:
        """Retrieve the current value of ``name`` from the remote store."""


class AWSSecretsProxy(CloudSecretsProxy):
    provider = "aws_secrets_manager"

    async def _fetch(self, name: str) -> SecretValue:
        response = await run_sync(
            partial(self._client.get_secret_value, SecretId=name)
        )
        if response.get("SecretString") is not None:
            return response["SecretString"]
        if response.get("SecretBinary") is not None:
            LOG.debug("secret %s holds a binary value", name)
            return response["SecretBinary"]
        msg = f"secret {name} has no value"
        raise SecretFetchError(msg)


class AzureSecretsProxy(CloudSecretsProxy):
    provider = "azure_key_vault"

    async def _fetch(self, name: str) -> SecretValue:
        secret = await run_sync(self._client.get_secret, name)
        if secret.value is None:
            msg = f"secret {name} has no value"
            raise SecretFetchError(msg)
        return secret.value
