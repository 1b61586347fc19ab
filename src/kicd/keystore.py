"""Sources of webhook signing keys.

Keys are returned newest first. With the Kubernetes store every master key
is turned into a per-repository key, so a key handed to one repository's
CI cannot sign notifications for another repository.
"""

from __future__ import annotations

import base64
import binascii
import time
from collections.abc import Sequence
from typing import Any, Protocol

from kubernetes_asyncio.client import CoreV1Api
from kubernetes_asyncio.client.rest import ApiException

from kicd.exceptions import SecretStoreError
from kicd.logging import get_logger
from kicd.signature import derive_repository_key

log = get_logger("kicd.keystore")


class SecretStore(Protocol):
    async def keys_for(self, repository: str) -> list[bytes]: ...


class StaticSecretStore:
    """Shared secrets from configuration, used as-is for every repository."""

    def __init__(self, secrets: Sequence[str | bytes]) -> None:
        self._keys = [s.encode() if isinstance(s, str) else s for s in secrets if s]

    async def keys_for(self, repository: str) -> list[bytes]:
        return list(self._keys)


class KubernetesSecretStore:
    """Master keys read from a Kubernetes secret.

    ``key_fields`` names the secret data entries to use, newest first.
    Missing or empty entries are skipped; an empty HMAC key would let
    anyone forge a signature.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        namespace: str,
        name: str,
        key_fields: Sequence[str] = ("master_key", "master_key_old"),
        cache_seconds: float = 0.0,
    ) -> None:
        self._api = core_api
        self._namespace = namespace
        self._name = name
        self._key_fields = tuple(key_fields)
        self._cache_seconds = cache_seconds
        self._cached: list[bytes] | None = None
        self._cached_at = 0.0

    async def keys_for(self, repository: str) -> list[bytes]:
        masters = await self._master_keys()
        return [derive_repository_key(master, repository) for master in masters]

    async def _master_keys(self) -> list[bytes]:
        now = time.monotonic()
        if self._cached is not None and now - self._cached_at < self._cache_seconds:
            return self._cached

        try:
            secret = await self._api.read_namespaced_secret(self._name, self._namespace)
        except ApiException as exc:
            log.error(
                "secret_read_failed",
                namespace=self._namespace,
                name=self._name,
                status=exc.status,
            )
            raise SecretStoreError(f"could not read secret {self._namespace}/{self._name}") from exc

        masters = self._decode(secret.data or {})
        if not masters:
            raise SecretStoreError(
                f"secret {self._namespace}/{self._name} has none of {list(self._key_fields)}"
            )

        if self._cache_seconds > 0:
            self._cached = masters
            self._cached_at = now
        return masters

    def _decode(self, data: dict[str, Any]) -> list[bytes]:
        masters: list[bytes] = []
        for field_name in self._key_fields:
            encoded = data.get(field_name)
            if not encoded:
                continue
            try:
                value = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError):
                log.warning("secret_field_undecodable", field=field_name)
                continue
            if value:
                masters.append(value)
        return masters
