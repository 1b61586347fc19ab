"""Tests for kicd.keystore — signing key sources."""

from __future__ import annotations

import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from kubernetes_asyncio.client.rest import ApiException

from kicd.exceptions import SecretStoreError
from kicd.keystore import KubernetesSecretStore, StaticSecretStore
from kicd.signature import derive_repository_key


def _b64(value: bytes) -> str:
    return base64.b64encode(value).decode()


def _core_api(data: dict[str, str] | None) -> AsyncMock:
    api = AsyncMock()
    api.read_namespaced_secret = AsyncMock(return_value=SimpleNamespace(data=data))
    return api


# ---------------------------------------------------------------------------
# TestStaticSecretStore
# ---------------------------------------------------------------------------


class TestStaticSecretStore:
    """Tests for StaticSecretStore."""

    async def test_returns_keys_in_order(self) -> None:
        store = StaticSecretStore(["new-secret", b"old-secret"])
        assert await store.keys_for("any/repo") == [b"new-secret", b"old-secret"]

    async def test_ignores_empty_entries(self) -> None:
        store = StaticSecretStore(["", "only"])
        assert await store.keys_for("repo") == [b"only"]


# ---------------------------------------------------------------------------
# TestKubernetesSecretStore
# ---------------------------------------------------------------------------


class TestKubernetesSecretStore:
    """Tests for KubernetesSecretStore."""

    async def test_derives_repository_keys_newest_first(self) -> None:
        api = _core_api({"master_key": _b64(b"new"), "master_key_old": _b64(b"old")})
        store = KubernetesSecretStore(api, "kicd", "kicd-keys")

        keys = await store.keys_for("org/app")

        assert keys == [
            derive_repository_key(b"new", "org/app"),
            derive_repository_key(b"old", "org/app"),
        ]
        api.read_namespaced_secret.assert_awaited_once_with("kicd-keys", "kicd")

    async def test_missing_old_key_is_skipped(self) -> None:
        store = KubernetesSecretStore(_core_api({"master_key": _b64(b"new")}), "ns", "name")
        assert await store.keys_for("org/app") == [derive_repository_key(b"new", "org/app")]

    async def test_empty_key_is_never_used(self) -> None:
        api = _core_api({"master_key": _b64(b"new"), "master_key_old": ""})
        keys = await KubernetesSecretStore(api, "ns", "name").keys_for("r")
        assert derive_repository_key(b"", "r") not in keys

    async def test_no_usable_keys_raises(self) -> None:
        with pytest.raises(SecretStoreError):
            await KubernetesSecretStore(_core_api({}), "ns", "name").keys_for("r")

    async def test_undecodable_field_skipped(self) -> None:
        api = _core_api({"master_key": "%%%not-base64%%%", "master_key_old": _b64(b"old")})
        keys = await KubernetesSecretStore(api, "ns", "name").keys_for("r")
        assert keys == [derive_repository_key(b"old", "r")]

    async def test_api_error_raises_secret_store_error(self) -> None:
        api = AsyncMock()
        api.read_namespaced_secret = AsyncMock(side_effect=ApiException(status=403))
        with pytest.raises(SecretStoreError):
            await KubernetesSecretStore(api, "ns", "name").keys_for("r")

    async def test_reads_every_request_without_cache(self) -> None:
        api = _core_api({"master_key": _b64(b"new")})
        store = KubernetesSecretStore(api, "ns", "name")

        await store.keys_for("r")
        await store.keys_for("r")

        assert api.read_namespaced_secret.await_count == 2

    async def test_cache_reuses_secret(self) -> None:
        api = _core_api({"master_key": _b64(b"new")})
        store = KubernetesSecretStore(api, "ns", "name", cache_seconds=60)

        first = await store.keys_for("a")
        second = await store.keys_for("b")

        assert api.read_namespaced_secret.await_count == 1
        assert first != second

    async def test_custom_key_fields(self) -> None:
        api = _core_api({"k2": _b64(b"two"), "k1": _b64(b"one")})
        store = KubernetesSecretStore(api, "ns", "name", key_fields=["k1", "k2"])
        assert await store.keys_for("r") == [
            derive_repository_key(b"one", "r"),
            derive_repository_key(b"two", "r"),
        ]
