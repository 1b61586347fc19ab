"""Kubernetes API client bootstrap."""

from __future__ import annotations

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client.rest import ApiException

from kicd.logging import get_logger

log = get_logger("kicd.kube")


class ControlPlaneUnavailable(RuntimeError):
    """Raised at startup when the API server cannot be reached."""


async def create_api_client(kubeconfig: str | None = None) -> client.ApiClient:
    """Load in-cluster credentials, falling back to a kubeconfig file."""
    if kubeconfig:
        await config.load_kube_config(config_file=kubeconfig)
        log.info("kube_config_loaded", source=kubeconfig)
    else:
        try:
            config.load_incluster_config()
            log.info("kube_config_loaded", source="in-cluster")
        except config.ConfigException:
            await config.load_kube_config()
            log.info("kube_config_loaded", source="kubeconfig")
    return client.ApiClient()


async def probe(api_client: client.ApiClient) -> str:
    """Return the API server version, or raise if it cannot be reached."""
    try:
        info = await client.VersionApi(api_client).get_code()
    except (ApiException, OSError) as exc:
        raise ControlPlaneUnavailable(f"Kubernetes API server unreachable: {exc}") from exc
    return str(info.git_version)
