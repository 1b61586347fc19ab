"""Workload kinds the relay can roll images out to.

Deployments and StatefulSets share the same update semantics (a pod
template with an ordered container list, and a resource version) but are
separate resources in the apps/v1 API, so each kind gets a small adapter
over :class:`kubernetes_asyncio.client.AppsV1Api`.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Any

from kubernetes_asyncio.client import AppsV1Api

from kicd.exceptions import InvalidContainerIndex


class Workload:
    """A Deployment or StatefulSet as last read from the API server."""

    def __init__(self, kind: WorkloadKind, obj: Any) -> None:
        self.kind = kind
        self.obj = obj

    def __repr__(self) -> str:
        return f"Workload({self.kind.name}, {self.namespace}/{self.name})"

    @property
    def name(self) -> str:
        return str(self.obj.metadata.name)

    @property
    def namespace(self) -> str:
        return str(self.obj.metadata.namespace)

    @property
    def labels(self) -> dict[str, str]:
        return dict(self.obj.metadata.labels or {})

    @property
    def resource_version(self) -> str | None:
        return self.obj.metadata.resource_version

    @property
    def containers(self) -> list[Any]:
        return list(self.obj.spec.template.spec.containers or [])

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.kind.name, self.namespace, self.name)

    def image_at(self, index: int) -> str:
        containers = self.containers
        if not 0 <= index < len(containers):
            raise InvalidContainerIndex(index, len(containers))
        return str(containers[index].image)

    def with_updated_image(self, index: int, image: str) -> Workload:
        """Return a copy whose container at *index* runs *image*.

        The copy keeps the resource version it was read with, so replacing
        it fails with a conflict if anyone changed the workload since.
        """
        self.image_at(index)
        updated = copy.deepcopy(self.obj)
        updated.spec.template.spec.containers[index].image = image
        return Workload(self.kind, updated)


class WorkloadKind(ABC):
    """List/read/replace operations for one apps/v1 resource kind."""

    name: str = ""

    def __init__(self, api: AppsV1Api) -> None:
        self._api = api

    async def list_labelled(self, label_selector: str) -> list[Workload]:
        """List workloads carrying *label_selector* in every namespace."""
        result = await self._list_all(label_selector)
        return [Workload(self, item) for item in result.items or []]

    async def read(self, name: str, namespace: str) -> Workload:
        return Workload(self, await self._read(name, namespace))

    async def replace(self, workload: Workload) -> Workload:
        obj = await self._replace(workload.name, workload.namespace, workload.obj)
        return Workload(self, obj)

    @abstractmethod
    async def _list_all(self, label_selector: str) -> Any: ...

    @abstractmethod
    async def _read(self, name: str, namespace: str) -> Any: ...

    @abstractmethod
    async def _replace(self, name: str, namespace: str, body: Any) -> Any: ...


class DeploymentKind(WorkloadKind):
    name = "deployment"

    async def _list_all(self, label_selector: str) -> Any:
        return await self._api.list_deployment_for_all_namespaces(label_selector=label_selector)

    async def _read(self, name: str, namespace: str) -> Any:
        return await self._api.read_namespaced_deployment(name, namespace)

    async def _replace(self, name: str, namespace: str, body: Any) -> Any:
        return await self._api.replace_namespaced_deployment(name, namespace, body)


class StatefulSetKind(WorkloadKind):
    name = "statefulset"

    async def _list_all(self, label_selector: str) -> Any:
        return await self._api.list_stateful_set_for_all_namespaces(
            label_selector=label_selector
        )

    async def _read(self, name: str, namespace: str) -> Any:
        return await self._api.read_namespaced_stateful_set(name, namespace)

    async def _replace(self, name: str, namespace: str, body: Any) -> Any:
        return await self._api.replace_namespaced_stateful_set(name, namespace, body)


def workload_kinds(api: AppsV1Api) -> list[WorkloadKind]:
    """All kinds the relay updates, in the order they are processed."""
    return [DeploymentKind(api), StatefulSetKind(api)]
