"""Tests for kicd.workloads — Deployment/StatefulSet adapters."""

from __future__ import annotations

import pytest

from fakes import FakeAppsApi, make_workload
from kicd.exceptions import InvalidContainerIndex
from kicd.workloads import DeploymentKind, StatefulSetKind, Workload, workload_kinds


class TestWorkload:
    """Tests for the Workload wrapper."""

    def test_accessors(self, fake_apps: FakeAppsApi) -> None:
        obj = make_workload("web", "prod", {"ki-cd/app": "main.0"}, ["a:1", "b:1"], "7")
        workload = Workload(DeploymentKind(fake_apps), obj)

        assert workload.name == "web"
        assert workload.namespace == "prod"
        assert workload.labels == {"ki-cd/app": "main.0"}
        assert workload.resource_version == "7"
        assert [c.image for c in workload.containers] == ["a:1", "b:1"]
        assert workload.identity == ("deployment", "prod", "web")

    def test_with_updated_image_returns_copy(self, fake_apps: FakeAppsApi) -> None:
        obj = make_workload("web", images=["a:1", "b:1"])
        workload = Workload(DeploymentKind(fake_apps), obj)

        updated = workload.with_updated_image(1, "b:2")

        assert updated.image_at(1) == "b:2"
        assert updated.image_at(0) == "a:1"
        assert workload.image_at(1) == "b:1"
        assert updated.resource_version == workload.resource_version

    @pytest.mark.parametrize("index", [1, 5, -1])
    def test_with_updated_image_out_of_range(self, fake_apps: FakeAppsApi, index: int) -> None:
        workload = Workload(StatefulSetKind(fake_apps), make_workload("db", images=["pg:15"]))
        with pytest.raises(InvalidContainerIndex) as exc_info:
            workload.with_updated_image(index, "pg:16")
        assert exc_info.value.container_count == 1


class TestWorkloadKinds:
    """Tests for the per-kind API adapters."""

    def test_kind_order(self, fake_apps: FakeAppsApi) -> None:
        assert [k.name for k in workload_kinds(fake_apps)] == ["deployment", "statefulset"]

    async def test_list_labelled_uses_all_namespaces(self, fake_apps: FakeAppsApi) -> None:
        fake_apps.add("deployment", make_workload("a", "ns1", {"ki-cd/app": "main.0"}))
        fake_apps.add("deployment", make_workload("b", "ns2", {"ki-cd/app": "dev.0"}))
        fake_apps.add("deployment", make_workload("c", "ns1", {"other": "x"}))

        listed = await DeploymentKind(fake_apps).list_labelled("ki-cd/app")

        assert sorted(w.name for w in listed) == ["a", "b"]
        assert fake_apps.calls == [("list", "deployment", "ki-cd/app")]

    async def test_read_and_replace_statefulset(self, fake_apps: FakeAppsApi) -> None:
        fake_apps.add("statefulset", make_workload("db", "data", images=["pg:15"]))
        kind = StatefulSetKind(fake_apps)

        fresh = await kind.read("db", "data")
        replaced = await kind.replace(fresh.with_updated_image(0, "pg:16"))

        assert replaced.image_at(0) == "pg:16"
        assert replaced.resource_version == "2"
        assert fake_apps.stored("statefulset", "data", "db").spec.template.spec.containers[
            0
        ].image == "pg:16"
