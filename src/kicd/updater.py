"""Resolve labelled workloads and roll a new image out to them.

Lifecycle of one rollout:
1. List Deployments and StatefulSets carrying the repository's label key
2. Decode each label value; skip malformed labels and other branches
3. For every remaining workload, re-read it, swap the container image and
   replace it with the fresh resource version
4. Retry step 3 on conflict, up to the retry policy's bound
5. Report each updated workload to Slack
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from kubernetes_asyncio.client import AppsV1Api
from kubernetes_asyncio.client.rest import ApiException

from kicd.exceptions import (
    ConflictRetryExhausted,
    ControlPlaneQueryError,
    InvalidContainerIndex,
    MalformedLabel,
)
from kicd.labels import DEFAULT_LABEL_PREFIX, LabelTarget, decode_label_value, label_key_for
from kicd.logging import get_logger
from kicd.models import Target
from kicd.notifier import Notifier, NullNotifier
from kicd.workloads import Workload, WorkloadKind, workload_kinds

log = get_logger("kicd.updater")

HTTP_CONFLICT = 409


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for conflicting updates."""

    attempts: int = 5
    delay_seconds: float = 0.01
    factor: float = 1.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must not be negative")
        if self.factor < 1.0:
            raise ValueError("factor must be at least 1.0 so delays never shrink")

    def delays(self) -> Iterator[float]:
        """Delays to sleep between consecutive attempts."""
        delay = self.delay_seconds
        for _ in range(self.attempts - 1):
            yield delay
            delay *= self.factor


class OutcomeStatus(Enum):
    """What happened to one workload."""

    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class WorkloadOutcome:
    """Result for a single workload."""

    kind: str
    namespace: str
    name: str
    status: OutcomeStatus
    detail: str = ""
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
            "status": self.status.value,
            "detail": self.detail,
            "attempts": self.attempts,
        }


@dataclass
class RolloutResult:
    """Per-workload outcomes of one rollout."""

    target: Target
    outcomes: list[WorkloadOutcome] = field(default_factory=list)

    def _with_status(self, status: OutcomeStatus) -> list[WorkloadOutcome]:
        return [o for o in self.outcomes if o.status is status]

    @property
    def updated(self) -> list[WorkloadOutcome]:
        return self._with_status(OutcomeStatus.UPDATED)

    @property
    def skipped(self) -> list[WorkloadOutcome]:
        return self._with_status(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> list[WorkloadOutcome]:
        return self._with_status(OutcomeStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.target.to_dict(),
            "updated": len(self.updated),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass(frozen=True)
class Candidate:
    """A listed workload whose label targets the rollout branch."""

    workload: Workload
    label: LabelTarget


def _outcome(
    workload: Workload, status: OutcomeStatus, detail: str = "", attempts: int = 0
) -> WorkloadOutcome:
    return WorkloadOutcome(
        kind=workload.kind.name,
        namespace=workload.namespace,
        name=workload.name,
        status=status,
        detail=detail,
        attempts=attempts,
    )


class WorkloadUpdater:
    """Rolls images out to workloads labelled for a repository."""

    def __init__(
        self,
        apps_api: AppsV1Api,
        notifier: Notifier | None = None,
        retry_policy: RetryPolicy | None = None,
        label_prefix: str = DEFAULT_LABEL_PREFIX,
        kinds: list[WorkloadKind] | None = None,
    ) -> None:
        self._kinds = kinds if kinds is not None else workload_kinds(apps_api)
        self._notifier: Notifier = notifier or NullNotifier()
        self._retry = retry_policy or RetryPolicy()
        self._label_prefix = label_prefix

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(self, target: Target) -> list[Workload]:
        """List every workload carrying the repository's label key."""
        selector = label_key_for(target.repository, self._label_prefix)
        listed: list[Workload] = []
        for kind in self._kinds:
            try:
                workloads = await kind.list_labelled(selector)
            except ApiException as exc:
                log.error("workload_list_failed", kind=kind.name, status=exc.status)
                raise ControlPlaneQueryError(f"could not list {kind.name}s: {exc.reason}") from exc
            log.info("workloads_listed", kind=kind.name, selector=selector, count=len(workloads))
            listed.extend(workloads)
        return listed

    def select(
        self, target: Target, workloads: list[Workload]
    ) -> tuple[list[Candidate], list[WorkloadOutcome]]:
        """Split listed workloads into update candidates and skips."""
        label_key = label_key_for(target.repository, self._label_prefix)
        candidates: list[Candidate] = []
        skipped: list[WorkloadOutcome] = []

        for workload in workloads:
            value = workload.labels.get(label_key, "")
            try:
                label = decode_label_value(value)
            except MalformedLabel as exc:
                log.warning(
                    "workload_label_malformed",
                    kind=workload.kind.name,
                    namespace=workload.namespace,
                    name=workload.name,
                    label=value,
                    reason=exc.reason,
                )
                skipped.append(_outcome(workload, OutcomeStatus.SKIPPED, str(exc)))
                continue

            if label.branch != target.branch:
                log.info(
                    "workload_branch_mismatch",
                    kind=workload.kind.name,
                    namespace=workload.namespace,
                    name=workload.name,
                    label_branch=label.branch,
                    branch=target.branch,
                )
                skipped.append(_outcome(workload, OutcomeStatus.SKIPPED, "branch mismatch"))
                continue

            candidates.append(Candidate(workload=workload, label=label))

        return candidates, skipped

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update_workload(
        self,
        kind: WorkloadKind,
        name: str,
        namespace: str,
        container_index: int,
        image: str,
    ) -> tuple[Workload, int]:
        """Set one container's image with optimistic concurrency.

        Returns the replaced workload and the number of attempts used.
        Raises :class:`InvalidContainerIndex` without writing anything when
        the label points past the container list, and
        :class:`ConflictRetryExhausted` when every attempt conflicted.
        Other API errors propagate on the first occurrence.
        """
        delays = self._retry.delays()
        for attempt in range(1, self._retry.attempts + 1):
            fresh = await kind.read(name, namespace)
            updated = fresh.with_updated_image(container_index, image)
            try:
                replaced = await kind.replace(updated)
            except ApiException as exc:
                if exc.status != HTTP_CONFLICT:
                    raise
                log.info(
                    "workload_update_conflict",
                    kind=kind.name,
                    namespace=namespace,
                    name=name,
                    attempt=attempt,
                    resource_version=fresh.resource_version,
                )
                delay = next(delays, None)
                if delay is None:
                    break
                await asyncio.sleep(delay)
                continue
            return replaced, attempt

        raise ConflictRetryExhausted(self._retry.attempts)

    async def _apply(self, candidate: Candidate, image: str, lock: asyncio.Lock) -> WorkloadOutcome:
        workload = candidate.workload
        index = candidate.label.container_index
        log.info(
            "workload_ready_for_update",
            kind=workload.kind.name,
            namespace=workload.namespace,
            name=workload.name,
            container_index=index,
        )

        async with lock:
            try:
                _, attempts = await self.update_workload(
                    workload.kind, workload.name, workload.namespace, index, image
                )
            except InvalidContainerIndex as exc:
                log.warning(
                    "workload_container_index_invalid",
                    kind=workload.kind.name,
                    namespace=workload.namespace,
                    name=workload.name,
                    container_index=index,
                    containers=exc.container_count,
                )
                return _outcome(workload, OutcomeStatus.FAILED, str(exc))
            except ConflictRetryExhausted as exc:
                log.error(
                    "workload_update_conflict_exhausted",
                    kind=workload.kind.name,
                    namespace=workload.namespace,
                    name=workload.name,
                    attempts=exc.attempts,
                )
                return _outcome(workload, OutcomeStatus.FAILED, str(exc), exc.attempts)
            except ApiException as exc:
                log.error(
                    "workload_update_failed",
                    kind=workload.kind.name,
                    namespace=workload.namespace,
                    name=workload.name,
                    status=exc.status,
                    reason=exc.reason,
                )
                return _outcome(workload, OutcomeStatus.FAILED, f"API error {exc.status}")
            except Exception as exc:
                log.exception(
                    "workload_update_unexpected_error",
                    kind=workload.kind.name,
                    namespace=workload.namespace,
                    name=workload.name,
                )
                return _outcome(workload, OutcomeStatus.FAILED, f"Unexpected error: {exc}")

        text = (
            f"Successfully updated {workload.kind.name} {workload.name} in namespace "
            f"{workload.namespace} with the newest image tag ({image})."
        )
        log.info(
            "workload_updated",
            kind=workload.kind.name,
            namespace=workload.namespace,
            name=workload.name,
            image=image,
            attempts=attempts,
        )
        await self._notifier.notify(text)
        return _outcome(workload, OutcomeStatus.UPDATED, image, attempts)

    # ------------------------------------------------------------------
    # Primary flow
    # ------------------------------------------------------------------

    async def rollout(self, target: Target) -> RolloutResult:
        """Roll *target.image* out to every matching workload.

        Raises :class:`ControlPlaneQueryError` if listing fails; every
        per-workload problem is recorded in the result instead.
        """
        log.info(
            "rollout_started",
            repository=target.repository,
            branch=target.branch,
            image=target.image,
        )
        workloads = await self.resolve(target)
        candidates, skipped = self.select(target, workloads)

        locks: defaultdict[tuple[str, str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        applied = await asyncio.gather(
            *(self._apply(c, target.image, locks[c.workload.identity]) for c in candidates)
        )

        result = RolloutResult(target=target, outcomes=[*skipped, *applied])
        log.info(
            "rollout_finished",
            repository=target.repository,
            branch=target.branch,
            updated=len(result.updated),
            skipped=len(result.skipped),
            failed=len(result.failed),
        )
        return result
