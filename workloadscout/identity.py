"""Resolve cluster workloads to service identifiers.

Owner references are walked from Pods to ReplicaSets to Deployments, or from
Pods directly to StatefulSets and DaemonSets. The service-id annotation on the
resolved workload wins; otherwise the workload's name is used.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from workloadscout.objects import (
    DaemonSet,
    Deployment,
    NotFoundError,
    OwnerReference,
    Pod,
    ReplicaSet,
    StatefulSet,
)

SERVICE_ID_ANNOTATION = "incidentary.com/service-id"


class Source(str, Enum):
    """How a service id was derived."""

    ANNOTATION = "annotation"
    WORKLOAD_NAME = "workload_name"


@dataclass(frozen=True)
class Result:
    """The outcome of resolving an object to a service identity."""

    service_id: str = ""
    source: Optional[Source] = None
    owner_kind: str = ""
    owner_name: str = ""
    namespace: str = ""

    def empty(self) -> bool:
        """True when no identity was resolved."""
        return not (self.service_id or self.owner_kind or self.owner_name)


class ResolveError(Exception):
    """Raised when the reader fails for a reason other than a missing object."""


_FETCHABLE_KINDS = frozenset({"Deployment", "StatefulSet", "DaemonSet", "ReplicaSet", "Pod"})


def controller_owner(refs: Sequence[OwnerReference]) -> Optional[OwnerReference]:
    """Return the controlling owner reference, else the first one, else None."""
    for ref in refs:
        if ref.controller:
            return ref
    return refs[0] if refs else None


def _from_workload(
    kind: str, name: str, namespace: str, annotations: Optional[Mapping[str, str]]
) -> Result:
    annotated = (annotations or {}).get(SERVICE_ID_ANNOTATION, "")
    if annotated:
        return Result(annotated, Source.ANNOTATION, kind, name, namespace)
    return Result(name, Source.WORKLOAD_NAME, kind, name, namespace)


class Resolver:
    """Maps cluster objects to service identities using a reader."""

    def __init__(self, reader: Any) -> None:
        if reader is None:
            raise ValueError("reader must not be None")
        self.reader = reader

    def resolve(self, obj: Any) -> Result:
        """Resolve an object to the identity of its top-level workload."""
        if obj is None:
            return Result()
        if isinstance(obj, (Deployment, StatefulSet, DaemonSet)):
            return _from_workload(obj.kind, obj.name, obj.namespace, obj.annotations)
        if isinstance(obj, ReplicaSet):
            return self._from_replica_set(obj)
        if isinstance(obj, Pod):
            return self._from_pod(obj)
        # Non-workload objects carry no service identity themselves.
        return Result()

    def resolve_ref(self, kind: str, namespace: str, name: str) -> Result:
        """Resolve a loose (kind, namespace, name) reference."""
        if not name:
            return Result()
        if kind == "Node":
            return Result(name, Source.WORKLOAD_NAME, "Node", name, "")
        if kind not in _FETCHABLE_KINDS:
            return Result()
        try:
            obj = self._fetch(kind, namespace, name)
        except NotFoundError:
            return Result()
        return self.resolve(obj)

    def _fetch(self, kind: str, namespace: str, name: str) -> Any:
        try:
            return self.reader.get(kind, namespace, name)
        except NotFoundError:
            raise
        except Exception as err:
            raise ResolveError(f"fetch {kind} {namespace}/{name}: {err}") from err

    def _from_pod(self, pod: Pod) -> Result:
        owner = controller_owner(pod.owner_references)
        pod_result = _from_workload("Pod", pod.name, pod.namespace, pod.annotations)
        if owner is None:
            return pod_result

        if owner.kind == "ReplicaSet":
            try:
                rs = self._fetch("ReplicaSet", pod.namespace, owner.name)
            except NotFoundError:
                return pod_result
            return self._from_replica_set(rs)

        if owner.kind in ("StatefulSet", "DaemonSet"):
            try:
                workload = self._fetch(owner.kind, pod.namespace, owner.name)
            except NotFoundError:
                return _from_workload(owner.kind, owner.name, pod.namespace, None)
            return _from_workload(
                owner.kind, workload.name, workload.namespace, workload.annotations
            )

        # Jobs, CronJobs and custom controllers: fall back to the Pod itself.
        return pod_result

    def _from_replica_set(self, rs: ReplicaSet) -> Result:
        owner = controller_owner(rs.owner_references)
        rs_result = _from_workload("ReplicaSet", rs.name, rs.namespace, rs.annotations)
        if owner is None or owner.kind != "Deployment":
            return rs_result
        try:
            dep = self._fetch("Deployment", rs.namespace, owner.name)
        except NotFoundError:
            return rs_result
        return _from_workload("Deployment", dep.name, dep.namespace, dep.annotations)