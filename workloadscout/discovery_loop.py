"""Periodic workload discovery and topology reporting.

Each cycle enumerates Deployments, StatefulSets and DaemonSets, resolves a
service id for each, and sends a topology report through the active topology
client. The client is looked up on every cycle so credential rotation takes
effect without rebuilding the loop.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

from workloadscout.identity import ResolveError, Resolver, Result, Source
from workloadscout.objects import (
    Container,
    DaemonSet,
    Deployment,
    DeploymentCondition,
    StatefulSet,
)

log = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5 * 60.0
"""Seconds between cycles when no positive interval is given."""

DEFAULT_EXCLUDED_NAMESPACES = frozenset({"kube-system", "kube-public", "kube-node-lease"})

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class WorkloadCondition:
    """A status condition carried in a topology report."""

    type: str
    status: str


@dataclass
class TopologyWorkload:
    """One workload as reported to the topology endpoint."""

    service_id: str
    service_id_source: str
    kind: str
    namespace: str
    replicas: int = 0
    available_replicas: int = 0
    image: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    created_at: int = 0
    conditions: list[WorkloadCondition] = field(default_factory=list)


@dataclass
class TopologyReport:
    """A full topology snapshot of the cluster."""

    cluster_name: str
    observed_at: int
    workloads: list[TopologyWorkload]


@dataclass
class TopologyResponse:
    """The server's answer to a topology report."""

    accepted: int = 0
    created_ghost_services: int = 0
    updated_services: int = 0


TopologyProvider = Callable[[], Any]


def is_system_workload(labels: Optional[Mapping[str, str]]) -> bool:
    """True for infrastructure workloads that are never reported."""
    if not labels:
        return False
    if labels.get("app.kubernetes.io/component") == "controller-manager":
        return True
    # kube-proxy, kube-dns, metrics-server and friends all carry k8s-app.
    return bool(labels.get("k8s-app"))


def primary_image(containers: Optional[Sequence[Container]]) -> str:
    """The image of the first container, or an empty string."""
    return containers[0].image if containers else ""


def fallback_name(preferred: str, fallback: str) -> str:
    """Return preferred unless it is empty."""
    return preferred or fallback


def source_string(source: Union[Source, str, None]) -> str:
    """The wire value of a source, defaulting to the workload-name source."""
    if not source:
        return Source.WORKLOAD_NAME.value
    return source.value if isinstance(source, Source) else str(source)


def conditions_from_deployment(
    conditions: Iterable[DeploymentCondition],
) -> list[WorkloadCondition]:
    """Convert Deployment conditions to report conditions."""
    return [WorkloadCondition(type=str(c.type), status=str(c.status)) for c in conditions]


def _unix_nanos(ts: Optional[datetime]) -> int:
    if ts is None:
        return 0
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    delta = ts - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1000


class DiscoveryLoop:
    """Periodically scans the cluster and reports its workload topology."""

    def __init__(
        self,
        reader: Any,
        resolver: Optional[Resolver],
        topology_provider: Optional[TopologyProvider],
        *,
        interval: Optional[float] = None,
        cluster_name: str = "",
        exclude_namespaces: Iterable[str] = (),
    ) -> None:
        if reader is None:
            raise ValueError("reader must not be None")
        if resolver is None:
            raise ValueError("resolver must not be None")
        if topology_provider is None:
            raise ValueError("topology_provider must not be None")
        self.reader = reader
        self.resolver = resolver
        self.topology_provider = topology_provider
        self.cluster_name = cluster_name
        self.interval = interval if interval and interval > 0 else DEFAULT_INTERVAL
        self.excludes = frozenset(DEFAULT_EXCLUDED_NAMESPACES | set(exclude_namespaces))
        self._lock = threading.Lock()
        self._watched = 0
        self._last_report: Optional[datetime] = None

    def need_leader_election(self) -> bool:
        """Only the elected leader may report, to avoid duplicate ghosts."""
        return True

    def start(self, stop_event: threading.Event) -> None:
        """Run one cycle now, then one per interval until stop_event is set."""
        log.info(
            "discovery loop starting interval=%s cluster_name=%s",
            self.interval,
            self.cluster_name,
        )
        self._run_logged("initial discovery cycle failed")
        while not stop_event.wait(self.interval):
            self._run_logged("discovery cycle failed")
        log.info("discovery loop stopped")

    def _run_logged(self, message: str) -> None:
        try:
            self.run_once()
        except Exception:
            log.exception(message)

    def run_once(self) -> None:
        """Perform one discovery and report cycle; errors propagate."""
        workloads = self._collect_workloads()
        with self._lock:
            self._watched = len(workloads)

        if not workloads:
            log.debug("no workloads discovered")
            return

        report = TopologyReport(
            cluster_name=self.cluster_name,
            observed_at=time.time_ns(),
            workloads=workloads,
        )
        response = self.topology_provider().report(report)

        with self._lock:
            self._last_report = datetime.now(timezone.utc)
        log.info(
            "topology reported workloads=%d created_ghosts=%s updated=%s",
            len(workloads),
            getattr(response, "created_ghost_services", None),
            getattr(response, "updated_services", None),
        )

    def watched_workloads(self) -> int:
        """The workload count seen by the most recent cycle."""
        with self._lock:
            return self._watched

    def last_report(self) -> Optional[datetime]:
        """When the last report succeeded, or None if none has yet."""
        with self._lock:
            return self._last_report

    def _included(self, obj: Any) -> bool:
        return obj.namespace not in self.excludes and not is_system_workload(obj.labels)

    def _collect_workloads(self) -> list[TopologyWorkload]:
        out: list[TopologyWorkload] = []
        for kind, convert in (
            (Deployment, self._from_deployment),
            (StatefulSet, self._from_stateful_set),
            (DaemonSet, self._from_daemon_set),
        ):
            out.extend(convert(obj) for obj in self.reader.list(kind) if self._included(obj))
        return out

    def _resolve(self, kind: str, namespace: str, name: str) -> Result:
        try:
            return self.resolver.resolve_ref(kind, namespace, name)
        except ResolveError:
            return Result()

    def _base(self, obj: Any) -> dict[str, Any]:
        res = self._resolve(obj.kind, obj.namespace, obj.name)
        return {
            "service_id": fallback_name(res.service_id, obj.name),
            "service_id_source": source_string(res.source),
            "kind": obj.kind,
            "namespace": obj.namespace,
            "image": primary_image(obj.containers),
            "labels": obj.labels,
            "annotations": obj.annotations,
            "created_at": _unix_nanos(obj.metadata.creation_timestamp),
        }

    def _from_deployment(self, d: Deployment) -> TopologyWorkload:
        return TopologyWorkload(
            **self._base(d),
            replicas=d.replicas if d.replicas is not None else 0,
            available_replicas=d.available_replicas,
            conditions=conditions_from_deployment(d.conditions),
        )

    def _from_stateful_set(self, s: StatefulSet) -> TopologyWorkload:
        return TopologyWorkload(
            **self._base(s),
            replicas=s.replicas if s.replicas is not None else 0,
            available_replicas=s.ready_replicas,
        )

    def _from_daemon_set(self, d: DaemonSet) -> TopologyWorkload:
        return TopologyWorkload(
            **self._base(d),
            replicas=d.desired_number_scheduled,
            available_replicas=d.number_ready,
        )