"""Watch the cluster resources the scout cares about.

Every watched kind has an informer in a shared cache. The manager registers
add, update and delete callbacks on each informer, forwards the objects to a
handler, and samples how many objects each informer store holds.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from workloadscout.objects import ObjectMeta

log = logging.getLogger(__name__)

CACHE_REPORT_INTERVAL = 30.0
"""Seconds between samples of the informer store sizes."""


class WatchedKind(Enum):
    """Every resource kind the scout watches, read-only, with its size label."""

    PODS = ("pods", "v1", "Pod")
    EVENTS_CORE = ("events_core", "v1", "Event")
    EVENTS_V1 = ("events_v1", "events.k8s.io/v1", "Event")
    NODES = ("nodes", "v1", "Node")
    SERVICES = ("services", "v1", "Service")
    NAMESPACES = ("namespaces", "v1", "Namespace")
    DEPLOYMENTS = ("deployments", "apps/v1", "Deployment")
    STATEFULSETS = ("statefulsets", "apps/v1", "StatefulSet")
    DAEMONSETS = ("daemonsets", "apps/v1", "DaemonSet")
    REPLICASETS = ("replicasets", "apps/v1", "ReplicaSet")
    HPAS = ("hpas", "autoscaling/v2", "HorizontalPodAutoscaler")
    JOBS = ("jobs", "batch/v1", "Job")
    CRONJOBS = ("cronjobs", "batch/v1", "CronJob")
    INGRESSES = ("ingresses", "networking.k8s.io/v1", "Ingress")

    def __init__(self, label: str, api_version: str, object_kind: str) -> None:
        self.label = label
        self.api_version = api_version
        self.object_kind = object_kind

    @property
    def group(self) -> str:
        return self.api_version.rpartition("/")[0]

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]

    @property
    def gvk(self) -> str:
        """Group, version and kind as 'group/version, Kind=Name'."""
        return f"{self.group}/{self.version}, Kind={self.object_kind}"


@dataclass(frozen=True)
class Tombstone:
    """A deletion noticed only after a relist; obj is the last state seen."""

    key: str
    obj: Any


def _is_object(raw: Any) -> bool:
    return isinstance(getattr(raw, "metadata", None), ObjectMeta)


def unwrap_tombstone(raw: Any) -> Optional[Any]:
    """Return the cluster object inside raw, unwrapping a tombstone, or None."""
    if isinstance(raw, Tombstone):
        raw = raw.obj
    return raw if _is_object(raw) else None


_handler_lock = threading.Lock()


class Handler:
    """Receives notifications about watched objects.

    Called from informer threads; implementations must be thread-safe. The
    base implementation counts the notifications it receives by type.
    """

    def _record(self, event: str) -> None:
        with _handler_lock:
            counts = self.__dict__.setdefault("_counts", Counter())
            counts[event] += 1

    def on_add(self, obj: Any) -> None:
        """Called when an object appears."""
        self._record("add")

    def on_update(self, old: Any, new: Any) -> None:
        """Called when an object changes."""
        self._record("update")

    def on_delete(self, obj: Any) -> None:
        """Called when an object is removed."""
        self._record("delete")

    def notification_counts(self) -> dict[str, int]:
        """Number of add, update and delete notifications received so far."""
        with _handler_lock:
            counts = self.__dict__.get("_counts", Counter())
            return {event: counts[event] for event in ("add", "update", "delete")}


class InformerManager:
    """Registers handlers on every watched informer and reports store sizes.

    The cache must offer get_informer(kind) for each WatchedKind; the returned
    informer must offer add_event_handler(on_add, on_update, on_delete) and
    may expose a store with a list() method.
    """

    def __init__(self, cache: Any, handler: Optional[Handler]) -> None:
        if handler is None:
            raise ValueError("handler must not be None")
        self.cache = cache
        self.handler = handler
        self._stores: list[tuple[str, Any]] = []
        self._sizes: dict[str, int] = {}
        self._lock = threading.Lock()

    def need_leader_election(self) -> bool:
        """Event processing is singleton, so only the leader runs it."""
        return True

    def start(self, stop_event: threading.Event) -> None:
        """Register every informer, then block until stop_event is set."""
        if self.cache is None:
            raise RuntimeError("informer cache is not set")

        for kind in WatchedKind:
            try:
                informer = self.cache.get_informer(kind)
            except Exception as err:
                raise RuntimeError(f"get informer for {kind.object_kind}: {err}") from err

            store = getattr(informer, "store", None)
            if store is not None:
                with self._lock:
                    self._stores.append((kind.label, store))

            try:
                informer.add_event_handler(self._on_add, self._on_update, self._on_delete)
            except Exception as err:
                raise RuntimeError(
                    f"add event handler for {kind.object_kind}: {err}"
                ) from err

        log.info(
            "informers registered count=%d stores=%d", len(WatchedKind), len(self._stores)
        )
        reporter = threading.Thread(
            target=self._report_loop, args=(stop_event,), name="cache-size-report", daemon=True
        )
        reporter.start()
        stop_event.wait()
        reporter.join()

    def _on_add(self, raw: Any) -> None:
        if _is_object(raw):
            self.handler.on_add(raw)

    def _on_update(self, old: Any, new: Any) -> None:
        if _is_object(old) and _is_object(new):
            self.handler.on_update(old, new)

    def _on_delete(self, raw: Any) -> None:
        obj = unwrap_tombstone(raw)
        if obj is not None:
            self.handler.on_delete(obj)

    def _report_loop(self, stop_event: threading.Event) -> None:
        self.report_cache_sizes()
        while not stop_event.wait(CACHE_REPORT_INTERVAL):
            self.report_cache_sizes()

    def report_cache_sizes(self) -> None:
        """Take one snapshot of the number of objects in each store."""
        with self._lock:
            stores = list(self._stores)
        sizes = {label: len(store.list()) for label, store in stores}
        with self._lock:
            self._sizes.update(sizes)

    def cache_sizes(self) -> dict[str, int]:
        """The most recent store sizes, keyed by resource label."""
        with self._lock:
            return dict(self._sizes)