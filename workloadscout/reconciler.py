"""Classify discovered workloads against the registered services list.

Each workload's service id is compared with the services the server knows
about. A workload is matched (registered and instrumented), ghost (registered
but silent), new (unregistered but recently created) or mismatched
(unregistered past the grace period). Mismatches get a suggested annotation
in the log when a registered id is close by edit distance.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence

from workloadscout.discovery_loop import DEFAULT_INTERVAL
from workloadscout.identity import SERVICE_ID_ANNOTATION
from workloadscout.objects import DaemonSet, Deployment, StatefulSet

log = logging.getLogger(__name__)

FUZZY_MATCH_THRESHOLD = 2
"""Largest edit distance at which a registered id is suggested."""

NEW_WORKLOAD_GRACE_EXTRA = 30.0
"""Seconds past the interval before an unregistered workload is mismatched."""

RECONCILER_INITIAL_BACKOFF = 5 * 60.0
"""First backoff, in seconds, while the services list is empty."""

RECONCILER_MAX_BACKOFF = 30 * 60.0
"""Ceiling, in seconds, of the exponential backoff."""


class Classification(str, Enum):
    """The reconciliation state of a workload."""

    MATCHED = "matched"
    GHOST = "ghost"
    MISMATCHED = "mismatched"
    NEW = "new"


@dataclass(frozen=True)
class ServiceEntry:
    """A service registered on the server."""

    service_id: str
    instrumented: bool = False


@dataclass(frozen=True)
class _WorkloadInfo:
    kind: str
    namespace: str
    name: str
    service_id: str
    created_at: Optional[datetime]


ServicesProvider = Callable[[], Any]


def resolved_service_id(annotations: Optional[Mapping[str, str]], fallback: str) -> str:
    """The service-id annotation if set and non-empty, else the fallback."""
    return (annotations or {}).get(SERVICE_ID_ANNOTATION, "") or fallback


def levenshtein(a: str, b: str) -> int:
    """The edit distance between two strings."""
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        curr = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            curr.append(min(prev[j] + 1, curr[j - 1] + 1, prev[j - 1] + cost))
        prev = curr
    return prev[-1]


def fuzzy_match(target: str, candidates: Sequence[str], max_dist: int) -> Optional[str]:
    """The closest candidate within max_dist edits, or None. Ties keep the first."""
    best: Optional[str] = None
    best_dist = max_dist + 1
    for candidate in candidates:
        dist = levenshtein(target, candidate)
        if dist < best_dist:
            best_dist = dist
            best = candidate
    return best if best_dist <= max_dist else None


def _age(created_at: Optional[datetime], now: datetime) -> timedelta:
    if created_at is None:
        return timedelta.max
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return now - created_at


class Reconciler:
    """Classifies workloads against the registered services list."""

    def __init__(
        self,
        reader: Any,
        loop: Any,
        services_provider: Optional[ServicesProvider],
        interval: Optional[float] = None,
    ) -> None:
        if reader is None:
            raise ValueError("reader must not be None")
        if services_provider is None:
            raise ValueError("services_provider must not be None")
        self.reader = reader
        self.loop = loop
        self.services_provider = services_provider
        self.interval = interval if interval and interval > 0 else DEFAULT_INTERVAL
        self.current_backoff = self.interval
        self._lock = threading.Lock()
        self._counts: tuple[int, int, int, int] = (0, 0, 0, 0)

    def need_leader_election(self) -> bool:
        """Reconciliation runs on the elected leader only."""
        return True

    def counts(self) -> tuple[int, int, int, int]:
        """The latest (matched, ghost, mismatched, new) counts."""
        with self._lock:
            return self._counts

    def start(self, stop_event: threading.Event) -> None:
        """Run cycles until stop_event is set, waiting the current backoff between them."""
        log.info("reconciliation loop starting interval=%s", self.interval)
        while True:
            try:
                self.run_once()
            except Exception:
                log.exception("reconciliation cycle failed")
            if stop_event.wait(self.current_backoff):
                log.info("reconciliation loop stopped")
                return

    def run_once(self) -> None:
        """Fetch services, classify every workload and update the counts."""
        registered = list(self.services_provider().list() or ())

        if not registered:
            log.debug(
                "services list empty; deferring reconciliation backoff=%s",
                self.current_backoff,
            )
            self.current_backoff = min(self.current_backoff * 2, RECONCILER_MAX_BACKOFF)
            return

        self.current_backoff = self.interval

        registered_by_id = {entry.service_id: entry for entry in registered}
        registered_ids = [entry.service_id for entry in registered]

        workloads = self._list_workloads()
        grace = timedelta(seconds=self.interval + NEW_WORKLOAD_GRACE_EXTRA)
        now = datetime.now(timezone.utc)
        tally = Counter(
            self._classify(w, registered_by_id, registered_ids, grace, now) for w in workloads
        )

        counts = (
            tally[Classification.MATCHED],
            tally[Classification.GHOST],
            tally[Classification.MISMATCHED],
            tally[Classification.NEW],
        )
        with self._lock:
            self._counts = counts

        log.debug(
            "reconciliation cycle complete registered=%d workloads=%d "
            "matched=%d ghost=%d mismatched=%d new=%d",
            len(registered),
            len(workloads),
            *counts,
        )

    def _list_workloads(self) -> list[_WorkloadInfo]:
        return [
            _WorkloadInfo(
                kind=obj.kind,
                namespace=obj.namespace,
                name=obj.name,
                service_id=resolved_service_id(obj.annotations, obj.name),
                created_at=obj.metadata.creation_timestamp,
            )
            for kind in (Deployment, StatefulSet, DaemonSet)
            for obj in self.reader.list(kind)
        ]

    def _classify(
        self,
        workload: _WorkloadInfo,
        registered_by_id: Mapping[str, ServiceEntry],
        registered_ids: Sequence[str],
        grace: timedelta,
        now: datetime,
    ) -> Classification:
        entry = registered_by_id.get(workload.service_id)
        if entry is not None:
            return Classification.MATCHED if entry.instrumented else Classification.GHOST
        if _age(workload.created_at, now) < grace:
            return Classification.NEW
        suggestion = fuzzy_match(workload.service_id, registered_ids, FUZZY_MATCH_THRESHOLD)
        if suggestion is not None:
            log.info(
                "workload service_id does not match any registered service "
                "workload=%s/%s derived_service_id=%s suggestion=%s "
                "hint=add annotation %s=%s to %s",
                workload.namespace,
                workload.name,
                workload.service_id,
                suggestion,
                SERVICE_ID_ANNOTATION,
                suggestion,
                workload.name,
            )
        return Classification.MISMATCHED