import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest

from workloadscout.discovery_loop import DEFAULT_INTERVAL, DiscoveryLoop, TopologyResponse
from workloadscout.identity import SERVICE_ID_ANNOTATION, Resolver
from workloadscout.objects import InMemoryReader, Deployment, ObjectMeta, StatefulSet
from workloadscout.reconciler import (
    RECONCILER_MAX_BACKOFF,
    Reconciler,
    ServiceEntry,
    fuzzy_match,
    levenshtein,
    resolved_service_id,
)


class FakeServices:
    def __init__(self, entries=None, error=None):
        self.entries = entries
        self.error = error

    def list(self):
        if self.error is not None:
            raise self.error
        return self.entries


class FakeTopology:
    def report(self, report):
        return TopologyResponse(accepted=len(report.workloads))


def mk_dep(name, age, annotation=""):
    annotations = {SERVICE_ID_ANNOTATION: annotation} if annotation else {}
    return Deployment(
        metadata=ObjectMeta(
            name=name,
            namespace="prod",
            annotations=annotations,
            creation_timestamp=datetime.now(timezone.utc) - age,
        )
    )


def build(reader, services, interval=60.0):
    loop = DiscoveryLoop(reader, Resolver(reader), lambda: FakeTopology())
    return Reconciler(reader, loop, lambda: services, interval)


def test_classifies_matched():
    reader = InMemoryReader(mk_dep("payment", timedelta(hours=1)))
    r = build(reader, FakeServices([ServiceEntry("payment", instrumented=True)]))
    r.run_once()
    assert r.counts() == (1, 0, 0, 0)


def test_classifies_ghost():
    reader = InMemoryReader(mk_dep("analytics", timedelta(hours=1)))
    r = build(reader, FakeServices([ServiceEntry("analytics", instrumented=False)]))
    r.run_once()
    matched, ghost, _, _ = r.counts()
    assert (matched, ghost) == (0, 1)


def test_classifies_mismatched():
    reader = InMemoryReader(mk_dep("payment-svc", timedelta(hours=1)))
    r = build(reader, FakeServices([ServiceEntry("other-thing", instrumented=True)]))
    r.run_once()
    assert r.counts()[2] == 1


def test_classifies_new_workload_in_grace_period():
    reader = InMemoryReader(mk_dep("brand-new", timedelta(seconds=10)))
    r = build(reader, FakeServices([ServiceEntry("other", instrumented=True)]))
    r.run_once()
    _, _, mismatched, new = r.counts()
    assert (new, mismatched) == (1, 0)


def test_dormant_on_empty_services():
    reader = InMemoryReader(mk_dep("web", timedelta(hours=1)))
    r = build(reader, FakeServices(None))
    initial = r.current_backoff
    r.run_once()
    assert r.current_backoff == initial * 2
    assert r.counts() == (0, 0, 0, 0)


def test_backoff_is_capped_and_resets():
    reader = InMemoryReader(mk_dep("web", timedelta(hours=1)))
    services = FakeServices([])
    r = build(reader, services, interval=1200.0)
    r.run_once()
    assert r.current_backoff == RECONCILER_MAX_BACKOFF
    r.run_once()
    assert r.current_backoff == RECONCILER_MAX_BACKOFF
    services.entries = [ServiceEntry("web", instrumented=True)]
    r.run_once()
    assert r.current_backoff == 1200.0
    assert r.counts() == (1, 0, 0, 0)


def test_annotation_override():
    reader = InMemoryReader(mk_dep("payment-v2", timedelta(hours=1), "payment"))
    r = build(reader, FakeServices([ServiceEntry("payment", instrumented=True)]))
    r.run_once()
    assert r.counts()[0] == 1


def test_statefulsets_are_classified():
    sts = StatefulSet(
        metadata=ObjectMeta(
            name="db",
            namespace="data",
            creation_timestamp=datetime.now(timezone.utc) - timedelta(hours=2),
        )
    )
    reader = InMemoryReader(sts)
    r = build(reader, FakeServices([ServiceEntry("db", instrumented=False)]))
    r.run_once()
    assert r.counts() == (0, 1, 0, 0)


def test_service_list_error_propagates():
    reader = InMemoryReader(mk_dep("web", timedelta(hours=1)))
    r = build(reader, FakeServices(error=RuntimeError("boom")))
    with pytest.raises(RuntimeError, match="boom"):
        r.run_once()


def test_mismatch_logs_suggestion(caplog):
    reader = InMemoryReader(mk_dep("order-ap", timedelta(hours=1)))
    r = build(reader, FakeServices([ServiceEntry("order-api", instrumented=True)]))
    with caplog.at_level(logging.INFO, logger="workloadscout.reconciler"):
        r.run_once()
    assert r.counts()[2] == 1
    assert "suggestion=order-api" in caplog.text


def test_start_runs_once_and_stops():
    reader = InMemoryReader(mk_dep("payment", timedelta(hours=1)))
    r = build(reader, FakeServices([ServiceEntry("payment", instrumented=True)]))
    stop = threading.Event()
    stop.set()
    r.start(stop)
    assert r.counts() == (1, 0, 0, 0)


def test_start_survives_failing_cycle():
    reader = InMemoryReader()
    r = build(reader, FakeServices(error=RuntimeError("boom")))
    stop = threading.Event()
    stop.set()
    r.start(stop)
    assert r.counts() == (0, 0, 0, 0)


@pytest.mark.parametrize(
    "target, expected",
    [
        ("payment-svc", None),
        ("payment-servic", "payment-service"),
        ("order-ap", "order-api"),
        ("completely-different", None),
    ],
)
def test_fuzzy_match(target, expected):
    candidates = ["payment-service", "order-api", "inventory-service"]
    assert fuzzy_match(target, candidates, 2) == expected


@pytest.mark.parametrize(
    "a, b, expected",
    [
        ("", "", 0),
        ("a", "", 1),
        ("", "abc", 3),
        ("kitten", "sitting", 3),
        ("same", "same", 0),
        ("payment-service", "payment-servic", 1),
    ],
)
def test_levenshtein(a, b, expected):
    assert levenshtein(a, b) == expected


def test_resolved_service_id():
    assert resolved_service_id({SERVICE_ID_ANNOTATION: "api"}, "name") == "api"
    assert resolved_service_id({SERVICE_ID_ANNOTATION: ""}, "name") == "name"
    assert resolved_service_id(None, "name") == "name"


def test_nil_reader_raises():
    with pytest.raises(ValueError):
        Reconciler(None, None, lambda: FakeServices(), 1.0)


def test_nil_services_raises():
    with pytest.raises(ValueError):
        Reconciler(InMemoryReader(), None, None, 1.0)


def test_zero_interval_defaulted():
    r = Reconciler(InMemoryReader(), None, lambda: FakeServices(), 0)
    assert r.interval == DEFAULT_INTERVAL
    assert r.current_backoff == DEFAULT_INTERVAL


def test_need_leader_election():
    r = Reconciler(InMemoryReader(), None, lambda: FakeServices(), 1.0)
    assert r.need_leader_election() is True