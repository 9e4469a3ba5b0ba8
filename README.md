# workloadscout

workloadscout finds the workloads running in a cluster: Deployments,
StatefulSets and DaemonSets. It works out which service each workload belongs
to, builds a topology report, and sorts every workload against a list of
registered services.

It uses only the standard library. It reaches the cluster and the reporting
API through small objects that you supply, so any client can sit behind it.
For tests and experiments, `workloadscout.objects` includes models of the
objects it reads and an in-memory reader.

## Installation

```
pip install workloadscout
```

To run the test suite:

```
pip install "workloadscout[test]"
pytest
```

## Objects and readers

`workloadscout.objects` contains dataclasses for `Deployment`, `StatefulSet`,
`DaemonSet`, `ReplicaSet`, `Pod` and `ConfigMap`. Each has an `ObjectMeta`
that holds the name, namespace, labels, annotations, owner references and
creation timestamp.

A reader is any object with these two methods:

- `get(kind, namespace, name)` returns the object, or raises `NotFoundError` if it does not exist;
- `list(kind)` returns every object of that kind.

`InMemoryReader` is a ready-made reader. `list` returns objects ordered by
namespace and then by name, and `add` stores objects, replacing any object
with the same kind, namespace and name.

## Service identity

The service a workload belongs to comes from the annotation
`incidentary.com/service-id`. If that annotation is absent or empty, the
workload's name is used instead.

The `Resolver` in `workloadscout.identity` follows owner references to find
the top-level workload. The possible chains are Pod → ReplicaSet →
Deployment, Pod → StatefulSet, and Pod → DaemonSet.

- If a Pod has no owner, or is owned by another kind of controller such as a Job, the Pod itself is used.
- If a ReplicaSet has no Deployment parent, or its Deployment is missing, the ReplicaSet is used.
- If a Pod's StatefulSet or DaemonSet is missing, the owner reference's name is used.
- `controller_owner(refs)` picks the reference marked as controller. If no reference is marked, it picks the first one.

```python
from workloadscout.objects import InMemoryReader, Deployment, ObjectMeta
from workloadscout.identity import Resolver

reader = InMemoryReader(
    Deployment(metadata=ObjectMeta(name="payments", namespace="prod",
                                   annotations={"incidentary.com/service-id": "payment-service"})),
)
resolver = Resolver(reader)
result = resolver.resolve_ref("Deployment", "prod", "payments")
print(result.service_id, result.source.value)   # payment-service annotation
```

`resolve(obj)` works on an object you already have. `resolve_ref(kind,
namespace, name)` first fetches the object and then resolves it.

- A `Node` reference resolves to the node's own name.
- An empty name, an unknown kind or a missing object gives an empty `Result`, and `result.empty()` is true.
- Any other read failure raises `ResolveError`.

## Discovery loop

`DiscoveryLoop` in `workloadscout.discovery_loop` lists Deployments,
StatefulSets and DaemonSets and leaves some of them out:

- workloads in `kube-system`, `kube-public`, `kube-node-lease`, and in any namespace passed as `exclude_namespaces`;
- system workloads, meaning those with a non-empty `k8s-app` label or with `app.kubernetes.io/component=controller-manager`.

For each remaining workload, the loop builds a `TopologyWorkload`. The
workload's service id and source come from the resolver. If resolution fails,
the workload's name is used.

The loop then calls `report(TopologyReport)` on the client returned by your
topology provider. The provider is called on every cycle, so a new client
takes effect straight away.

- If no workloads are found, no report is sent.
- `watched_workloads()` gives the count from the latest cycle.
- `last_report()` gives the time of the last successful report, or `None` if no report has succeeded.

`start(stop_event)` runs one cycle immediately, then one cycle per interval
until the event is set. The interval defaults to five minutes. Errors in a
cycle are logged, and the loop keeps running. `run_once()` runs a single cycle
and lets its errors propagate to the caller.

```python
import threading
from workloadscout.discovery_loop import DiscoveryLoop

loop = DiscoveryLoop(reader, resolver, lambda: topology_client,
                     interval=300, cluster_name="prod-eu",
                     exclude_namespaces=["sandbox"])
stop = threading.Event()
threading.Thread(target=loop.start, args=(stop,), daemon=True).start()
```

## Reconciliation

`Reconciler` in `workloadscout.reconciler` calls `list()` on the client
returned by your services provider. That call returns `ServiceEntry` values.
The reconciler then puts every Deployment, StatefulSet and DaemonSet into one
`Classification`. It takes each workload's service id from the annotation,
falling back to the workload name. It does not exclude any namespaces or
system workloads.

| Classification | Meaning |
| --- | --- |
| `MATCHED` | registered and instrumented |
| `GHOST` | registered but not instrumented |
| `NEW` | not registered, and created less than the interval plus 30 seconds ago |
| `MISMATCHED` | not registered, and older than that |

For a mismatched workload, the reconciler looks for a registered id within
Levenshtein distance 2 (`fuzzy_match`, `levenshtein`). If it finds one, it
logs that id as a suggested annotation value.

If the services list is empty, the counts are left unchanged. The wait before
the next cycle doubles each time, up to 30 minutes. When the list is
non-empty again, the wait resets to the interval.

`counts()` returns the latest `(matched, ghost, mismatched, new)` tuple.

## Informers

`InformerManager` in `workloadscout.informers` needs a cache object that
provides `get_informer(kind)` for each `WatchedKind`. There are 14 watched
kinds: pods, events, nodes, services, namespaces, workloads, HPAs, jobs,
cron jobs and ingresses.

- The manager registers add, update and delete callbacks on each informer. It forwards real objects to a `Handler` and unwraps deletions that arrive as a `Tombstone` (`unwrap_tombstone`).
- While running, it samples the size of each informer's `store` every 30 seconds. `cache_sizes()` returns the sizes by label.

The base `Handler` counts the notifications it receives; call
`notification_counts()` to read them. Subclass `Handler` to act on the
notifications.

## Event IDs

`workloadscout.ids.new_id()` returns a random UUIDv4 string in canonical
36-character form.

## What it does not do

workloadscout does not include the following:

- a client for a real cluster or for the reporting and services APIs; you supply the reader, the informer cache, and the topology and services clients;
- a command-line program;
- metrics export; counts are only available through the methods described above.