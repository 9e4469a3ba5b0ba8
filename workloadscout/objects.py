"""Lightweight models of the cluster objects the scout inspects, plus an
in-memory reader used to look them up by kind, namespace and name."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, Iterable, Optional, Union


@dataclass
class OwnerReference:
    """A reference from an object to the object that owns it."""

    kind: str
    name: str
    api_version: str = ""
    controller: Optional[bool] = None


@dataclass
class ObjectMeta:
    """Metadata shared by every cluster object."""

    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[OwnerReference] = field(default_factory=list)
    creation_timestamp: Optional[datetime] = None


@dataclass
class Container:
    """A container in a pod template."""

    name: str = ""
    image: str = ""


@dataclass
class DeploymentCondition:
    """A single status condition reported by a Deployment."""

    type: str
    status: str


@dataclass
class _KubeObject:
    KIND: ClassVar[str] = ""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)

    @property
    def kind(self) -> str:
        return self.KIND

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.labels

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.annotations

    @property
    def owner_references(self) -> list[OwnerReference]:
        return self.metadata.owner_references


@dataclass
class Deployment(_KubeObject):
    KIND: ClassVar[str] = "Deployment"

    replicas: Optional[int] = None
    containers: list[Container] = field(default_factory=list)
    available_replicas: int = 0
    conditions: list[DeploymentCondition] = field(default_factory=list)


@dataclass
class StatefulSet(_KubeObject):
    KIND: ClassVar[str] = "StatefulSet"

    replicas: Optional[int] = None
    containers: list[Container] = field(default_factory=list)
    ready_replicas: int = 0


@dataclass
class DaemonSet(_KubeObject):
    KIND: ClassVar[str] = "DaemonSet"

    containers: list[Container] = field(default_factory=list)
    desired_number_scheduled: int = 0
    number_ready: int = 0


@dataclass
class ReplicaSet(_KubeObject):
    KIND: ClassVar[str] = "ReplicaSet"


@dataclass
class Pod(_KubeObject):
    KIND: ClassVar[str] = "Pod"

    containers: list[Container] = field(default_factory=list)


@dataclass
class ConfigMap(_KubeObject):
    KIND: ClassVar[str] = "ConfigMap"

    data: dict[str, str] = field(default_factory=dict)


class NotFoundError(LookupError):
    """Raised when a requested object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


KindSpec = Union[str, type]


def _kind_name(kind: KindSpec) -> str:
    return kind if isinstance(kind, str) else kind.KIND


class InMemoryReader:
    """A reader holding objects in memory, keyed by kind, namespace and name."""

    def __init__(self, *objects: _KubeObject) -> None:
        self._objects: dict[tuple[str, str, str], _KubeObject] = {}
        self.add(*objects)

    def add(self, *objects: _KubeObject) -> None:
        """Store objects, replacing any with the same kind, namespace and name."""
        for obj in objects:
            self._objects[(obj.kind, obj.namespace, obj.name)] = obj

    def get(self, kind: KindSpec, namespace: str, name: str) -> _KubeObject:
        """Return the object or raise NotFoundError."""
        kind_name = _kind_name(kind)
        try:
            return self._objects[(kind_name, namespace, name)]
        except KeyError:
            raise NotFoundError(kind_name, namespace, name) from None

    def list(self, kind: KindSpec) -> list[_KubeObject]:
        """Return every object of a kind, ordered by namespace then name."""
        kind_name = _kind_name(kind)
        return [
            obj
            for key, obj in sorted(self._objects.items(), key=lambda item: item[0])
            if key[0] == kind_name
        ]

    def __iter__(self) -> Iterable[_KubeObject]:
        return iter(list(self._objects.values()))

    def __len__(self) -> int:
        return len(self._objects)