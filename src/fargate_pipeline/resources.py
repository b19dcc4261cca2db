"""
Resource value objects.

A Resource is a declared infrastructure unit: its identity, the spec the user
declared, the identities it depends on and its lifecycle state. Resources are
frozen; every state change returns a new instance.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Union

from fargate_pipeline.exceptions import InvalidTransition


class ResourceKind(str, Enum):
    NETWORK = "network"
    REGISTRY = "registry"
    CLUSTER = "cluster"
    LOAD_BALANCER = "load_balancer"
    LISTENER = "listener"
    SERVICE = "service"
    DNS_RECORD = "dns_record"
    PIPELINE = "pipeline"


class LifecycleState(str, Enum):
    PLANNED = "planned"
    CREATING = "creating"
    ACTIVE = "active"
    UPDATING = "updating"
    DELETING = "deleting"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    LifecycleState.PLANNED: {LifecycleState.CREATING},
    LifecycleState.CREATING: {LifecycleState.ACTIVE, LifecycleState.FAILED},
    LifecycleState.ACTIVE: {LifecycleState.UPDATING, LifecycleState.DELETING},
    LifecycleState.UPDATING: {LifecycleState.ACTIVE, LifecycleState.FAILED},
    LifecycleState.DELETING: {LifecycleState.FAILED},
    LifecycleState.FAILED: {
        LifecycleState.CREATING,
        LifecycleState.UPDATING,
        LifecycleState.DELETING,
    },
}


@dataclass(frozen=True, order=True)
class ResourceId:
    kind: ResourceKind
    name: str

    def __str__(self) -> str:
        return f"{self.kind.value}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> "ResourceId":
        """Parse the ``kind/name`` form produced by ``str()``."""
        kind, _, name = value.partition("/")
        if not name:
            raise ValueError(f"Invalid resource id: {value!r}")
        return cls(ResourceKind(kind), name)


ResourceRef = Union[ResourceId, str]


def as_resource_id(value: ResourceRef) -> ResourceId:
    if isinstance(value, ResourceId):
        return value
    return ResourceId.parse(value)


@dataclass(frozen=True)
class Ref:
    """Placeholder for an attribute of another resource, resolved at apply time."""
    resource_id: ResourceId
    attribute: str

    def to_dict(self) -> Dict[str, str]:
        return {"$ref": str(self.resource_id), "attribute": self.attribute}

    @classmethod
    def from_dict(cls, data: Mapping[str, str]) -> "Ref":
        return cls(ResourceId.parse(data["$ref"]), data["attribute"])


def spec_refs(value: Any) -> FrozenSet[ResourceId]:
    """All resource ids referenced by Ref values anywhere inside a spec."""
    if isinstance(value, Ref):
        return frozenset([value.resource_id])
    if isinstance(value, Mapping):
        found = frozenset()
        for item in value.values():
            found |= spec_refs(item)
        return found
    if isinstance(value, (list, tuple)):
        found = frozenset()
        for item in value:
            found |= spec_refs(item)
        return found
    return frozenset()


def encode_spec(value: Any) -> Any:
    """Convert a spec into JSON-compatible data."""
    if isinstance(value, Ref):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {k: encode_spec(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_spec(v) for v in value]
    return value


def decode_spec(value: Any) -> Any:
    if isinstance(value, Mapping):
        if "$ref" in value:
            return Ref.from_dict(value)
        return {k: decode_spec(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_spec(v) for v in value]
    return value


@dataclass(frozen=True)
class Resource:
    """A declared infrastructure unit and, once applied, its remote record."""

    id: ResourceId
    spec: Mapping[str, Any] = field(default_factory=dict)
    depends_on: FrozenSet[ResourceId] = frozenset()
    state: LifecycleState = LifecycleState.PLANNED
    remote_id: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def declare(cls, kind: ResourceKind, name: str, spec: Optional[Mapping[str, Any]] = None,
                depends_on: Iterable[ResourceRef] = ()) -> "Resource":
        return cls(
            id=ResourceId(kind, name),
            spec=dict(spec or {}),
            depends_on=frozenset(as_resource_id(d) for d in depends_on),
        )

    @property
    def kind(self) -> ResourceKind:
        return self.id.kind

    @property
    def name(self) -> str:
        return self.id.name

    @property
    def materialized(self) -> bool:
        return self.remote_id is not None

    def transition(self, target: LifecycleState) -> "Resource":
        """Return a copy in ``target`` state, rejecting undocumented transitions."""
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(self.id, self.state.value, target.value)
        return replace(self, state=target)

    def with_record(self, remote_id: Optional[str], attributes: Mapping[str, Any]) -> "Resource":
        return replace(self, remote_id=remote_id, attributes=dict(attributes))

    def with_spec(self, spec: Mapping[str, Any]) -> "Resource":
        return replace(self, spec=dict(spec))

    def same_declaration(self, other: "Resource") -> bool:
        return encode_spec(dict(self.spec)) == encode_spec(dict(other.spec)) and self.depends_on == other.depends_on

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "spec": encode_spec(dict(self.spec)),
            "depends_on": sorted(str(d) for d in self.depends_on),
            "state": self.state.value,
            "remote_id": self.remote_id,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Resource":
        return cls(
            id=ResourceId.parse(data["id"]),
            spec=decode_spec(data.get("spec", {})),
            depends_on=frozenset(ResourceId.parse(d) for d in data.get("depends_on", [])),
            state=LifecycleState(data.get("state", LifecycleState.ACTIVE.value)),
            remote_id=data.get("remote_id"),
            attributes=dict(data.get("attributes", {})),
        )
