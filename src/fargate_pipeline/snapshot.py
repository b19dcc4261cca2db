"""Immutable snapshot of the last applied state of one environment."""
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from fargate_pipeline.resources import Resource, ResourceId, ResourceRef, as_resource_id


@dataclass(frozen=True)
class StateSnapshot:
    environment: str
    serial: int = 0
    resources: Tuple[Resource, ...] = ()
    updated_at: Optional[str] = None

    @classmethod
    def empty(cls, environment: str) -> "StateSnapshot":
        return cls(environment=environment)

    def get(self, resource_id: ResourceRef) -> Optional[Resource]:
        resource_id = as_resource_id(resource_id)
        for resource in self.resources:
            if resource.id == resource_id:
                return resource
        return None

    def __contains__(self, resource_id: object) -> bool:
        if not isinstance(resource_id, (ResourceId, str)):
            return False
        return self.get(resource_id) is not None

    def __iter__(self) -> Iterator[Resource]:
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self.resources)

    def ids(self) -> Tuple[ResourceId, ...]:
        return tuple(resource.id for resource in self.resources)

    def with_resource(self, resource: Resource) -> "StateSnapshot":
        """Record ``resource``, keeping its position if it was already present."""
        resources = list(self.resources)
        for index, existing in enumerate(resources):
            if existing.id == resource.id:
                resources[index] = resource
                break
        else:
            resources.append(resource)
        return self._bump(tuple(resources))

    def without(self, resource_id: ResourceRef) -> "StateSnapshot":
        resource_id = as_resource_id(resource_id)
        return self._bump(tuple(r for r in self.resources if r.id != resource_id))

    def _bump(self, resources: Tuple[Resource, ...]) -> "StateSnapshot":
        return replace(
            self,
            serial=self.serial + 1,
            resources=resources,
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environment": self.environment,
            "serial": self.serial,
            "updated_at": self.updated_at,
            "resources": [resource.to_dict() for resource in self.resources],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StateSnapshot":
        return cls(
            environment=data["environment"],
            serial=int(data.get("serial", 0)),
            updated_at=data.get("updated_at"),
            resources=tuple(Resource.from_dict(r) for r in data.get("resources", [])),
        )
