"""Shared pieces of the per-kind AWS resource handlers."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from botocore.exceptions import ClientError

from fargate_pipeline.provider import ProviderRecord
from fargate_pipeline.resources import Resource, ResourceKind

RESOURCE_TAG = "fargate-pipeline:resource"


class ResourceHandler(ABC):
    """Create/find/update/delete for one resource kind.

    ``find`` is the pre-read that makes ``create`` idempotent: the provider
    only calls ``create`` when ``find`` returned None.
    """

    kind: ResourceKind

    @abstractmethod
    def find(self, resource: Resource) -> Optional[ProviderRecord]:
        ...

    @abstractmethod
    def create(self, resource: Resource) -> ProviderRecord:
        ...

    @abstractmethod
    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        ...

    @abstractmethod
    def delete(self, resource: Resource) -> None:
        ...


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def tag_dict(resource: Resource) -> Dict[str, str]:
    """User tags from the spec plus the tag identifying the declaring resource."""
    tags = {str(k): str(v) for k, v in dict(resource.spec.get("tags", {})).items()}
    tags[RESOURCE_TAG] = str(resource.id)
    return tags


def tags_upper(resource: Resource) -> List[Dict[str, str]]:
    """Tags in the ``Key``/``Value`` shape used by EC2, ECR, ELBv2 and S3."""
    return [{"Key": k, "Value": v} for k, v in tag_dict(resource).items()]


def tags_lower(resource: Resource) -> List[Dict[str, str]]:
    """Tags in the ``key``/``value`` shape used by ECS."""
    return [{"key": k, "value": v} for k, v in tag_dict(resource).items()]


def changed(resource: Resource, previous: Resource, *keys: str) -> bool:
    spec: Mapping[str, Any] = resource.spec
    old: Mapping[str, Any] = previous.spec
    return any(spec.get(key) != old.get(key) for key in keys)
