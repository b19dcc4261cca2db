"""
Provider boundary.

A ProviderAdapter translates one reconciliation operation into a control-plane
call. Every failure leaving an adapter is a ProviderError subclass; raw SDK
errors are classified here.
"""
import copy
import itertools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from botocore.exceptions import ClientError

from fargate_pipeline.exceptions import (
    Conflict,
    NotAuthorized,
    NotFound,
    ProviderError,
    Throttled,
    UnknownProviderError,
)
from fargate_pipeline.resources import Resource, ResourceId, ResourceKind
from fargate_pipeline.utils.decorators import retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderRecord:
    """Materialized remote identity and attributes of one resource."""
    remote_id: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    ready: bool = True


class ProviderAdapter(ABC):
    """Capability interface implemented by every provider.

    ``resource.spec`` is already resolved: it holds no ``Ref`` values.
    """

    @abstractmethod
    def create(self, resource: Resource) -> ProviderRecord:
        """Create the resource, or return the existing equivalent one."""

    @abstractmethod
    def read(self, resource: Resource) -> ProviderRecord:
        """Return the current record; raise NotFound when it does not exist."""

    @abstractmethod
    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        """Converge the remote resource from ``previous`` to ``resource``."""

    @abstractmethod
    def delete(self, resource: Resource) -> None:
        """Delete the resource. Deleting a missing resource is not an error."""


THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "RequestThrottled",
    "RequestThrottledException",
    "ProvisionedThroughputExceededException",
    "PriorRequestNotComplete",
    "SlowDown",
}

AUTHORIZATION_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "UnauthorizedOperation",
    "UnrecognizedClientException",
    "InvalidClientTokenId",
    "ExpiredToken",
    "ExpiredTokenException",
    "AuthFailure",
    "NotAuthorized",
}

CONFLICT_CODES = {
    "ConflictException",
    "ResourceInUse",
    "ResourceInUseException",
    "DependencyViolation",
    "InvalidParameterCombination",
    "IncorrectState",
    "BucketAlreadyExists",
}


def classify_client_error(error: ClientError, resource_id: Optional[ResourceId] = None) -> ProviderError:
    """Map a botocore ClientError onto the provider error taxonomy."""
    err = error.response.get("Error", {})
    code = err.get("Code", "")
    message = err.get("Message", str(error))
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    detail = {"operation": error.operation_name, "http_status": status}

    if code in THROTTLING_CODES or status == 429:
        cls = Throttled
    elif code in AUTHORIZATION_CODES or status == 403:
        cls = NotAuthorized
    elif code in CONFLICT_CODES or "AlreadyExists" in code or status == 409:
        cls = Conflict
    elif "NotFound" in code or code.startswith("NoSuch") or status == 404:
        cls = NotFound
    else:
        cls = UnknownProviderError
    return cls(message, resource_id=resource_id, code=code or None, detail=detail)


class RetryingProvider(ProviderAdapter):
    """Wraps a provider and retries Throttled failures with exponential backoff.

    Every other failure kind propagates on the first occurrence.
    """

    def __init__(self, inner: ProviderAdapter, max_attempts: int = 5, base_delay: float = 1.0,
                 factor: float = 2.0, sleep: Callable[[float], None] = time.sleep):
        self.inner = inner
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.factor = factor
        self.sleep = sleep

    def _call(self, method: Callable, *args):
        wrapped = retry(
            max_attempts=self.max_attempts,
            delay=self.base_delay,
            backoff=self.factor,
            exceptions=(Throttled,),
            logger_name=__name__,
            sleep=self.sleep,
        )(method)
        return wrapped(*args)

    def create(self, resource: Resource) -> ProviderRecord:
        return self._call(self.inner.create, resource)

    def read(self, resource: Resource) -> ProviderRecord:
        return self._call(self.inner.read, resource)

    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        return self._call(self.inner.update, resource, previous)

    def delete(self, resource: Resource) -> None:
        return self._call(self.inner.delete, resource)


class InMemoryProvider(ProviderAdapter):
    """Provider keeping remote records in a dict.

    Used in ``local-dev`` mode to rehearse plans without touching AWS.
    ``fail_on`` maps ``(operation, resource_id)`` to an exception raised instead
    of performing that call.
    """

    def __init__(self):
        self.records: Dict[ResourceId, Dict[str, Any]] = {}
        self.calls = []
        self.fail_on: Dict[tuple, Exception] = {}
        self._ids = itertools.count(1)

    def _check_failure(self, operation: str, resource: Resource) -> None:
        self.calls.append((operation, resource.id))
        failure = self.fail_on.get((operation, resource.id))
        if failure is not None:
            raise failure

    def create(self, resource: Resource) -> ProviderRecord:
        self._check_failure("create", resource)
        existing = self.records.get(resource.id)
        if existing is not None:
            logger.info(f"Using existing {resource.id}: {existing['remote_id']}")
            return self._record(existing)

        remote_id = f"{resource.kind.value}-{next(self._ids):04d}"
        self.records[resource.id] = {
            "remote_id": remote_id,
            "kind": resource.kind,
            "spec": copy.deepcopy(dict(resource.spec)),
        }
        logger.info(f"Created {resource.id}: {remote_id}")
        return self._record(self.records[resource.id])

    def read(self, resource: Resource) -> ProviderRecord:
        self._check_failure("read", resource)
        existing = self.records.get(resource.id)
        if existing is None:
            raise NotFound("resource does not exist", resource_id=resource.id)
        return self._record(existing)

    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        self._check_failure("update", resource)
        existing = self.records.get(resource.id)
        if existing is None:
            # Records do not survive a restart; adopt the id already in the snapshot
            if resource.remote_id is None:
                raise NotFound("resource does not exist", resource_id=resource.id)
            existing = self.records[resource.id] = {"remote_id": resource.remote_id, "kind": resource.kind}
        existing["spec"] = copy.deepcopy(dict(resource.spec))
        logger.info(f"Updated {resource.id}")
        return self._record(existing)

    def delete(self, resource: Resource) -> None:
        self._check_failure("delete", resource)
        if self.records.pop(resource.id, None) is not None:
            logger.info(f"Deleted {resource.id}")

    @staticmethod
    def _record(entry: Mapping[str, Any]) -> ProviderRecord:
        remote_id = entry["remote_id"]
        attributes = {"id": remote_id, **entry["spec"]}
        simulate = SIMULATED_ATTRIBUTES.get(entry["kind"])
        if simulate is not None:
            attributes.update(simulate(remote_id, entry["spec"]))
        return ProviderRecord(remote_id=remote_id, attributes=attributes)


# Attribute names match the ones the AWS handlers return, so a stack wired with
# Refs resolves the same way against either provider.
SIMULATED_ATTRIBUTES = {
    ResourceKind.NETWORK: lambda rid, spec: {
        "vpc_id": rid,
        "subnet_ids": [f"{rid}-subnet-{i}" for i in range(spec.get("availability_zones", 2))],
        "security_group_id": f"{rid}-sg",
    },
    ResourceKind.REGISTRY: lambda rid, spec: {
        "repository_name": spec.get("repository_name", rid),
        "repository_uri": f"123456789012.dkr.ecr.local.amazonaws.com/{spec.get('repository_name', rid)}",
        "repository_arn": f"arn:aws:ecr:local:123456789012:repository/{spec.get('repository_name', rid)}",
    },
    ResourceKind.CLUSTER: lambda rid, spec: {
        "cluster_name": spec.get("cluster_name", rid),
        "cluster_arn": f"arn:aws:ecs:local:123456789012:cluster/{spec.get('cluster_name', rid)}",
    },
    ResourceKind.LOAD_BALANCER: lambda rid, spec: {
        "load_balancer_arn": f"arn:aws:elasticloadbalancing:local:123456789012:loadbalancer/app/{rid}",
        "dns_name": f"{rid}.elb.local.amazonaws.com",
        "canonical_hosted_zone_id": "Z00000000LOCAL",
    },
    ResourceKind.LISTENER: lambda rid, spec: {
        "listener_arn": f"arn:aws:elasticloadbalancing:local:123456789012:listener/{rid}",
        "target_group_arn": f"arn:aws:elasticloadbalancing:local:123456789012:targetgroup/{rid}",
    },
    ResourceKind.SERVICE: lambda rid, spec: {
        "service_name": spec.get("service_name", rid),
        "service_arn": f"arn:aws:ecs:local:123456789012:service/{spec.get('service_name', rid)}",
        "task_definition_arn": f"arn:aws:ecs:local:123456789012:task-definition/{rid}:1",
    },
    ResourceKind.DNS_RECORD: lambda rid, spec: {
        "fqdn": spec.get("record_name", rid),
    },
    ResourceKind.PIPELINE: lambda rid, spec: {
        "bucket_name": spec.get("bucket_name", rid),
        "bucket_arn": f"arn:aws:s3:::{spec.get('bucket_name', rid)}",
    },
}
