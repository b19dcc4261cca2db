"""ProviderAdapter backed by boto3, one handler per resource kind."""
import logging
from typing import Callable, Dict, Iterable, Optional, TypeVar

from botocore.exceptions import ClientError

from fargate_pipeline.aws.base import ResourceHandler
from fargate_pipeline.exceptions import NotFound, ProviderError
from fargate_pipeline.provider import ProviderAdapter, ProviderRecord, classify_client_error
from fargate_pipeline.resources import Resource, ResourceKind

logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_handlers() -> Iterable[ResourceHandler]:
    from fargate_pipeline.aws.cluster import ClusterHandler
    from fargate_pipeline.aws.dns import DnsRecordHandler
    from fargate_pipeline.aws.load_balancer import ListenerHandler, LoadBalancerHandler
    from fargate_pipeline.aws.network import NetworkHandler
    from fargate_pipeline.aws.pipeline_bucket import PipelineBucketHandler
    from fargate_pipeline.aws.registry import RegistryHandler
    from fargate_pipeline.aws.service import ServiceHandler

    return [
        NetworkHandler(),
        RegistryHandler(),
        ClusterHandler(),
        LoadBalancerHandler(),
        ListenerHandler(),
        ServiceHandler(),
        DnsRecordHandler(),
        PipelineBucketHandler(),
    ]


class AwsProvider(ProviderAdapter):
    """Dispatches each operation to the handler for the resource's kind.

    Every botocore ClientError is classified before leaving this class.
    """

    def __init__(self, handlers: Optional[Iterable[ResourceHandler]] = None):
        if handlers is None:
            handlers = default_handlers()
        self.handlers: Dict[ResourceKind, ResourceHandler] = {h.kind: h for h in handlers}

    def _handler(self, resource: Resource) -> ResourceHandler:
        handler = self.handlers.get(resource.kind)
        if handler is None:
            raise ProviderError(f"no handler for kind {resource.kind.value}", resource_id=resource.id)
        return handler

    @staticmethod
    def _guard(resource: Resource, call: Callable[[], T]) -> T:
        try:
            return call()
        except ClientError as e:
            error = classify_client_error(e, resource.id)
            logger.error(f"{resource.id}: {error}")
            raise error from e

    def create(self, resource: Resource) -> ProviderRecord:
        handler = self._handler(resource)

        def create():
            existing = handler.find(resource)
            if existing is not None:
                logger.info(f"Using existing {resource.id}: {existing.remote_id}")
                return existing
            return handler.create(resource)

        return self._guard(resource, create)

    def read(self, resource: Resource) -> ProviderRecord:
        handler = self._handler(resource)
        record = self._guard(resource, lambda: handler.find(resource))
        if record is None:
            raise NotFound("resource does not exist", resource_id=resource.id)
        return record

    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        handler = self._handler(resource)
        return self._guard(resource, lambda: handler.update(resource, previous))

    def delete(self, resource: Resource) -> None:
        handler = self._handler(resource)
        self._guard(resource, lambda: handler.delete(resource))
