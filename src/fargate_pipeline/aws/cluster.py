"""ECS cluster handler."""
import logging
from typing import Any, Optional

from fargate_pipeline.aws.base import ResourceHandler, tags_lower
from fargate_pipeline.aws.clients import get_ecs_client
from fargate_pipeline.exceptions import Conflict
from fargate_pipeline.provider import ProviderRecord
from fargate_pipeline.resources import Resource, ResourceKind

logger = logging.getLogger(__name__)


class ClusterHandler(ResourceHandler):
    """Spec keys: ``cluster_name``, ``container_insights``, ``tags``."""

    kind = ResourceKind.CLUSTER

    def __init__(self, ecs_client: Any = None):
        self.ecs_client = ecs_client or get_ecs_client()

    @staticmethod
    def _cluster_name(resource: Resource) -> str:
        return resource.spec.get('cluster_name', resource.name)

    @staticmethod
    def _settings(resource: Resource):
        enabled = 'enabled' if resource.spec.get('container_insights', False) else 'disabled'
        return [{'name': 'containerInsights', 'value': enabled}]

    def find(self, resource: Resource) -> Optional[ProviderRecord]:
        """Find an ACTIVE cluster; INACTIVE clusters are leftovers of a delete."""
        response = self.ecs_client.describe_clusters(clusters=[self._cluster_name(resource)])
        for cluster in response.get('clusters', []):
            if cluster.get('status') == 'ACTIVE':
                return ProviderRecord(
                    remote_id=cluster['clusterArn'],
                    attributes={
                        'cluster_name': cluster['clusterName'],
                        'cluster_arn': cluster['clusterArn'],
                    },
                )
        return None

    def create(self, resource: Resource) -> ProviderRecord:
        name = self._cluster_name(resource)
        response = self.ecs_client.create_cluster(
            clusterName=name,
            settings=self._settings(resource),
            tags=tags_lower(resource),
        )
        cluster = response['cluster']
        logger.info(f"Created ECS cluster: {name}")
        return ProviderRecord(
            remote_id=cluster['clusterArn'],
            attributes={'cluster_name': cluster['clusterName'], 'cluster_arn': cluster['clusterArn']},
        )

    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        if self._cluster_name(resource) != self._cluster_name(previous):
            raise Conflict("cluster name cannot change in place", resource_id=resource.id)
        record = self.find(resource)
        if record is None:
            return self.create(resource)
        self.ecs_client.update_cluster(
            cluster=record.remote_id, settings=self._settings(resource)
        )
        self.ecs_client.tag_resource(resourceArn=record.remote_id, tags=tags_lower(resource))
        return record

    def delete(self, resource: Resource) -> None:
        record = self.find(resource)
        if record is None:
            return
        self.ecs_client.delete_cluster(cluster=record.remote_id)
        logger.info(f"Deleted ECS cluster: {record.attributes['cluster_name']}")
