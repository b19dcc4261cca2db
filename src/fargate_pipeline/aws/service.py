"""Fargate task definitions and ECS services."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from fargate_pipeline.aws.base import ResourceHandler, changed, tags_lower
from fargate_pipeline.aws.clients import get_ecs_client
from fargate_pipeline.exceptions import Conflict, NotFound
from fargate_pipeline.provider import ProviderRecord
from fargate_pipeline.resources import Resource, ResourceKind

logger = logging.getLogger(__name__)

# Fields of a described task definition accepted back by register_task_definition
REGISTERABLE_FIELDS = (
    'family',
    'taskRoleArn',
    'executionRoleArn',
    'networkMode',
    'containerDefinitions',
    'volumes',
    'placementConstraints',
    'requiresCompatibilities',
    'cpu',
    'memory',
    'runtimePlatform',
)

CONTAINER_KEYS = ('family', 'container_name', 'repository_uri', 'image_tag', 'container_port',
                  'cpu', 'memory', 'execution_role_arn', 'environment')


def build_task_definition(spec: Dict[str, Any]) -> Dict[str, Any]:
    """Build a Fargate task definition with a single container."""
    container = {
        'name': spec['container_name'],
        'image': f"{spec['repository_uri']}:{spec.get('image_tag', 'latest')}",
        'essential': True,
        'portMappings': [{
            'containerPort': int(spec.get('container_port', 80)),
            'protocol': 'tcp',
        }],
        'environment': [
            {'name': k, 'value': str(v)} for k, v in sorted(dict(spec.get('environment', {})).items())
        ],
    }
    task_definition = {
        'family': spec['family'],
        'networkMode': 'awsvpc',
        'requiresCompatibilities': ['FARGATE'],
        'cpu': str(spec.get('cpu', 256)),
        'memory': str(spec.get('memory', 512)),
        'containerDefinitions': [container],
    }
    if spec.get('execution_role_arn'):
        task_definition['executionRoleArn'] = spec['execution_role_arn']
    return task_definition


class ServiceHandler(ResourceHandler):
    """Fargate service behind a target group.

    Spec keys: ``service_name``, ``cluster``, ``family``, ``container_name``,
    ``repository_uri``, ``image_tag``, ``container_port``, ``cpu``, ``memory``,
    ``desired_count``, ``subnet_ids``, ``security_group_ids``, ``target_group_arn``,
    ``assign_public_ip``, ``tags``.

    An update without container changes keeps the service's current task
    definition, so images deployed by the pipeline are not reverted.
    """

    kind = ResourceKind.SERVICE

    def __init__(self, ecs_client: Any = None):
        self.ecs_client = ecs_client or get_ecs_client()

    def _find_existing_service(self, cluster: str, service_name: str,
                               statuses: Tuple[str, ...] = ('ACTIVE',)) -> Optional[Dict[str, Any]]:
        response = self.ecs_client.describe_services(cluster=cluster, services=[service_name])
        for service in response.get('services', []):
            if service.get('status') in statuses:
                return service
        return None

    @staticmethod
    def _to_record(service: Dict[str, Any]) -> ProviderRecord:
        return ProviderRecord(
            remote_id=service['serviceArn'],
            attributes={
                'service_name': service['serviceName'],
                'service_arn': service['serviceArn'],
                'task_definition_arn': service['taskDefinition'],
            },
            ready=service.get('status', 'ACTIVE') == 'ACTIVE',
        )

    @staticmethod
    def _network_configuration(spec: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'awsvpcConfiguration': {
                'subnets': list(spec['subnet_ids']),
                'securityGroups': list(spec.get('security_group_ids', [])),
                'assignPublicIp': 'ENABLED' if spec.get('assign_public_ip', True) else 'DISABLED',
            }
        }

    def _register(self, spec: Dict[str, Any]) -> str:
        task_definition = build_task_definition(spec)
        response = self.ecs_client.register_task_definition(**task_definition)
        task_def_arn = response['taskDefinition']['taskDefinitionArn']
        logger.info(f"Registered task definition: {task_def_arn}")
        return task_def_arn

    def find(self, resource: Resource) -> Optional[ProviderRecord]:
        """A DRAINING service still holds its cluster, so it is reported as present but not ready."""
        service = self._find_existing_service(resource.spec['cluster'], resource.spec['service_name'],
                                              statuses=('ACTIVE', 'DRAINING'))
        return self._to_record(service) if service else None

    def create(self, resource: Resource) -> ProviderRecord:
        spec = dict(resource.spec)
        task_def_arn = self._register(spec)
        kwargs = {
            'cluster': spec['cluster'],
            'serviceName': spec['service_name'],
            'taskDefinition': task_def_arn,
            'desiredCount': int(spec.get('desired_count', 1)),
            'launchType': 'FARGATE',
            'networkConfiguration': self._network_configuration(spec),
            'tags': tags_lower(resource),
        }
        if spec.get('target_group_arn'):
            kwargs['loadBalancers'] = [{
                'targetGroupArn': spec['target_group_arn'],
                'containerName': spec['container_name'],
                'containerPort': int(spec.get('container_port', 80)),
            }]
        response = self.ecs_client.create_service(**kwargs)
        logger.info(f"Created ECS service: {spec['service_name']}")
        return self._to_record(response['service'])

    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        if changed(resource, previous, 'service_name', 'cluster', 'target_group_arn'):
            raise Conflict("service name, cluster and target group cannot change in place",
                           resource_id=resource.id)
        spec = dict(resource.spec)
        service = self._find_existing_service(spec['cluster'], spec['service_name'])
        if service is None:
            return self.create(resource)

        kwargs = {
            'cluster': spec['cluster'],
            'service': spec['service_name'],
            'desiredCount': int(spec.get('desired_count', 1)),
            'networkConfiguration': self._network_configuration(spec),
        }
        if changed(resource, previous, *CONTAINER_KEYS):
            kwargs['taskDefinition'] = self._register(spec)
        response = self.ecs_client.update_service(**kwargs)
        self.ecs_client.tag_resource(resourceArn=service['serviceArn'], tags=tags_lower(resource))
        logger.info(f"Updated ECS service: {spec['service_name']}")
        return self._to_record(response['service'])

    def delete(self, resource: Resource) -> None:
        spec = resource.spec
        service = self._find_existing_service(spec['cluster'], spec['service_name'])
        if service is None:
            return
        # Scale to zero first so tasks drain before the service goes away
        self.ecs_client.update_service(cluster=spec['cluster'], service=spec['service_name'], desiredCount=0)
        self.ecs_client.delete_service(cluster=spec['cluster'], service=spec['service_name'], force=True)
        logger.info(f"Deleted ECS service: {spec['service_name']}")


@dataclass(frozen=True)
class ServiceHealth:
    """Point-in-time view of a service's deployments and running tasks."""
    task_definition_arn: str
    desired_count: int
    running_count: int
    deployment_count: int
    task_definition_arns: Tuple[str, ...] = ()

    def converged_on(self, task_definition_arn: str) -> bool:
        """True when every running task uses ``task_definition_arn``."""
        return (
            self.task_definition_arn == task_definition_arn
            and self.deployment_count == 1
            and self.running_count >= self.desired_count
            and all(arn == task_definition_arn for arn in self.task_definition_arns)
        )


class EcsServiceClient:
    """Image rollouts on an existing ECS service."""

    def __init__(self, ecs_client: Any = None):
        self.ecs_client = ecs_client or get_ecs_client()

    def _describe_service(self, cluster: str, service: str) -> Dict[str, Any]:
        response = self.ecs_client.describe_services(cluster=cluster, services=[service])
        services = [s for s in response.get('services', []) if s.get('status') == 'ACTIVE']
        if not services:
            raise NotFound(f"service {service} not found in cluster {cluster}")
        return services[0]

    def update_image(self, cluster: str, service: str, container_name: str, image_uri: str) -> str:
        """Register a task definition revision running ``image_uri`` and roll the service to it."""
        current = self._describe_service(cluster, service)
        described = self.ecs_client.describe_task_definition(
            taskDefinition=current['taskDefinition']
        )['taskDefinition']

        task_definition = {k: described[k] for k in REGISTERABLE_FIELDS if described.get(k)}
        containers: List[Dict[str, Any]] = []
        found = False
        for container in described['containerDefinitions']:
            container = dict(container)
            if container['name'] == container_name:
                container['image'] = image_uri
                found = True
            containers.append(container)
        if not found:
            raise NotFound(f"container {container_name} not in task definition {current['taskDefinition']}")
        task_definition['containerDefinitions'] = containers

        response = self.ecs_client.register_task_definition(**task_definition)
        task_def_arn = response['taskDefinition']['taskDefinitionArn']
        logger.info(f"Registered task definition {task_def_arn} with image {image_uri}")

        self.ecs_client.update_service(cluster=cluster, service=service, taskDefinition=task_def_arn)
        logger.info(f"Service {service} rolling to {task_def_arn}")
        return task_def_arn

    def describe_health(self, cluster: str, service: str) -> ServiceHealth:
        current = self._describe_service(cluster, service)
        task_arns = self.ecs_client.list_tasks(
            cluster=cluster, serviceName=service, desiredStatus='RUNNING'
        ).get('taskArns', [])
        task_definitions: Tuple[str, ...] = ()
        if task_arns:
            tasks = self.ecs_client.describe_tasks(cluster=cluster, tasks=task_arns)['tasks']
            task_definitions = tuple(t['taskDefinitionArn'] for t in tasks)
        return ServiceHealth(
            task_definition_arn=current['taskDefinition'],
            desired_count=current.get('desiredCount', 0),
            running_count=current.get('runningCount', 0),
            deployment_count=len(current.get('deployments', [])) or 1,
            task_definition_arns=task_definitions,
        )
