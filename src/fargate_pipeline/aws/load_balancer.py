"""Application load balancer and HTTP listener handlers."""
import logging
from typing import Any, Optional

from botocore.exceptions import ClientError

from fargate_pipeline.aws.base import ResourceHandler, changed, error_code, tags_upper
from fargate_pipeline.aws.clients import get_elbv2_client
from fargate_pipeline.exceptions import Conflict
from fargate_pipeline.provider import ProviderRecord
from fargate_pipeline.resources import Resource, ResourceKind

logger = logging.getLogger(__name__)


class LoadBalancerHandler(ResourceHandler):
    """Internet-facing ALB.

    Spec keys: ``name``, ``subnet_ids``, ``security_group_ids``, ``scheme``, ``tags``.
    """

    kind = ResourceKind.LOAD_BALANCER

    def __init__(self, elbv2_client: Any = None):
        self.elbv2_client = elbv2_client or get_elbv2_client()

    @staticmethod
    def _to_record(lb: dict) -> ProviderRecord:
        return ProviderRecord(
            remote_id=lb['LoadBalancerArn'],
            attributes={
                'load_balancer_arn': lb['LoadBalancerArn'],
                'dns_name': lb['DNSName'],
                'canonical_hosted_zone_id': lb['CanonicalHostedZoneId'],
            },
            ready=lb.get('State', {}).get('Code', 'active') == 'active',
        )

    def find(self, resource: Resource) -> Optional[ProviderRecord]:
        try:
            response = self.elbv2_client.describe_load_balancers(Names=[resource.spec['name']])
        except ClientError as e:
            if error_code(e) == 'LoadBalancerNotFound':
                return None
            raise
        if not response['LoadBalancers']:
            return None
        return self._to_record(response['LoadBalancers'][0])

    def create(self, resource: Resource) -> ProviderRecord:
        spec = resource.spec
        response = self.elbv2_client.create_load_balancer(
            Name=spec['name'],
            Subnets=list(spec['subnet_ids']),
            SecurityGroups=list(spec.get('security_group_ids', [])),
            Scheme=spec.get('scheme', 'internet-facing'),
            Type='application',
            IpAddressType='ipv4',
            Tags=tags_upper(resource),
        )
        lb = response['LoadBalancers'][0]
        logger.info(f"Created load balancer: {spec['name']} ({lb['DNSName']})")
        return self._to_record(lb)

    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        if changed(resource, previous, 'name', 'scheme'):
            raise Conflict("name and scheme cannot change in place", resource_id=resource.id)
        record = self.find(resource)
        if record is None:
            return self.create(resource)
        if changed(resource, previous, 'subnet_ids'):
            self.elbv2_client.set_subnets(
                LoadBalancerArn=record.remote_id, Subnets=list(resource.spec['subnet_ids'])
            )
        if changed(resource, previous, 'security_group_ids'):
            self.elbv2_client.set_security_groups(
                LoadBalancerArn=record.remote_id,
                SecurityGroups=list(resource.spec.get('security_group_ids', [])),
            )
        self.elbv2_client.add_tags(ResourceArns=[record.remote_id], Tags=tags_upper(resource))
        return self.find(resource)

    def delete(self, resource: Resource) -> None:
        record = self.find(resource)
        if record is None:
            return
        self.elbv2_client.delete_load_balancer(LoadBalancerArn=record.remote_id)
        logger.info(f"Deleted load balancer: {resource.spec['name']}")


class ListenerHandler(ResourceHandler):
    """IP target group plus a listener forwarding to it.

    Spec keys: ``load_balancer_arn``, ``vpc_id``, ``target_group_name``, ``port``,
    ``target_port``, ``health_check_path``, ``tags``.
    """

    kind = ResourceKind.LISTENER

    def __init__(self, elbv2_client: Any = None):
        self.elbv2_client = elbv2_client or get_elbv2_client()

    def _find_target_group(self, resource: Resource) -> Optional[dict]:
        try:
            response = self.elbv2_client.describe_target_groups(
                Names=[resource.spec['target_group_name']]
            )
        except ClientError as e:
            if error_code(e) == 'TargetGroupNotFound':
                return None
            raise
        groups = response.get('TargetGroups', [])
        return groups[0] if groups else None

    def _find_listener(self, resource: Resource) -> Optional[dict]:
        try:
            response = self.elbv2_client.describe_listeners(
                LoadBalancerArn=resource.spec['load_balancer_arn']
            )
        except ClientError as e:
            if error_code(e) in ('LoadBalancerNotFound', 'ListenerNotFound'):
                return None
            raise
        port = int(resource.spec.get('port', 80))
        for listener in response.get('Listeners', []):
            if listener['Port'] == port:
                return listener
        return None

    def find(self, resource: Resource) -> Optional[ProviderRecord]:
        listener = self._find_listener(resource)
        group = self._find_target_group(resource)
        if listener is None or group is None:
            return None
        return ProviderRecord(
            remote_id=listener['ListenerArn'],
            attributes={
                'listener_arn': listener['ListenerArn'],
                'target_group_arn': group['TargetGroupArn'],
            },
        )

    def _ensure_target_group(self, resource: Resource) -> str:
        group = self._find_target_group(resource)
        if group is not None:
            logger.info(f"Using existing target group: {group['TargetGroupArn']}")
            return group['TargetGroupArn']
        spec = resource.spec
        response = self.elbv2_client.create_target_group(
            Name=spec['target_group_name'],
            Protocol='HTTP',
            Port=int(spec.get('target_port', 80)),
            VpcId=spec['vpc_id'],
            TargetType='ip',
            HealthCheckPath=spec.get('health_check_path', '/'),
            Tags=tags_upper(resource),
        )
        arn = response['TargetGroups'][0]['TargetGroupArn']
        logger.info(f"Created target group: {spec['target_group_name']}")
        return arn

    def create(self, resource: Resource) -> ProviderRecord:
        target_group_arn = self._ensure_target_group(resource)
        response = self.elbv2_client.create_listener(
            LoadBalancerArn=resource.spec['load_balancer_arn'],
            Protocol='HTTP',
            Port=int(resource.spec.get('port', 80)),
            DefaultActions=[{'Type': 'forward', 'TargetGroupArn': target_group_arn}],
        )
        listener_arn = response['Listeners'][0]['ListenerArn']
        logger.info(f"Created listener on port {resource.spec.get('port', 80)}")
        return ProviderRecord(
            remote_id=listener_arn,
            attributes={'listener_arn': listener_arn, 'target_group_arn': target_group_arn},
        )

    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        if changed(resource, previous, 'target_group_name', 'target_port', 'vpc_id', 'load_balancer_arn'):
            raise Conflict("target group and load balancer cannot change in place",
                           resource_id=resource.id)
        # A port change is found under the previous port
        listener = self._find_listener(previous) or self._find_listener(resource)
        group = self._find_target_group(resource)
        if listener is None or group is None:
            return self.create(resource)
        target_group_arn = group['TargetGroupArn']
        if changed(resource, previous, 'health_check_path'):
            self.elbv2_client.modify_target_group(
                TargetGroupArn=target_group_arn,
                HealthCheckPath=resource.spec.get('health_check_path', '/'),
            )
        self.elbv2_client.modify_listener(
            ListenerArn=listener['ListenerArn'],
            Port=int(resource.spec.get('port', 80)),
            DefaultActions=[{'Type': 'forward', 'TargetGroupArn': target_group_arn}],
        )
        return ProviderRecord(
            remote_id=listener['ListenerArn'],
            attributes={'listener_arn': listener['ListenerArn'], 'target_group_arn': target_group_arn},
        )

    def delete(self, resource: Resource) -> None:
        listener = self._find_listener(resource)
        if listener is not None:
            self.elbv2_client.delete_listener(ListenerArn=listener['ListenerArn'])
            logger.info(f"Deleted listener: {listener['ListenerArn']}")
        group = self._find_target_group(resource)
        if group is not None:
            self.elbv2_client.delete_target_group(TargetGroupArn=group['TargetGroupArn'])
            logger.info(f"Deleted target group: {resource.spec['target_group_name']}")
