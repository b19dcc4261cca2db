"""Route53 alias record pointing a domain at the load balancer."""
import logging
from typing import Any, Dict, Optional

from fargate_pipeline.aws.base import ResourceHandler, changed
from fargate_pipeline.aws.clients import get_route53_client
from fargate_pipeline.exceptions import Conflict
from fargate_pipeline.provider import ProviderRecord
from fargate_pipeline.resources import Resource, ResourceKind

logger = logging.getLogger(__name__)


def _fqdn(name: str) -> str:
    return name if name.endswith('.') else f"{name}."


class DnsRecordHandler(ResourceHandler):
    """Spec keys: ``hosted_zone_id``, ``record_name``, ``alias_dns_name``, ``alias_hosted_zone_id``."""

    kind = ResourceKind.DNS_RECORD

    def __init__(self, route53_client: Any = None):
        self.route53_client = route53_client or get_route53_client()

    def _change(self, resource: Resource, action: str) -> Dict[str, Any]:
        spec = resource.spec
        return {
            'Action': action,
            'ResourceRecordSet': {
                'Name': _fqdn(spec['record_name']),
                'Type': 'A',
                'AliasTarget': {
                    'HostedZoneId': spec['alias_hosted_zone_id'],
                    'DNSName': spec['alias_dns_name'],
                    'EvaluateTargetHealth': False,
                },
            },
        }

    def find(self, resource: Resource) -> Optional[ProviderRecord]:
        spec = resource.spec
        name = _fqdn(spec['record_name'])
        response = self.route53_client.list_resource_record_sets(
            HostedZoneId=spec['hosted_zone_id'],
            StartRecordName=name,
            StartRecordType='A',
            MaxItems='1',
        )
        for record_set in response.get('ResourceRecordSets', []):
            if record_set['Name'] == name and record_set['Type'] == 'A':
                return ProviderRecord(remote_id=name, attributes={'fqdn': name})
        return None

    def _upsert(self, resource: Resource) -> ProviderRecord:
        name = _fqdn(resource.spec['record_name'])
        response = self.route53_client.change_resource_record_sets(
            HostedZoneId=resource.spec['hosted_zone_id'],
            ChangeBatch={
                'Comment': f"Managed by fargate-pipeline ({resource.id})",
                'Changes': [self._change(resource, 'UPSERT')],
            },
        )
        status = response['ChangeInfo']['Status']
        logger.info(f"Upserted alias record {name} ({status})")
        return ProviderRecord(remote_id=name, attributes={'fqdn': name}, ready=status == 'INSYNC')

    def create(self, resource: Resource) -> ProviderRecord:
        return self._upsert(resource)

    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        if changed(resource, previous, 'hosted_zone_id', 'record_name'):
            raise Conflict("hosted zone and record name cannot change in place", resource_id=resource.id)
        return self._upsert(resource)

    def delete(self, resource: Resource) -> None:
        if self.find(resource) is None:
            return
        self.route53_client.change_resource_record_sets(
            HostedZoneId=resource.spec['hosted_zone_id'],
            ChangeBatch={'Changes': [self._change(resource, 'DELETE')]},
        )
        logger.info(f"Deleted alias record {_fqdn(resource.spec['record_name'])}")
