"""VPC network: public subnets across availability zones behind an internet gateway."""
import ipaddress
import logging
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from fargate_pipeline.aws.base import RESOURCE_TAG, ResourceHandler, changed, tags_upper
from fargate_pipeline.aws.clients import get_ec2_client
from fargate_pipeline.exceptions import Conflict
from fargate_pipeline.provider import ProviderRecord
from fargate_pipeline.resources import Resource, ResourceKind

logger = logging.getLogger(__name__)


class NetworkHandler(ResourceHandler):
    """Builds the VPC, internet gateway, public route table, subnets and security group.

    Spec keys: ``name``, ``cidr``, ``availability_zones``, ``ingress_ports``, ``tags``.
    """

    kind = ResourceKind.NETWORK

    def __init__(self, ec2_client: Any = None):
        self.ec2_client = ec2_client or get_ec2_client()

    def _tag_specs(self, resource: Resource, resource_type: str, suffix: str) -> List[Dict[str, Any]]:
        tags = tags_upper(resource) + [{'Key': 'Name', 'Value': f"{resource.spec['name']}-{suffix}"}]
        return [{'ResourceType': resource_type, 'Tags': tags}]

    def find(self, resource: Resource) -> Optional[ProviderRecord]:
        """Find existing VPC by resource tag."""
        response = self.ec2_client.describe_vpcs(
            Filters=[{'Name': f'tag:{RESOURCE_TAG}', 'Values': [str(resource.id)]}]
        )
        if not response['Vpcs']:
            return None
        vpc = response['Vpcs'][0]
        vpc_id = vpc['VpcId']

        subnets = self.ec2_client.describe_subnets(
            Filters=[{'Name': 'vpc-id', 'Values': [vpc_id]}]
        )['Subnets']
        subnet_ids = [s['SubnetId'] for s in sorted(subnets, key=lambda s: s['CidrBlock'])]

        igws = self.ec2_client.describe_internet_gateways(
            Filters=[{'Name': 'attachment.vpc-id', 'Values': [vpc_id]}]
        )['InternetGateways']
        route_tables = self.ec2_client.describe_route_tables(
            Filters=[
                {'Name': 'vpc-id', 'Values': [vpc_id]},
                {'Name': f'tag:{RESOURCE_TAG}', 'Values': [str(resource.id)]},
            ]
        )['RouteTables']
        groups = self.ec2_client.describe_security_groups(
            Filters=[
                {'Name': 'vpc-id', 'Values': [vpc_id]},
                {'Name': 'group-name', 'Values': [self._group_name(resource)]},
            ]
        )['SecurityGroups']

        return ProviderRecord(
            remote_id=vpc_id,
            attributes={
                'vpc_id': vpc_id,
                'cidr': vpc['CidrBlock'],
                'subnet_ids': subnet_ids,
                'internet_gateway_id': igws[0]['InternetGatewayId'] if igws else None,
                'route_table_id': route_tables[0]['RouteTableId'] if route_tables else None,
                'security_group_id': groups[0]['GroupId'] if groups else None,
            },
            ready=vpc.get('State') == 'available',
        )

    def create(self, resource: Resource) -> ProviderRecord:
        spec = resource.spec
        response = self.ec2_client.create_vpc(
            CidrBlock=spec.get('cidr', '10.0.0.0/16'),
            TagSpecifications=self._tag_specs(resource, 'vpc', 'vpc'),
        )
        vpc_id = response['Vpc']['VpcId']

        # Enable DNS hostnames and resolution
        self.ec2_client.modify_vpc_attribute(VpcId=vpc_id, EnableDnsHostnames={'Value': True})
        self.ec2_client.modify_vpc_attribute(VpcId=vpc_id, EnableDnsSupport={'Value': True})
        logger.info(f"Created VPC: {vpc_id}")

        igw_id = self.ec2_client.create_internet_gateway(
            TagSpecifications=self._tag_specs(resource, 'internet-gateway', 'igw')
        )['InternetGateway']['InternetGatewayId']
        self.ec2_client.attach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc_id)

        route_table_id = self.ec2_client.create_route_table(
            VpcId=vpc_id,
            TagSpecifications=self._tag_specs(resource, 'route-table', 'public-rt'),
        )['RouteTable']['RouteTableId']
        self.ec2_client.create_route(
            RouteTableId=route_table_id,
            DestinationCidrBlock='0.0.0.0/0',
            GatewayId=igw_id,
        )

        self._create_subnets(resource, vpc_id, route_table_id)
        self._create_security_group(resource, vpc_id)
        return self.find(resource)

    def _create_subnets(self, resource: Resource, vpc_id: str, route_table_id: str) -> None:
        """One public /24 subnet per availability zone."""
        zone_count = int(resource.spec.get('availability_zones', 2))
        zones = self.ec2_client.describe_availability_zones(
            Filters=[{'Name': 'state', 'Values': ['available']}]
        )['AvailabilityZones'][:zone_count]
        blocks = ipaddress.ip_network(resource.spec.get('cidr', '10.0.0.0/16')).subnets(new_prefix=24)

        for index, (zone, block) in enumerate(zip(zones, blocks)):
            subnet_id = self.ec2_client.create_subnet(
                VpcId=vpc_id,
                CidrBlock=str(block),
                AvailabilityZone=zone['ZoneName'],
                TagSpecifications=self._tag_specs(resource, 'subnet', f"public-{index + 1}"),
            )['Subnet']['SubnetId']
            self.ec2_client.modify_subnet_attribute(
                SubnetId=subnet_id, MapPublicIpOnLaunch={'Value': True}
            )
            self.ec2_client.associate_route_table(SubnetId=subnet_id, RouteTableId=route_table_id)
            logger.info(f"Created subnet {subnet_id} ({block}) in {zone['ZoneName']}")

    @staticmethod
    def _group_name(resource: Resource) -> str:
        return f"{resource.spec['name']}-sg"

    def _create_security_group(self, resource: Resource, vpc_id: str) -> str:
        group_id = self.ec2_client.create_security_group(
            GroupName=self._group_name(resource),
            Description=f"Ingress for {resource.spec['name']}",
            VpcId=vpc_id,
            TagSpecifications=self._tag_specs(resource, 'security-group', 'sg'),
        )['GroupId']
        self._authorize(group_id, resource.spec.get('ingress_ports', []))
        logger.info(f"Created security group: {group_id}")
        return group_id

    def _authorize(self, group_id: str, ports: List[int]) -> None:
        if not ports:
            return
        self.ec2_client.authorize_security_group_ingress(
            GroupId=group_id,
            IpPermissions=[
                {'IpProtocol': 'tcp', 'FromPort': int(p), 'ToPort': int(p),
                 'IpRanges': [{'CidrIp': '0.0.0.0/0'}]}
                for p in ports
            ],
        )

    def _revoke(self, group_id: str, ports: List[int]) -> None:
        if not ports:
            return
        self.ec2_client.revoke_security_group_ingress(
            GroupId=group_id,
            IpPermissions=[
                {'IpProtocol': 'tcp', 'FromPort': int(p), 'ToPort': int(p),
                 'IpRanges': [{'CidrIp': '0.0.0.0/0'}]}
                for p in ports
            ],
        )

    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        if changed(resource, previous, 'cidr', 'availability_zones', 'name'):
            raise Conflict("cidr, availability_zones and name cannot change in place",
                           resource_id=resource.id)
        record = self.find(resource)
        if record is None:
            return self.create(resource)

        new_ports = set(resource.spec.get('ingress_ports', []))
        old_ports = set(previous.spec.get('ingress_ports', []))
        group_id = record.attributes['security_group_id']
        self._authorize(group_id, sorted(new_ports - old_ports))
        self._revoke(group_id, sorted(old_ports - new_ports))
        self.ec2_client.create_tags(Resources=[record.remote_id], Tags=tags_upper(resource))
        return self.find(resource)

    def delete(self, resource: Resource) -> None:
        """Tear down in reverse build order."""
        record = self.find(resource)
        if record is None:
            return
        attrs = record.attributes
        vpc_id = record.remote_id

        if attrs.get('security_group_id'):
            self.ec2_client.delete_security_group(GroupId=attrs['security_group_id'])

        if attrs.get('route_table_id'):
            table = self.ec2_client.describe_route_tables(
                RouteTableIds=[attrs['route_table_id']]
            )['RouteTables'][0]
            for association in table.get('Associations', []):
                if not association.get('Main'):
                    self.ec2_client.disassociate_route_table(
                        AssociationId=association['RouteTableAssociationId']
                    )
            self.ec2_client.delete_route_table(RouteTableId=attrs['route_table_id'])

        for subnet_id in attrs.get('subnet_ids', []):
            self.ec2_client.delete_subnet(SubnetId=subnet_id)

        if attrs.get('internet_gateway_id'):
            self.ec2_client.detach_internet_gateway(
                InternetGatewayId=attrs['internet_gateway_id'], VpcId=vpc_id
            )
            self.ec2_client.delete_internet_gateway(InternetGatewayId=attrs['internet_gateway_id'])

        try:
            self.ec2_client.delete_vpc(VpcId=vpc_id)
        except ClientError as e:
            logger.error(f"Failed to delete VPC {vpc_id}: {e}")
            raise
        logger.info(f"Deleted VPC: {vpc_id}")
