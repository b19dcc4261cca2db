from fargate_pipeline.aws.base import RESOURCE_TAG
from fargate_pipeline.aws.network import NetworkHandler
from fargate_pipeline.aws.provider import AwsProvider
from fargate_pipeline.resources import Resource, ResourceKind


def network(**overrides):
    spec = {
        "name": "test",
        "cidr": "10.0.0.0/16",
        "availability_zones": 2,
        "ingress_ports": [80],
        "tags": {"owner": "tests"},
    }
    spec.update(overrides)
    return Resource.declare(ResourceKind.NETWORK, "main", spec)


def ingress_ports(ec2_client, group_id):
    group = ec2_client.describe_security_groups(GroupIds=[group_id])["SecurityGroups"][0]
    return sorted(p["FromPort"] for p in group["IpPermissions"])


def test_create_builds_public_network(ec2_client):
    handler = NetworkHandler(ec2_client)

    record = handler.create(network())

    attrs = record.attributes
    assert attrs["vpc_id"] == record.remote_id
    assert len(attrs["subnet_ids"]) == 2
    subnets = ec2_client.describe_subnets(SubnetIds=attrs["subnet_ids"])["Subnets"]
    assert sorted(s["CidrBlock"] for s in subnets) == ["10.0.0.0/24", "10.0.1.0/24"]
    assert len({s["AvailabilityZone"] for s in subnets}) == 2
    assert all(s["MapPublicIpOnLaunch"] for s in subnets)

    routes = ec2_client.describe_route_tables(RouteTableIds=[attrs["route_table_id"]])["RouteTables"][0]["Routes"]
    assert any(r.get("GatewayId") == attrs["internet_gateway_id"] and r["DestinationCidrBlock"] == "0.0.0.0/0"
               for r in routes)
    assert ingress_ports(ec2_client, attrs["security_group_id"]) == [80]

    vpc = ec2_client.describe_vpcs(VpcIds=[record.remote_id])["Vpcs"][0]
    tags = {t["Key"]: t["Value"] for t in vpc["Tags"]}
    assert tags[RESOURCE_TAG] == "network/main"
    assert tags["owner"] == "tests"


def test_provider_create_reuses_existing_network(ec2_client):
    provider = AwsProvider([NetworkHandler(ec2_client)])

    first = provider.create(network())
    second = provider.create(network())

    assert first.remote_id == second.remote_id
    vpcs = ec2_client.describe_vpcs(Filters=[{"Name": f"tag:{RESOURCE_TAG}", "Values": ["network/main"]}])["Vpcs"]
    assert len(vpcs) == 1


def test_update_changes_ingress_ports(ec2_client):
    handler = NetworkHandler(ec2_client)
    previous = network()
    record = handler.create(previous)

    updated = handler.update(network(ingress_ports=[443, 8080]), previous)

    assert updated.remote_id == record.remote_id
    assert ingress_ports(ec2_client, updated.attributes["security_group_id"]) == [443, 8080]


def test_delete_tears_everything_down(ec2_client):
    handler = NetworkHandler(ec2_client)
    resource = network()
    record = handler.create(resource)

    handler.delete(resource)

    assert handler.find(resource) is None
    remaining = ec2_client.describe_subnets(
        Filters=[{"Name": "vpc-id", "Values": [record.remote_id]}]
    )["Subnets"]
    assert remaining == []


def test_delete_missing_network_is_a_no_op(ec2_client):
    NetworkHandler(ec2_client).delete(network())
