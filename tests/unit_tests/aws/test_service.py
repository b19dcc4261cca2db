import pytest

from fargate_pipeline.aws.network import NetworkHandler
from fargate_pipeline.aws.provider import AwsProvider
from fargate_pipeline.aws.service import (
    EcsServiceClient,
    ServiceHandler,
    ServiceHealth,
    build_task_definition,
)
from fargate_pipeline.exceptions import Conflict, NotFound
from fargate_pipeline.resources import Resource, ResourceKind
from tests.consts import TEST_CLUSTER, TEST_CONTAINER, TEST_SERVICE

REPOSITORY_URI = "123456789012.dkr.ecr.us-east-1.amazonaws.com/backend"
# For tests that never reach ECS
OFFLINE_NETWORK = {"subnet_ids": ["subnet-1", "subnet-2"], "security_group_id": "sg-1"}


def service(network=OFFLINE_NETWORK, **overrides):
    spec = {
        "service_name": TEST_SERVICE,
        "cluster": TEST_CLUSTER,
        "family": "test-backend",
        "container_name": TEST_CONTAINER,
        "repository_uri": REPOSITORY_URI,
        "image_tag": "latest",
        "container_port": 8080,
        "cpu": 256,
        "memory": 512,
        "desired_count": 1,
        "subnet_ids": network["subnet_ids"],
        "security_group_ids": [network["security_group_id"]],
        "tags": {"owner": "tests"},
    }
    spec.update(overrides)
    return Resource.declare(ResourceKind.SERVICE, "backend", spec)


@pytest.fixture
def network(ec2_client):
    resource = Resource.declare(ResourceKind.NETWORK, "main", {
        "name": "test", "cidr": "10.0.0.0/16", "availability_zones": 2, "ingress_ports": [8080],
    })
    return NetworkHandler(ec2_client).create(resource).attributes


@pytest.fixture
def cluster(ecs_client):
    ecs_client.create_cluster(clusterName=TEST_CLUSTER)
    return TEST_CLUSTER


def current_task_definition(ecs_client):
    return ecs_client.describe_services(cluster=TEST_CLUSTER, services=[TEST_SERVICE])["services"][0]["taskDefinition"]


def test_build_task_definition():
    task_definition = build_task_definition(dict(service(execution_role_arn="arn:role").spec))

    container = task_definition["containerDefinitions"][0]
    assert container["image"] == f"{REPOSITORY_URI}:latest"
    assert container["portMappings"] == [{"containerPort": 8080, "protocol": "tcp"}]
    assert task_definition["networkMode"] == "awsvpc"
    assert task_definition["requiresCompatibilities"] == ["FARGATE"]
    assert task_definition["cpu"] == "256"
    assert task_definition["executionRoleArn"] == "arn:role"


def test_provider_create_is_idempotent(ecs_client, network, cluster):
    provider = AwsProvider([ServiceHandler(ecs_client)])

    first = provider.create(service(network))
    second = provider.create(service(network))

    assert first.remote_id == second.remote_id
    assert first.attributes["service_name"] == TEST_SERVICE
    assert len(ecs_client.list_services(cluster=TEST_CLUSTER)["serviceArns"]) == 1


def test_scaling_keeps_deployed_task_definition(ecs_client, network, cluster):
    handler = ServiceHandler(ecs_client)
    created = handler.create(service(network))

    updated = handler.update(service(network, desired_count=3), service(network))

    assert updated.attributes["task_definition_arn"] == created.attributes["task_definition_arn"]
    described = ecs_client.describe_services(cluster=TEST_CLUSTER, services=[TEST_SERVICE])["services"][0]
    assert described["desiredCount"] == 3


def test_container_change_registers_new_revision(ecs_client, network, cluster):
    handler = ServiceHandler(ecs_client)
    created = handler.create(service(network))

    handler.update(service(network, memory=1024), service(network))

    assert current_task_definition(ecs_client) != created.attributes["task_definition_arn"]


def test_moving_service_to_another_cluster_is_a_conflict(ecs_client, cluster):
    with pytest.raises(Conflict):
        ServiceHandler(ecs_client).update(service(cluster="other"), service())


def test_delete_service(ecs_client, network, cluster):
    handler = ServiceHandler(ecs_client)
    handler.create(service(network))

    handler.delete(service(network))

    assert handler.find(service(network)) is None
    with pytest.raises(NotFound):
        AwsProvider([handler]).read(service(network))


class FakeEcs:
    """Minimal ECS client for image rollouts."""

    def __init__(self, containers, tasks=(), status="ACTIVE"):
        self.containers = containers
        self.tasks = list(tasks)
        self.status = status
        self.registered = []
        self.updates = []

    def describe_services(self, cluster, services):
        return {"services": [{
            "serviceName": services[0],
            "serviceArn": f"arn:service/{services[0]}",
            "status": self.status,
            "taskDefinition": "arn:task-definition/backend:1",
            "desiredCount": 2,
            "runningCount": 2,
            "deployments": [{"status": "PRIMARY"}],
        }]}

    def describe_task_definition(self, taskDefinition):
        return {"taskDefinition": {
            "taskDefinitionArn": taskDefinition,
            "family": "backend",
            "revision": 1,
            "status": "ACTIVE",
            "networkMode": "awsvpc",
            "requiresCompatibilities": ["FARGATE"],
            "cpu": "256",
            "memory": "512",
            "volumes": [],
            "containerDefinitions": self.containers,
        }}

    def register_task_definition(self, **kwargs):
        self.registered.append(kwargs)
        return {"taskDefinition": {"taskDefinitionArn": f"arn:task-definition/backend:{len(self.registered) + 1}"}}

    def update_service(self, **kwargs):
        self.updates.append(kwargs)

    def list_tasks(self, **kwargs):
        return {"taskArns": [f"arn:task/{i}" for i, _ in enumerate(self.tasks)]}

    def describe_tasks(self, cluster, tasks):
        return {"tasks": [{"taskDefinitionArn": arn} for arn in self.tasks]}


def test_update_image_registers_revision_and_rolls_service():
    ecs = FakeEcs([{"name": TEST_CONTAINER, "image": "old:1"}, {"name": "sidecar", "image": "proxy:1"}])

    arn = EcsServiceClient(ecs).update_image(TEST_CLUSTER, TEST_SERVICE, TEST_CONTAINER, "new:2")

    assert arn == "arn:task-definition/backend:2"
    registered = ecs.registered[0]
    assert [c["image"] for c in registered["containerDefinitions"]] == ["new:2", "proxy:1"]
    assert "revision" not in registered
    assert "taskDefinitionArn" not in registered
    assert "volumes" not in registered
    assert ecs.updates == [{"cluster": TEST_CLUSTER, "service": TEST_SERVICE, "taskDefinition": arn}]


def test_update_image_for_unknown_container():
    ecs = FakeEcs([{"name": "sidecar", "image": "proxy:1"}])

    with pytest.raises(NotFound):
        EcsServiceClient(ecs).update_image(TEST_CLUSTER, TEST_SERVICE, TEST_CONTAINER, "new:2")

    assert ecs.registered == []


def test_describe_health_reports_running_task_definitions():
    ecs = FakeEcs([], tasks=["arn:task-definition/backend:1", "arn:task-definition/backend:1"])

    health = EcsServiceClient(ecs).describe_health(TEST_CLUSTER, TEST_SERVICE)

    assert health == ServiceHealth("arn:task-definition/backend:1", 2, 2, 1,
                                   ("arn:task-definition/backend:1", "arn:task-definition/backend:1"))
    assert health.converged_on("arn:task-definition/backend:1")
    assert not health.converged_on("arn:task-definition/backend:2")


def test_draining_service_is_present_but_not_ready():
    ecs = FakeEcs([], status="DRAINING")
    handler = ServiceHandler(ecs)

    record = handler.find(service())
    handler.delete(service())

    assert record.remote_id == f"arn:service/{TEST_SERVICE}"
    assert not record.ready
    assert ecs.updates == []
