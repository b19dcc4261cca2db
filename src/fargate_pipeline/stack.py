"""
Declaration of the deployed stack.

One network, an image registry, a Fargate cluster behind an internet-facing
load balancer, an optional DNS alias and the pipeline artifact bucket. Outputs
flow between resources through ``Ref`` values, which also define the
dependency edges.
"""
import logging

from fargate_pipeline.graph import ResourceGraph
from fargate_pipeline.resources import Ref, Resource, ResourceId, ResourceKind
from fargate_pipeline.settings import Settings

logger = logging.getLogger(__name__)

NETWORK = ResourceId(ResourceKind.NETWORK, "main")
REGISTRY = ResourceId(ResourceKind.REGISTRY, "backend")
CLUSTER = ResourceId(ResourceKind.CLUSTER, "main")
LOAD_BALANCER = ResourceId(ResourceKind.LOAD_BALANCER, "public")
LISTENER = ResourceId(ResourceKind.LISTENER, "http")
SERVICE = ResourceId(ResourceKind.SERVICE, "backend")
DNS_RECORD = ResourceId(ResourceKind.DNS_RECORD, "app")
PIPELINE = ResourceId(ResourceKind.PIPELINE, "delivery")


def build_stack(settings: Settings) -> ResourceGraph:
    """Declare every resource of the environment described by ``settings``."""
    prefix = settings.resource_prefix
    tags = {"owner": settings.owner, "app": settings.app_name, "environment": settings.environment}
    graph = ResourceGraph()

    graph.add_resource(Resource.declare(ResourceKind.NETWORK, NETWORK.name, {
        "name": prefix,
        "cidr": settings.vpc_cidr,
        "availability_zones": settings.availability_zones,
        "ingress_ports": sorted({80, settings.container_port}),
        "tags": tags,
    }))

    graph.add_resource(Resource.declare(ResourceKind.REGISTRY, REGISTRY.name, {
        "repository_name": settings.ecr_repo_name,
        "image_tag_mutability": "MUTABLE",
        "scan_on_push": False,
        "tags": tags,
    }))

    graph.add_resource(Resource.declare(ResourceKind.CLUSTER, CLUSTER.name, {
        "cluster_name": settings.cluster_name,
        "container_insights": False,
        "tags": tags,
    }, depends_on=[NETWORK]))

    graph.add_resource(Resource.declare(ResourceKind.LOAD_BALANCER, LOAD_BALANCER.name, {
        "name": f"{prefix}-alb",
        "scheme": "internet-facing",
        "subnet_ids": Ref(NETWORK, "subnet_ids"),
        "security_group_ids": [Ref(NETWORK, "security_group_id")],
        "tags": tags,
    }))

    graph.add_resource(Resource.declare(ResourceKind.LISTENER, LISTENER.name, {
        "load_balancer_arn": Ref(LOAD_BALANCER, "load_balancer_arn"),
        "vpc_id": Ref(NETWORK, "vpc_id"),
        "target_group_name": f"{prefix}-tg",
        "port": 80,
        "target_port": settings.container_port,
        "health_check_path": settings.health_check_path,
        "tags": tags,
    }))

    service_spec = {
        "service_name": settings.service_name,
        "cluster": Ref(CLUSTER, "cluster_name"),
        "family": f"{prefix}-task",
        "container_name": settings.container_name,
        "repository_uri": Ref(REGISTRY, "repository_uri"),
        "image_tag": "latest",
        "container_port": settings.container_port,
        "cpu": settings.container_cpu,
        "memory": settings.container_memory,
        "desired_count": settings.desired_count,
        "subnet_ids": Ref(NETWORK, "subnet_ids"),
        "security_group_ids": [Ref(NETWORK, "security_group_id")],
        "target_group_arn": Ref(LISTENER, "target_group_arn"),
        "assign_public_ip": True,
        "tags": tags,
    }
    if settings.task_execution_role_arn:
        service_spec["execution_role_arn"] = settings.task_execution_role_arn
    graph.add_resource(Resource.declare(ResourceKind.SERVICE, SERVICE.name, service_spec))

    if settings.hosted_zone_id and settings.domain_name:
        graph.add_resource(Resource.declare(ResourceKind.DNS_RECORD, DNS_RECORD.name, {
            "hosted_zone_id": settings.hosted_zone_id,
            "record_name": settings.domain_name,
            "alias_dns_name": Ref(LOAD_BALANCER, "dns_name"),
            "alias_hosted_zone_id": Ref(LOAD_BALANCER, "canonical_hosted_zone_id"),
        }))
    else:
        logger.info("No hosted zone configured, skipping DNS record")

    # The pipeline pushes to the registry and deploys to the service
    graph.add_resource(Resource.declare(ResourceKind.PIPELINE, PIPELINE.name, {
        "bucket_name": settings.artifact_bucket_name,
        "region": settings.aws_region,
        "tags": tags,
    }, depends_on=[REGISTRY, SERVICE]))

    return graph
