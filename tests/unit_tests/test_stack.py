from fargate_pipeline.resources import Ref, ResourceKind
from fargate_pipeline.settings import Settings
from fargate_pipeline.stack import CLUSTER, LISTENER, NETWORK, PIPELINE, REGISTRY, SERVICE, build_stack


def test_stack_resources_in_dependency_order():
    graph = build_stack(Settings(app_name="Exanubes Demo", owner="platform"))

    assert [str(r.id) for r in graph.topological_order()] == [
        "network/main",
        "registry/backend",
        "cluster/main",
        "load_balancer/public",
        "listener/http",
        "service/backend",
        "pipeline/delivery",
    ]


def test_every_resource_carries_owner_tag():
    graph = build_stack(Settings(owner="platform"))

    for resource in graph:
        if resource.kind != ResourceKind.DNS_RECORD:
            assert resource.spec["tags"]["owner"] == "platform"


def test_service_is_wired_through_refs():
    graph = build_stack(Settings(app_name="Exanubes Demo", container_port=8080))
    service = graph.get(SERVICE)

    assert service.spec["service_name"] == "exanubes-demo-service"
    assert service.spec["cluster"] == Ref(CLUSTER, "cluster_name")
    assert service.spec["repository_uri"] == Ref(REGISTRY, "repository_uri")
    assert service.spec["target_group_arn"] == Ref(LISTENER, "target_group_arn")
    assert set(graph.dependencies_of(SERVICE)) == {CLUSTER, REGISTRY, NETWORK, LISTENER}
    assert graph.get(NETWORK).spec["ingress_ports"] == [80, 8080]


def test_pipeline_depends_on_registry_and_service():
    graph = build_stack(Settings())

    assert set(graph.dependencies_of(PIPELINE)) == {REGISTRY, SERVICE}
    assert graph.get(PIPELINE).spec["bucket_name"] == "exanubes-pipeline-artifacts"


def test_dns_record_only_with_hosted_zone():
    without_zone = build_stack(Settings(domain_name="app.example.com"))
    with_zone = build_stack(Settings(domain_name="app.example.com", hosted_zone_id="Z123"))

    assert "dns_record/app" not in without_zone
    record = with_zone.get("dns_record/app")
    assert record.spec["record_name"] == "app.example.com"
    assert record.spec["alias_dns_name"].resource_id == with_zone.get("load_balancer/public").id
