import pytest

from fargate_pipeline.exceptions import CyclicDependency, DuplicateResource
from fargate_pipeline.graph import ResourceGraph
from fargate_pipeline.resources import Ref, Resource, ResourceId, ResourceKind
from tests.fixtures.resource_fixtures import CLUSTER, NETWORK, REGISTRY, SERVICE


def declare(kind, name, depends_on=(), spec=None):
    return Resource.declare(kind, name, spec or {}, depends_on=depends_on)


def test_topological_order_puts_dependencies_first(graph):
    order = graph.topological_order().ids()

    assert order == [NETWORK, REGISTRY, CLUSTER, SERVICE]
    for resource in graph.topological_order():
        for dependency in resource.depends_on:
            assert order.index(dependency) < order.index(resource.id)


def test_refs_in_spec_become_dependencies(graph):
    assert graph.dependencies_of(SERVICE) == sorted([CLUSTER, REGISTRY])
    assert graph.get(SERVICE).depends_on == frozenset({CLUSTER, REGISTRY})
    assert graph.dependents_of(NETWORK) == [CLUSTER]


def test_ties_are_broken_by_declaration_order():
    graph = ResourceGraph()
    graph.add_resource(declare(ResourceKind.REGISTRY, "b"))
    graph.add_resource(declare(ResourceKind.NETWORK, "a"))
    graph.add_resource(declare(ResourceKind.CLUSTER, "c"))

    assert [str(r) for r in graph.topological_order().ids()] == ["registry/b", "network/a", "cluster/c"]


def test_topological_order_is_restartable(graph):
    order = graph.topological_order()

    first = [r.id for r in order]
    second = [r.id for r in order]

    assert first == second
    assert len(order) == 4


def test_forward_reference_is_resolved_when_declared_later():
    graph = ResourceGraph()
    graph.add_resource(declare(ResourceKind.SERVICE, "api", depends_on=["cluster/main"]))

    assert graph.unresolved_dependencies() == [ResourceId(ResourceKind.CLUSTER, "main")]
    assert [r.id.name for r in graph.topological_order()] == ["api"]

    graph.add_resource(declare(ResourceKind.CLUSTER, "main"))

    assert graph.unresolved_dependencies() == []
    assert [str(r) for r in graph.topological_order().ids()] == ["cluster/main", "service/api"]


def test_self_dependency_is_a_cycle():
    graph = ResourceGraph()

    with pytest.raises(CyclicDependency):
        graph.add_resource(declare(ResourceKind.NETWORK, "main", depends_on=["network/main"]))

    assert len(graph) == 0


def test_cycle_through_forward_reference_leaves_graph_unchanged():
    graph = ResourceGraph()
    graph.add_resource(declare(ResourceKind.CLUSTER, "main", depends_on=["network/main"]))
    before = graph.topological_order().ids()

    with pytest.raises(CyclicDependency) as exc_info:
        graph.add_resource(declare(ResourceKind.NETWORK, "main", depends_on=["cluster/main"]))

    assert "network/main" in exc_info.value.cycle
    assert "network/main" not in graph
    assert graph.topological_order().ids() == before
    assert graph.unresolved_dependencies() == [NETWORK]


def test_add_dependency_rejects_cycle(graph):
    with pytest.raises(CyclicDependency):
        graph.add_dependency(NETWORK, SERVICE)

    assert graph.dependencies_of(NETWORK) == []
    assert graph.get(NETWORK).depends_on == frozenset()


def test_add_dependency_adds_edge(graph):
    graph.add_dependency("cluster/main", "registry/backend")

    assert REGISTRY in graph.get(CLUSTER).depends_on
    assert graph.dependencies_of(CLUSTER) == sorted([NETWORK, REGISTRY])


def test_duplicate_resource_is_rejected(graph):
    with pytest.raises(DuplicateResource):
        graph.add_resource(declare(ResourceKind.NETWORK, "main"))


def test_contains_accepts_string_ids(graph):
    assert "service/backend" in graph
    assert SERVICE in graph
    assert "service/other" not in graph


def test_ref_dependency_is_merged_with_explicit_ones():
    graph = ResourceGraph()
    resource = graph.add_resource(
        declare(ResourceKind.LISTENER, "http", spec={"lb": Ref(ResourceId(ResourceKind.LOAD_BALANCER, "public"), "arn")}),
        depends_on=["network/main"],
    )

    assert resource.depends_on == frozenset({
        ResourceId(ResourceKind.LOAD_BALANCER, "public"),
        ResourceId(ResourceKind.NETWORK, "main"),
    })
