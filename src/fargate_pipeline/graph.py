"""
Resource dependency graph.

Builds a NetworkX DiGraph with an edge ``dependency -> dependent`` for every
declared dependency and provides a deterministic topological order.
"""
import logging
from dataclasses import replace
from typing import Dict, Iterable, Iterator, List, Optional

import networkx as nx

from fargate_pipeline.exceptions import CyclicDependency, DuplicateResource
from fargate_pipeline.resources import (
    Resource,
    ResourceId,
    ResourceRef,
    as_resource_id,
    spec_refs,
)

logger = logging.getLogger(__name__)


class ResourceOrder:
    """Restartable view over a graph's topological order.

    Each iteration walks the graph afresh, so the view can be consumed more
    than once and always reflects the graph it was taken from.
    """

    def __init__(self, graph: "ResourceGraph"):
        self._graph = graph

    def __iter__(self) -> Iterator[Resource]:
        for resource_id in self._graph._sorted_ids():
            yield self._graph._resources[resource_id]

    def __len__(self) -> int:
        return len(self._graph)

    def ids(self) -> List[ResourceId]:
        return [resource.id for resource in self]


class ResourceGraph:
    """In-memory DAG of declared resources.

    Usage::

        graph = ResourceGraph()
        graph.add_resource(Resource.declare(ResourceKind.NETWORK, "main"))
        graph.add_resource(cluster, depends_on=["network/main"])
        for resource in graph.topological_order():
            ...
    """

    def __init__(self, resources: Optional[Iterable[Resource]] = None):
        self._graph: nx.DiGraph = nx.DiGraph()
        self._resources: Dict[ResourceId, Resource] = {}
        self._declared_at: Dict[ResourceId, int] = {}
        for resource in resources or ():
            self.add_resource(resource)

    def add_resource(self, resource: Resource, depends_on: Iterable[ResourceRef] = ()) -> Resource:
        """Declare a resource.

        Dependencies are the union of ``resource.depends_on``, ``depends_on`` and
        every resource referenced by a ``Ref`` in the spec. They may name
        resources that are declared later.
        """
        if resource.id in self._resources:
            raise DuplicateResource(resource.id)

        dependencies = (
            set(resource.depends_on)
            | {as_resource_id(d) for d in depends_on}
            | set(spec_refs(resource.spec))
        )
        if resource.id in dependencies:
            raise CyclicDependency([resource.id, resource.id])

        # A new node closes a cycle only if one of its dependencies is already
        # reachable from it through forward references.
        if resource.id in self._graph:
            for dependency in dependencies:
                if dependency in self._graph and nx.has_path(self._graph, resource.id, dependency):
                    path = nx.shortest_path(self._graph, resource.id, dependency)
                    raise CyclicDependency(path + [resource.id])

        resource = replace(resource, depends_on=frozenset(dependencies))
        self._graph.add_node(resource.id)
        for dependency in dependencies:
            self._graph.add_edge(dependency, resource.id)
        self._resources[resource.id] = resource
        self._declared_at[resource.id] = len(self._declared_at)
        logger.debug(f"Declared {resource.id} depending on {sorted(map(str, dependencies))}")
        return resource

    def add_dependency(self, dependent: ResourceRef, dependency: ResourceRef) -> None:
        """Add a single ``dependent -> dependency`` edge to a declared resource."""
        dependent = as_resource_id(dependent)
        dependency = as_resource_id(dependency)
        if dependent not in self._resources:
            raise KeyError(f"Unknown resource: {dependent}")
        if dependent == dependency:
            raise CyclicDependency([dependent, dependent])
        if dependency in self._graph and nx.has_path(self._graph, dependent, dependency):
            path = nx.shortest_path(self._graph, dependent, dependency)
            raise CyclicDependency(path + [dependent])

        self._graph.add_edge(dependency, dependent)
        current = self._resources[dependent]
        self._resources[dependent] = replace(
            current, depends_on=current.depends_on | {dependency}
        )

    def topological_order(self) -> ResourceOrder:
        """Declared resources, dependencies first, ties broken by declaration order."""
        return ResourceOrder(self)

    def _sorted_ids(self) -> Iterator[ResourceId]:
        placeholder_rank = len(self._declared_at)
        for resource_id in nx.lexicographical_topological_sort(
            self._graph,
            key=lambda node: (self._declared_at.get(node, placeholder_rank), str(node)),
        ):
            if resource_id in self._resources:
                yield resource_id

    def unresolved_dependencies(self) -> List[ResourceId]:
        """Dependencies that were referenced but never declared."""
        return sorted(node for node in self._graph if node not in self._resources)

    def get(self, resource_id: ResourceRef) -> Resource:
        return self._resources[as_resource_id(resource_id)]

    def dependencies_of(self, resource_id: ResourceRef) -> List[ResourceId]:
        return sorted(self._graph.predecessors(as_resource_id(resource_id)))

    def dependents_of(self, resource_id: ResourceRef) -> List[ResourceId]:
        resource_id = as_resource_id(resource_id)
        if resource_id not in self._graph:
            return []
        return sorted(self._graph.successors(resource_id))

    def resources(self) -> List[Resource]:
        return [self._resources[rid] for rid in sorted(self._declared_at, key=self._declared_at.get)]

    def __contains__(self, resource_id: object) -> bool:
        if isinstance(resource_id, str):
            resource_id = ResourceId.parse(resource_id)
        return resource_id in self._resources

    def __len__(self) -> int:
        return len(self._resources)

    def __iter__(self) -> Iterator[Resource]:
        return iter(self.topological_order())
