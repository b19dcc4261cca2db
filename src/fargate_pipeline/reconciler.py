"""
State reconciliation.

``plan`` diffs a desired ResourceGraph against the last applied StateSnapshot
and returns an ordered Plan; ``apply`` executes that plan one operation at a
time through a ProviderAdapter.
"""
import itertools
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import networkx as nx

from fargate_pipeline.exceptions import (
    ApplyFailed,
    DependencyConflict,
    DeployerError,
    NotFound,
    ProviderError,
    StalePlan,
    UnknownProviderError,
    UnresolvedDependency,
)
from fargate_pipeline.graph import ResourceGraph
from fargate_pipeline.provider import ProviderAdapter, ProviderRecord
from fargate_pipeline.resources import LifecycleState, Ref, Resource, ResourceId
from fargate_pipeline.snapshot import StateSnapshot
from fargate_pipeline.utils.decorators import log_execution_time

logger = logging.getLogger(__name__)


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Operation:
    sequence: int
    kind: OperationKind
    resource: Resource
    previous: Optional[Resource] = None

    @property
    def resource_id(self) -> ResourceId:
        return self.resource.id

    def describe(self) -> str:
        symbol = {"create": "+", "update": "~", "delete": "-"}[self.kind.value]
        return f"{symbol} {self.resource_id}"


@dataclass(frozen=True)
class Plan:
    environment: str
    base_serial: int
    operations: Tuple[Operation, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def __iter__(self):
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    def summary(self) -> Dict[str, int]:
        counts = {kind.value: 0 for kind in OperationKind}
        for operation in self.operations:
            counts[operation.kind.value] += 1
        return counts


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of an apply; ``snapshot`` always reflects what actually converged."""
    snapshot: StateSnapshot
    applied: Tuple[Operation, ...] = ()
    skipped: Tuple[Operation, ...] = ()
    failed_operation: Optional[Operation] = None
    error: Optional[DeployerError] = None

    @property
    def succeeded(self) -> bool:
        return self.failed_operation is None

    def raise_for_failure(self) -> None:
        if not self.succeeded:
            raise ApplyFailed(self)


class ResourceNotReady(ProviderError):
    kind = "not_ready"


def resolve_spec(value: Any, snapshot: StateSnapshot) -> Any:
    """Replace every Ref with the referenced attribute of an applied resource."""
    if isinstance(value, Ref):
        target = snapshot.get(value.resource_id)
        if target is None or value.attribute not in target.attributes:
            raise UnresolvedDependency(value.resource_id, f"{value.resource_id}.{value.attribute}")
        return target.attributes[value.attribute]
    if isinstance(value, dict):
        return {k: resolve_spec(v, snapshot) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_spec(v, snapshot) for v in value]
    return value


class StateReconciler:
    """Plans and applies the difference between declared and applied state."""

    def __init__(self, provider: ProviderAdapter, ready_poll_attempts: int = 30,
                 ready_poll_interval: float = 10.0, sleep: Callable[[float], None] = time.sleep):
        self.provider = provider
        self.ready_poll_attempts = ready_poll_attempts
        self.ready_poll_interval = ready_poll_interval
        self.sleep = sleep
        self._sequence = itertools.count(1)

    # Planning

    def plan(self, desired: ResourceGraph, observed: StateSnapshot) -> Plan:
        """Compute the ordered operations converging ``observed`` onto ``desired``.

        Raises DependencyConflict or UnresolvedDependency before any operation
        is produced; a rejected plan is never partially returned.
        """
        for dependency in desired.unresolved_dependencies():
            dependents = [str(d) for d in desired.dependents_of(dependency)]
            if dependency in observed:
                raise DependencyConflict(dependency, dependents)
            raise UnresolvedDependency(dependents[0] if dependents else None, dependency)

        operations: List[Operation] = []
        for resource in desired.topological_order():
            current = observed.get(resource.id)
            if current is None or (current.state == LifecycleState.FAILED and not current.materialized):
                operations.append(self._operation(OperationKind.CREATE, resource))
            elif not resource.same_declaration(current) or current.state == LifecycleState.FAILED:
                operations.append(self._operation(OperationKind.UPDATE, resource, previous=current))

        for resource in self._delete_order(desired, observed):
            operations.append(self._operation(OperationKind.DELETE, resource))

        plan = Plan(environment=observed.environment, base_serial=observed.serial,
                    operations=tuple(operations))
        logger.info(f"Planned {plan.summary()} for environment {observed.environment}")
        return plan

    def _operation(self, kind: OperationKind, resource: Resource,
                   previous: Optional[Resource] = None) -> Operation:
        return Operation(sequence=next(self._sequence), kind=kind, resource=resource, previous=previous)

    @staticmethod
    def _delete_order(desired: ResourceGraph, observed: StateSnapshot) -> List[Resource]:
        """Observed resources absent from ``desired``, dependents before dependencies."""
        doomed = {r.id for r in observed if r.id not in desired}
        if not doomed:
            return []

        graph = nx.DiGraph()
        position = {}
        for index, resource in enumerate(observed):
            graph.add_node(resource.id)
            position[resource.id] = index
        for resource in observed:
            for dependency in resource.depends_on:
                if dependency in position:
                    graph.add_edge(dependency, resource.id)

        order = list(nx.lexicographical_topological_sort(graph, key=lambda node: position[node]))
        return [observed.get(rid) for rid in reversed(order) if rid in doomed]

    # Applying

    @log_execution_time("apply")
    def apply(self, plan: Plan, observed: StateSnapshot) -> ApplyResult:
        """Execute ``plan`` sequentially, stopping at the first failing operation."""
        if plan.base_serial != observed.serial:
            raise StalePlan(plan.base_serial, observed.serial)

        snapshot = observed
        applied: List[Operation] = []
        for index, operation in enumerate(plan.operations):
            logger.info(f"[{operation.sequence}] {operation.describe()}")
            try:
                snapshot = self._execute(operation, snapshot)
            except Exception as e:
                error = e
                if not isinstance(e, DeployerError):
                    logger.exception(f"Unexpected error during {operation.describe()}")
                    error = unexpected_error(operation.resource_id, e)
                logger.error(f"[{operation.sequence}] {operation.describe()} failed: {error}")
                snapshot = self._record_failure(operation, snapshot)
                skipped = plan.operations[index + 1:]
                if skipped:
                    logger.warning(f"Skipping {len(skipped)} remaining operation(s)")
                return ApplyResult(
                    snapshot=snapshot,
                    applied=tuple(applied),
                    skipped=tuple(skipped),
                    failed_operation=operation,
                    error=error,
                )
            applied.append(operation)

        return ApplyResult(snapshot=snapshot, applied=tuple(applied))

    def _execute(self, operation: Operation, snapshot: StateSnapshot) -> StateSnapshot:
        if operation.kind == OperationKind.DELETE:
            current = snapshot.get(operation.resource_id) or operation.resource
            deleting = current.transition(LifecycleState.DELETING)
            target = self._resolved(deleting, snapshot, strict=False)
            self.provider.delete(target)
            self._await_deleted(target)
            return snapshot.without(operation.resource_id)

        resolved_spec = resolve_spec(dict(operation.resource.spec), snapshot)
        if operation.kind == OperationKind.CREATE:
            pending = operation.resource.transition(LifecycleState.CREATING)
            record = self.provider.create(pending.with_spec(resolved_spec))
        else:
            previous = snapshot.get(operation.resource_id) or operation.previous
            pending = replace(operation.resource, state=previous.state, remote_id=previous.remote_id,
                              attributes=previous.attributes).transition(LifecycleState.UPDATING)
            record = self.provider.update(
                pending.with_spec(resolved_spec),
                self._resolved(previous, snapshot, strict=False),
            )

        record = self._await_ready(pending.with_spec(resolved_spec).with_record(record.remote_id, record.attributes),
                                   record)
        active = pending.with_record(record.remote_id, record.attributes).transition(LifecycleState.ACTIVE)
        return snapshot.with_resource(active)

    def _await_ready(self, resource: Resource, record: ProviderRecord) -> ProviderRecord:
        """Re-read until the provider confirms the resource is ready."""
        attempts = 0
        while not record.ready:
            if attempts >= self.ready_poll_attempts:
                raise ResourceNotReady(
                    f"not ready after {attempts} checks", resource_id=resource.id
                )
            self.sleep(self.ready_poll_interval)
            attempts += 1
            record = self.provider.read(resource)
            logger.debug(f"{resource.id} ready={record.ready} (check {attempts})")
        return record

    def _await_deleted(self, resource: Resource) -> None:
        """Re-read until the provider no longer finds the deleted resource."""
        attempts = 0
        while True:
            try:
                self.provider.read(resource)
            except NotFound:
                return
            if attempts >= self.ready_poll_attempts:
                raise ResourceNotReady(
                    f"still present after {attempts} checks", resource_id=resource.id
                )
            self.sleep(self.ready_poll_interval)
            attempts += 1
            logger.debug(f"{resource.id} still being deleted (check {attempts})")

    @staticmethod
    def _resolved(resource: Resource, snapshot: StateSnapshot, strict: bool = True) -> Resource:
        try:
            return resource.with_spec(resolve_spec(dict(resource.spec), snapshot))
        except UnresolvedDependency:
            if strict:
                raise
            return resource

    @staticmethod
    def _record_failure(operation: Operation, snapshot: StateSnapshot) -> StateSnapshot:
        current = snapshot.get(operation.resource_id)
        if operation.kind == OperationKind.CREATE or current is None:
            failed = replace(operation.resource, state=LifecycleState.FAILED)
        else:
            failed = replace(current, state=LifecycleState.FAILED)
        return snapshot.with_resource(failed)


def unexpected_error(resource_id: ResourceId, error: Exception) -> ProviderError:
    """Wrap an unclassified exception so every failure names its resource."""
    return UnknownProviderError(str(error), resource_id=resource_id)
