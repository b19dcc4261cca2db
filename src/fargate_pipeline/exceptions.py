"""Error taxonomy for reconciliation, provider calls, pipeline runs and rollouts."""
from typing import Any, Dict, Iterable, List, Optional


class DeployerError(Exception):
    """Base class for every error raised by fargate_pipeline."""
    pass


# Structural errors: raised before anything reaches the provider

class CyclicDependency(DeployerError):
    """Adding a dependency edge would close a cycle in the resource graph."""

    def __init__(self, cycle: Iterable[Any]):
        self.cycle = [str(node) for node in cycle]
        super().__init__(f"Cyclic dependency: {' -> '.join(self.cycle)}")


class DuplicateResource(DeployerError):
    def __init__(self, resource_id: Any):
        self.resource_id = resource_id
        super().__init__(f"Resource already declared: {resource_id}")


class UnresolvedDependency(DeployerError):
    """A dependency is neither declared nor present in the observed state."""

    def __init__(self, resource_id: Any, dependency: Any):
        self.resource_id = resource_id
        self.dependency = dependency
        super().__init__(f"{resource_id} depends on undeclared resource {dependency}")


class DependencyConflict(DeployerError):
    """A planned delete targets a resource that surviving resources still depend on."""

    def __init__(self, resource_id: Any, dependents: Iterable[Any]):
        self.resource_id = resource_id
        self.dependents = sorted(str(d) for d in dependents)
        super().__init__(
            f"Cannot delete {resource_id}: still required by {', '.join(self.dependents)}"
        )


class InvalidTransition(DeployerError):
    def __init__(self, resource_id: Any, current: Any, target: Any):
        self.resource_id = resource_id
        self.current = current
        self.target = target
        super().__init__(f"Invalid lifecycle transition for {resource_id}: {current} -> {target}")


class StalePlan(DeployerError):
    def __init__(self, plan_serial: int, observed_serial: int):
        self.plan_serial = plan_serial
        self.observed_serial = observed_serial
        super().__init__(
            f"Plan was computed against state serial {plan_serial}, "
            f"current state serial is {observed_serial}"
        )


class ApplyFailed(DeployerError):
    """An apply stopped at a failing operation; earlier operations stay applied."""

    def __init__(self, result: Any):
        self.result = result
        operation = result.failed_operation
        super().__init__(
            f"{operation.kind.value} {operation.resource_id} failed: {result.error}"
        )


# Provider errors: classified at the ProviderAdapter boundary

class ProviderError(DeployerError):
    """Typed failure returned by a provider call."""

    kind = "unknown"

    def __init__(self, message: str, resource_id: Any = None,
                 code: Optional[str] = None, detail: Optional[Dict[str, Any]] = None):
        self.resource_id = resource_id
        self.code = code
        self.detail = detail or {}
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        prefix = f"[{self.kind}]"
        if self.code:
            prefix = f"[{self.kind}:{self.code}]"
        if self.resource_id is not None:
            return f"{prefix} {self.resource_id}: {self.message}"
        return f"{prefix} {self.message}"


class Throttled(ProviderError):
    kind = "throttled"


class NotAuthorized(ProviderError):
    kind = "not_authorized"


class Conflict(ProviderError):
    kind = "conflict"


class NotFound(ProviderError):
    kind = "not_found"


class UnknownProviderError(ProviderError):
    kind = "unknown"


# Rollout errors

class RolloutTimeout(DeployerError):
    def __init__(self, service: Any, attempts: int, last_health: Any = None):
        self.service = service
        self.attempts = attempts
        self.last_health = last_health
        super().__init__(f"Service {service} did not reach steady state after {attempts} polls")


class DeployInProgress(DeployerError):
    def __init__(self, service: Any):
        self.service = service
        super().__init__(f"A deploy to {service} is already in progress")


# Pipeline stage errors

class StageError(DeployerError):
    """Failure of a single pipeline stage."""
    pass


class SourceFetchError(StageError):
    pass


class ImageBuildError(StageError):
    def __init__(self, message: str, log_lines: Optional[List[str]] = None):
        self.log_lines = log_lines or []
        super().__init__(message)


class ImagePushError(StageError):
    pass


class SecretNotFound(DeployerError):
    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Secret not found: {reference}")
