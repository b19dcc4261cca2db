"""
Health-gated rollouts.

``deploy`` registers a task definition revision with the new image, points the
service at it and polls until every running task uses that revision. There is
no automatic rollback: a timed-out rollout leaves the service partially
updated.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from fargate_pipeline.exceptions import DeployInProgress, RolloutTimeout
from fargate_pipeline.pipeline.models import ImageDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RolloutResult:
    service: str
    task_definition_arn: str
    attempts: int
    health: Any = None


class RolloutController:
    """Serializes deploys per service and polls for steady state.

    ``service_client`` provides blocking ``update_image`` and
    ``describe_health`` calls; they run in worker threads.
    """

    def __init__(self, service_client: Any, cluster: str, poll_attempts: int = 10,
                 poll_interval: float = 30.0,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.service_client = service_client
        self.cluster = cluster
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.sleep = sleep
        self._in_flight: Dict[str, Optional[asyncio.Task]] = {}

    def in_progress(self, service: str) -> bool:
        return service in self._in_flight

    async def deploy(self, service: str, image_definition: ImageDefinition) -> RolloutResult:
        if service in self._in_flight:
            raise DeployInProgress(service)
        self._in_flight[service] = asyncio.current_task()
        try:
            return await self._rollout(service, image_definition)
        except asyncio.CancelledError:
            logger.warning(f"Rollout of {service} cancelled")
            raise
        finally:
            self._in_flight.pop(service, None)

    async def _rollout(self, service: str, image_definition: ImageDefinition) -> RolloutResult:
        task_definition_arn = await asyncio.to_thread(
            self.service_client.update_image,
            self.cluster,
            service,
            image_definition.name,
            image_definition.image_uri,
        )
        logger.info(f"Rolling {service} to {image_definition.image_uri}")

        health = None
        for attempt in range(1, self.poll_attempts + 1):
            health = await asyncio.to_thread(self.service_client.describe_health, self.cluster, service)
            if health.converged_on(task_definition_arn):
                logger.info(f"{service} reached steady state after {attempt} poll(s)")
                return RolloutResult(service, task_definition_arn, attempt, health)
            logger.info(
                f"{service} not steady yet ({attempt}/{self.poll_attempts}): "
                f"{health.running_count}/{health.desired_count} running, "
                f"{health.deployment_count} deployment(s)"
            )
            if attempt < self.poll_attempts:
                await self.sleep(self.poll_interval)

        logger.error(f"{service} did not reach steady state after {self.poll_attempts} polls")
        raise RolloutTimeout(service, self.poll_attempts, last_health=health)

    def abort(self, service: str) -> bool:
        """Cancel the in-flight deploy of ``service``; the lock is released by ``deploy``."""
        task = self._in_flight.get(service)
        if task is None or task.done():
            return False
        task.cancel()
        logger.warning(f"Abort requested for rollout of {service}")
        return True
