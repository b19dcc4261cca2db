"""
Pipeline orchestration.

A run moves through fetch, build, push and deploy. Each stage starts only
after the previous one succeeded; a failing stage ends the run and nothing is
retried automatically.
"""
import asyncio
import json
import logging
import shutil
import tempfile
from typing import Any, Callable, Dict, Optional

from botocore.exceptions import ClientError

from fargate_pipeline.exceptions import DeployerError, SourceFetchError
from fargate_pipeline.pipeline.artifacts import IMAGE_DEFINITION_FILE, ArtifactStore
from fargate_pipeline.pipeline.models import (
    LATEST_TAG,
    ImageDefinition,
    PipelineRun,
    PushEvent,
    RunState,
    Stage,
    StageResult,
    image_tag_for,
)
from fargate_pipeline.rollout import RolloutController

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Runs the delivery pipeline for push events."""

    def __init__(self, fetcher: Any, builder: Any, rollout: RolloutController,
                 repository_uri: str, container_name: str, service_name: str,
                 artifact_store: Optional[ArtifactStore] = None,
                 dockerfile: str = "Dockerfile", build_context: str = ".",
                 on_update: Optional[Callable[[PipelineRun], None]] = None):
        self.fetcher = fetcher
        self.builder = builder
        self.rollout = rollout
        self.repository_uri = repository_uri
        self.container_name = container_name
        self.service_name = service_name
        self.artifact_store = artifact_store
        self.dockerfile = dockerfile
        self.build_context = build_context
        self.on_update = on_update
        # Last run per branch, kept until the next run for that branch replaces it
        self.runs: Dict[str, PipelineRun] = {}
        self._latest: Dict[str, PipelineRun] = {}

    def _publish(self, run: PipelineRun) -> PipelineRun:
        self.runs[run.branch] = run
        self._latest[run.run_id] = run
        if self.on_update is not None:
            self.on_update(run)
        return run

    async def run(self, event: PushEvent) -> PipelineRun:
        """Execute one run; failures are recorded on the returned run."""
        run = self._publish(PipelineRun.start(event))
        logger.info(f"Run {run.run_id} triggered for {event.branch}@{event.revision or 'HEAD'}")
        workdir = tempfile.mkdtemp(prefix=f"pipeline-{run.run_id}-")
        try:
            run = await self._execute(run, event, workdir)
        except asyncio.CancelledError:
            self._publish(self._latest[run.run_id].fail(DeployerError("run cancelled")))
            raise
        except Exception as e:
            current = self._latest[run.run_id]
            if isinstance(e, DeployerError):
                logger.error(f"Run {run.run_id} failed in {current.state.value}: {e}")
            else:
                logger.exception(f"Run {run.run_id} failed unexpectedly in {current.state.value}")
            run = self._publish(current.fail(e))
        finally:
            shutil.rmtree(workdir, ignore_errors=True)
            self._latest.pop(run.run_id, None)

        await self._store_run(run)
        logger.info(f"Run {run.run_id} finished: {run.status.value}")
        return run

    async def _execute(self, run: PipelineRun, event: PushEvent, workdir: str) -> PipelineRun:
        # Source
        run = self._publish(run.advance(RunState.FETCHING))
        source = await asyncio.to_thread(self.fetcher.fetch, event.revision or event.branch, workdir)
        if not source.revision:
            raise SourceFetchError("source snapshot carries no revision")
        tag = image_tag_for(source.revision)
        run = run.record(StageResult(Stage.SOURCE, True, {"revision": source.revision}))

        # Build
        run = self._publish(run.advance(RunState.BUILDING, revision=source.revision, image_tag=tag))
        artifact = await asyncio.to_thread(
            self.builder.build,
            source,
            self.repository_uri,
            (tag, LATEST_TAG),
            self.dockerfile,
            self.build_context,
        )

        # Push
        run = self._publish(run.advance(RunState.PUSHING))
        pushed = await asyncio.to_thread(self.builder.push, artifact)
        run = run.record(StageResult(Stage.BUILD, True, {"images": list(pushed)}))

        # Deploy
        run = self._publish(run.advance(RunState.DEPLOYING))
        definition = ImageDefinition(name=self.container_name, image_uri=artifact.uri(tag))
        if self.artifact_store is not None:
            await asyncio.to_thread(self.artifact_store.put, IMAGE_DEFINITION_FILE, definition.to_json())
        result = await self.rollout.deploy(self.service_name, definition)
        run = run.record(StageResult(Stage.DEPLOY, True, {
            "image_uri": definition.image_uri,
            "task_definition_arn": result.task_definition_arn,
            "polls": result.attempts,
        }))
        return self._publish(run.advance(RunState.SUCCEEDED))

    async def _store_run(self, run: PipelineRun) -> None:
        if self.artifact_store is None:
            return
        try:
            await asyncio.to_thread(
                self.artifact_store.put, f"runs/{run.run_id}.json", json.dumps(run.to_dict(), indent=2)
            )
        except (DeployerError, OSError) as e:
            logger.error(f"Could not store record of run {run.run_id}: {e}")


def create_orchestrator(settings, on_update: Optional[Callable[[PipelineRun], None]] = None
                        ) -> PipelineOrchestrator:
    """Wire the AWS-backed pipeline for ``settings``."""
    from fargate_pipeline.aws.clients import get_ecr_client, get_s3_client
    from fargate_pipeline.aws.service import EcsServiceClient
    from fargate_pipeline.pipeline.artifacts import LocalArtifactStore, S3ArtifactStore
    from fargate_pipeline.pipeline.images import DockerImageBuilder
    from fargate_pipeline.pipeline.source import GitHubSourceFetcher
    from fargate_pipeline.secrets import SecretsManagerStore

    if settings.deployment_mode == "local-dev":
        token = None
        artifact_store = LocalArtifactStore(f"{settings.state_dir}/artifacts")
        repository_uri = settings.repository_uri
    else:
        token = SecretsManagerStore().get(settings.source_token_secret)
        artifact_store = S3ArtifactStore(get_s3_client(), settings.artifact_bucket_name)
        repository_uri = _registry_uri(get_ecr_client(), settings)

    fetcher = GitHubSourceFetcher(
        settings.repository_owner,
        settings.repository_name,
        token=token,
        api_url=settings.github_api_url,
    )
    rollout = RolloutController(
        EcsServiceClient(),
        settings.cluster_name,
        poll_attempts=settings.rollout_poll_attempts,
        poll_interval=settings.rollout_poll_interval,
    )
    return PipelineOrchestrator(
        fetcher=fetcher,
        builder=DockerImageBuilder(get_ecr_client()),
        rollout=rollout,
        repository_uri=repository_uri,
        container_name=settings.container_name,
        service_name=settings.service_name,
        artifact_store=artifact_store,
        dockerfile=settings.dockerfile,
        build_context=settings.build_context,
        on_update=on_update,
    )


def _registry_uri(ecr_client: Any, settings) -> str:
    """Repository URI as reported by ECR; the configured one when the lookup fails."""
    try:
        response = ecr_client.describe_repositories(repositoryNames=[settings.ecr_repo_name])
    except ClientError as e:
        logger.warning(f"Could not look up repository {settings.ecr_repo_name}: {e}")
        return settings.repository_uri
    return response["repositories"][0]["repositoryUri"]
