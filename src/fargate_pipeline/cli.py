# cli.py
import asyncio
import logging
import sys

import click

from fargate_pipeline.exceptions import DeployerError
from fargate_pipeline.graph import ResourceGraph
from fargate_pipeline.provider import InMemoryProvider, ProviderAdapter, RetryingProvider
from fargate_pipeline.reconciler import Plan, StateReconciler
from fargate_pipeline.settings import Settings, get_settings
from fargate_pipeline.stack import build_stack
from fargate_pipeline.state_store import build_state_store

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def build_provider(settings: Settings) -> ProviderAdapter:
    """InMemoryProvider in local-dev, otherwise AWS behind the Throttled retry wrapper."""
    if settings.deployment_mode == "local-dev":
        return InMemoryProvider()
    from fargate_pipeline.aws.provider import AwsProvider
    return RetryingProvider(
        AwsProvider(),
        max_attempts=settings.provider_max_attempts,
        base_delay=settings.provider_backoff_base,
        factor=settings.provider_backoff_factor,
    )


def build_reconciler(settings: Settings) -> StateReconciler:
    return StateReconciler(
        build_provider(settings),
        ready_poll_attempts=settings.ready_poll_attempts,
        ready_poll_interval=settings.ready_poll_interval,
    )


def print_plan(plan: Plan) -> None:
    if plan.is_empty:
        print("No changes. Infrastructure matches the declaration.")
        return
    print(f"Plan for {plan.environment} (state serial {plan.base_serial}):")
    for operation in plan:
        print(f"  {operation.describe()}")
    summary = plan.summary()
    print(f"  {summary['create']} to create, {summary['update']} to update, {summary['delete']} to delete")


def reconcile(settings: Settings, desired: ResourceGraph, yes: bool) -> None:
    store = build_state_store(settings)
    observed = store.load(settings.environment)
    reconciler = build_reconciler(settings)
    try:
        plan = reconciler.plan(desired, observed)
    except DeployerError as e:
        raise click.ClickException(str(e))

    print_plan(plan)
    if plan.is_empty:
        return
    if not yes:
        click.confirm("Apply these changes?", abort=True)

    result = reconciler.apply(plan, observed)
    # The partial snapshot of a failed apply is still what exists remotely
    store.save(result.snapshot)
    if not result.succeeded:
        print(f"❌ {result.failed_operation.describe()} failed: {result.error}")
        if result.skipped:
            print(f"   {len(result.skipped)} operation(s) skipped")
        sys.exit(1)
    print(f"✅ Applied {len(result.applied)} operation(s) (state serial {result.snapshot.serial})")


@click.group()
@click.option("--log-level", default=None, help="Override the configured log level")
def cli(log_level):
    """Declare, reconcile and continuously deliver a Fargate service"""
    configure_logging(log_level or get_settings().log_level)


@cli.command()
def show_config():
    """Show current configuration"""
    settings = get_settings()

    print("Current Configuration:")
    print(f"  App Name: {settings.app_name}")
    print(f"  Environment: {settings.environment}")
    print(f"  Deployment Mode: {settings.deployment_mode}")
    print(f"  AWS Region: {settings.aws_region}")
    print(f"  AWS Endpoint: {settings.aws_endpoint_url}")
    print(f"  Owner: {settings.owner}")
    print(f"  Source: {settings.repository_owner}/{settings.repository_name}@{settings.branch}")
    print(f"  Repository URI: {settings.repository_uri}")
    print(f"  Cluster: {settings.cluster_name}")
    print(f"  Service: {settings.service_name}")
    print(f"  Domain: {settings.domain_name or '-'}")
    print(f"  State Backend: {settings.state_backend}")
    print(f"  Artifact Bucket: {settings.artifact_bucket_name}")


@cli.command()
def plan():
    """Show the operations needed to converge on the declared stack"""
    settings = get_settings()
    observed = build_state_store(settings).load(settings.environment)
    try:
        result = build_reconciler(settings).plan(build_stack(settings), observed)
    except DeployerError as e:
        raise click.ClickException(str(e))
    print_plan(result)


@cli.command()
@click.option("--yes", is_flag=True, help="Apply without asking for confirmation")
def apply(yes):
    """Converge the infrastructure on the declared stack"""
    settings = get_settings()
    reconcile(settings, build_stack(settings), yes)


@cli.command()
@click.option("--yes", is_flag=True, help="Destroy without asking for confirmation")
def destroy(yes):
    """Delete every resource recorded in the state"""
    settings = get_settings()
    reconcile(settings, ResourceGraph(), yes)


@cli.group()
def state():
    """Inspect or reset the persisted deployment state"""
    pass


@state.command("status")
def state_status():
    """Show the resources recorded in the state"""
    settings = get_settings()
    snapshot = build_state_store(settings).load(settings.environment)
    print(f"Environment: {snapshot.environment}")
    print(f"Serial: {snapshot.serial}")
    print(f"Updated: {snapshot.updated_at or '-'}")
    if not len(snapshot):
        print("No resources recorded")
        return
    for resource in snapshot:
        print(f"  {str(resource.id):<28} {resource.state.value:<10} {resource.remote_id or '-'}")


@state.command("clear")
@click.confirmation_option(prompt="Forget all recorded resources? Remote resources are not deleted.")
def state_clear():
    """Forget the recorded state without touching remote resources"""
    settings = get_settings()
    build_state_store(settings).clear(settings.environment)
    print(f"✅ State for {settings.environment} cleared")


@cli.command()
@click.option("--revision", default=None, help="Commit to build (defaults to the branch head)")
@click.option("--branch", default=None, help="Branch to build (defaults to the configured branch)")
def run_pipeline(revision, branch):
    """Run fetch, build, push and deploy once"""
    from fargate_pipeline.pipeline.models import PushEvent
    from fargate_pipeline.pipeline.orchestrator import create_orchestrator

    settings = get_settings()
    event = PushEvent(branch=branch or settings.branch, revision=revision)
    run = asyncio.run(create_orchestrator(settings).run(event))

    for stage in run.stages:
        mark = "✅" if stage.succeeded else "❌"
        print(f"{mark} {stage.stage.value}: {stage.error or stage.detail}")
    if run.error:
        print(f"❌ Run {run.run_id} failed in {run.failed_stage.value}: {run.error}")
        sys.exit(1)
    print(f"✅ Run {run.run_id} succeeded with image tag {run.image_tag}")


@cli.command()
@click.option("--image-uri", required=True, help="Image to roll out, including its tag")
@click.option("--service", default=None, help="Service name (defaults to the configured service)")
def deploy(image_uri, service):
    """Roll an image onto the service and wait for steady state"""
    from fargate_pipeline.aws.service import EcsServiceClient
    from fargate_pipeline.pipeline.models import ImageDefinition
    from fargate_pipeline.rollout import RolloutController

    settings = get_settings()
    controller = RolloutController(
        EcsServiceClient(),
        settings.cluster_name,
        poll_attempts=settings.rollout_poll_attempts,
        poll_interval=settings.rollout_poll_interval,
    )
    definition = ImageDefinition(name=settings.container_name, image_uri=image_uri)
    try:
        result = asyncio.run(controller.deploy(service or settings.service_name, definition))
    except DeployerError as e:
        raise click.ClickException(str(e))
    print(f"✅ {result.service} running {result.task_definition_arn} after {result.attempts} poll(s)")


@cli.command()
@click.option("--host", default="0.0.0.0", help="Host to bind to")
@click.option("--port", default=8000, type=int, help="Port to bind to")
def serve_webhook(host, port):
    """Start the webhook receiver"""
    import uvicorn

    from fargate_pipeline.secrets import SecretsManagerStore
    from fargate_pipeline.webhook import create_app

    settings = get_settings()
    secret = None
    if settings.webhook_secret:
        secret = SecretsManagerStore().get(settings.webhook_secret)
    print(f"Starting webhook receiver on {host}:{port} for branch {settings.branch}")
    uvicorn.run(create_app(settings, webhook_secret=secret), host=host, port=port)


if __name__ == "__main__":
    cli()
