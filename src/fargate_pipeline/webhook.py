"""
Webhook receiver.

GitHub push webhooks are verified, turned into PushEvents and queued on the
TriggerDispatcher; the pipeline runs in the background.
"""
import hashlib
import hmac
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from fargate_pipeline.pipeline.models import PushEvent
from fargate_pipeline.pipeline.trigger import TriggerDispatcher
from fargate_pipeline.settings import Settings, get_settings

logger = logging.getLogger(__name__)

BRANCH_REF_PREFIX = "refs/heads/"
NULL_REVISION = "0" * 40

router = APIRouter()


class RepositoryInfo(BaseModel):
    full_name: Optional[str] = None


class PushPayload(BaseModel):
    """The parts of a GitHub push payload the pipeline needs."""
    ref: str
    after: Optional[str] = None
    deleted: bool = False
    repository: Optional[RepositoryInfo] = None

    @property
    def branch(self) -> Optional[str]:
        if not self.ref.startswith(BRANCH_REF_PREFIX):
            return None
        return self.ref[len(BRANCH_REF_PREFIX):]


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the raw request body."""
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len("sha256="):])


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    x_github_event: Optional[str] = Header(default=None),
    x_hub_signature_256: Optional[str] = Header(default=None),
):
    body = await request.body()
    secret = request.app.state.webhook_secret
    if secret and not verify_signature(secret, body, x_hub_signature_256):
        logger.warning("Rejected webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid signature")

    if x_github_event == "ping":
        return {"status": "pong"}
    if x_github_event not in (None, "push"):
        return {"accepted": False, "reason": f"event {x_github_event} ignored"}

    try:
        payload = PushPayload.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    settings: Settings = request.app.state.settings
    expected_repository = f"{settings.repository_owner}/{settings.repository_name}"
    source_repository = payload.repository.full_name if payload.repository else None
    if source_repository and source_repository.lower() != expected_repository.lower():
        logger.warning(f"Ignoring push from {source_repository}, expected {expected_repository}")
        return {"accepted": False, "reason": f"repository {source_repository} is not tracked"}

    branch = payload.branch
    if branch is None:
        return {"accepted": False, "reason": f"{payload.ref} is not a branch"}
    if payload.deleted or payload.after == NULL_REVISION:
        return {"accepted": False, "reason": f"branch {branch} deleted"}

    event = PushEvent(
        branch=branch,
        revision=payload.after,
        repository=source_repository,
    )
    dispatcher: TriggerDispatcher = request.app.state.dispatcher
    if not dispatcher.submit(event):
        return {"accepted": False, "reason": f"branch {branch} is not tracked"}

    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"accepted": True, "branch": branch, "revision": payload.after},
    )


@router.get("/health")
async def health_check(request: Request):
    """Report deployment mode and the state of every branch queue."""
    settings: Settings = request.app.state.settings
    dispatcher: TriggerDispatcher = request.app.state.dispatcher
    return {
        "status": "ok",
        "deployment_mode": settings.deployment_mode,
        "branch": settings.branch,
        "branches": dispatcher.status() if dispatcher is not None else {},
    }


def create_app(settings: Optional[Settings] = None,
               dispatcher: Optional[TriggerDispatcher] = None,
               webhook_secret: Optional[str] = None) -> FastAPI:
    """Create the webhook application.

    Without an explicit ``dispatcher`` one is built on startup, running the
    AWS-backed pipeline for the configured branch.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.dispatcher is None:
            from fargate_pipeline.pipeline.orchestrator import create_orchestrator
            orchestrator = create_orchestrator(settings)
            app.state.dispatcher = TriggerDispatcher(orchestrator.run, branches=[settings.branch])
        logger.info(f"Webhook receiver ready for branch {settings.branch}")
        yield
        await app.state.dispatcher.close()

    app = FastAPI(
        title="Fargate Pipeline Webhooks",
        summary="Receive push events and trigger pipeline runs",
        version="v1",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.dispatcher = dispatcher
    app.state.webhook_secret = webhook_secret
    if not webhook_secret:
        logger.warning("No webhook secret configured; signatures are not verified")

    app.include_router(router, tags=["webhooks"])
    return app
