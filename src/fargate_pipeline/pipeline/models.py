"""Pipeline run records and the values passed between stages."""
import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from fargate_pipeline.exceptions import InvalidTransition

LATEST_TAG = "latest"
SHORT_REVISION_LENGTH = 7


class RunState(str, Enum):
    """Position of a run in the fetch, build, push, deploy sequence"""
    TRIGGERED = "triggered"
    FETCHING = "fetching"
    BUILDING = "building"
    PUSHING = "pushing"
    DEPLOYING = "deploying"
    SUCCEEDED = "succeeded"   # terminal
    FAILED = "failed"         # terminal


class RunStatus(str, Enum):
    """Final outcome of a run"""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Stage(str, Enum):
    SOURCE = "source"
    BUILD = "build"
    DEPLOY = "deploy"


RUN_TRANSITIONS = {
    RunState.TRIGGERED: {RunState.FETCHING, RunState.FAILED},
    RunState.FETCHING: {RunState.BUILDING, RunState.FAILED},
    RunState.BUILDING: {RunState.PUSHING, RunState.FAILED},
    RunState.PUSHING: {RunState.DEPLOYING, RunState.FAILED},
    RunState.DEPLOYING: {RunState.SUCCEEDED, RunState.FAILED},
    RunState.SUCCEEDED: set(),
    RunState.FAILED: set(),
}

# Stage a failure is recorded under for each running state
STAGE_OF_STATE = {
    RunState.TRIGGERED: Stage.SOURCE,
    RunState.FETCHING: Stage.SOURCE,
    RunState.BUILDING: Stage.BUILD,
    RunState.PUSHING: Stage.BUILD,
    RunState.DEPLOYING: Stage.DEPLOY,
}


def image_tag_for(revision: Optional[str]) -> str:
    """Short revision tag, or ``latest`` when the revision is unknown."""
    if not revision:
        return LATEST_TAG
    return revision[:SHORT_REVISION_LENGTH]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class PushEvent:
    """Inbound trigger: a push of ``revision`` to ``branch``."""
    branch: str
    revision: Optional[str] = None
    repository: Optional[str] = None
    received_at: str = field(default_factory=_now)


@dataclass(frozen=True)
class SourceSnapshot:
    revision: str
    path: str

    @property
    def short_revision(self) -> str:
        return image_tag_for(self.revision)


@dataclass(frozen=True)
class ImageArtifact:
    repository_uri: str
    tags: Tuple[str, ...]
    image_id: Optional[str] = None

    def uri(self, tag: str) -> str:
        return f"{self.repository_uri}:{tag}"


@dataclass(frozen=True)
class ImageDefinition:
    """Container name and image URI handed to the deploy stage."""
    name: str
    image_uri: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "imageUri": self.image_uri}

    def to_json(self) -> str:
        """Serialized as the ``docker_image_definition.json`` artifact."""
        return json.dumps([self.to_dict()])

    @classmethod
    def from_json(cls, payload: str) -> List["ImageDefinition"]:
        return [cls(name=item["name"], image_uri=item["imageUri"]) for item in json.loads(payload)]


@dataclass(frozen=True)
class StageResult:
    stage: Stage
    succeeded: bool
    detail: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    finished_at: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "succeeded": self.succeeded,
            "detail": dict(self.detail),
            "error": self.error,
            "finished_at": self.finished_at,
        }


@dataclass(frozen=True)
class PipelineRun:
    """One execution of the pipeline for a trigger event.

    Runs are immutable; each completed stage produces a new run via ``advance``
    or ``record``.
    """
    run_id: str
    branch: str
    revision: Optional[str] = None
    state: RunState = RunState.TRIGGERED
    stages: Tuple[StageResult, ...] = ()
    image_tag: Optional[str] = None
    failed_stage: Optional[Stage] = None
    error: Optional[str] = None
    started_at: str = field(default_factory=_now)
    finished_at: Optional[str] = None

    @classmethod
    def start(cls, event: PushEvent) -> "PipelineRun":
        return cls(run_id=uuid.uuid4().hex[:12], branch=event.branch, revision=event.revision)

    @property
    def status(self) -> RunStatus:
        if self.state == RunState.SUCCEEDED:
            return RunStatus.SUCCEEDED
        if self.state == RunState.FAILED:
            return RunStatus.FAILED
        return RunStatus.PENDING

    @property
    def finished(self) -> bool:
        return self.status != RunStatus.PENDING

    def advance(self, target: RunState, **changes: Any) -> "PipelineRun":
        if target not in RUN_TRANSITIONS[self.state]:
            raise InvalidTransition(f"run {self.run_id}", self.state.value, target.value)
        if target in (RunState.SUCCEEDED, RunState.FAILED):
            changes.setdefault("finished_at", _now())
        return replace(self, state=target, **changes)

    def record(self, result: StageResult) -> "PipelineRun":
        return replace(self, stages=self.stages + (result,))

    def fail(self, error: Exception) -> "PipelineRun":
        stage = STAGE_OF_STATE[self.state]
        failed = self.record(StageResult(stage=stage, succeeded=False, error=str(error)))
        return failed.advance(RunState.FAILED, failed_stage=stage, error=str(error))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "branch": self.branch,
            "revision": self.revision,
            "state": self.state.value,
            "status": self.status.value,
            "stages": [s.to_dict() for s in self.stages],
            "image_tag": self.image_tag,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error": self.error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
