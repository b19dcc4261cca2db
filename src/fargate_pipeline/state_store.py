"""
Deployment state persistence.

Stores the last applied StateSnapshot per environment so that every apply
starts from what was actually converged.
"""
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from botocore.exceptions import ClientError

from fargate_pipeline.provider import classify_client_error
from fargate_pipeline.snapshot import StateSnapshot

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Loads and saves snapshots keyed by environment."""

    @abstractmethod
    def load(self, environment: str) -> StateSnapshot:
        """Return the stored snapshot, or an empty one when nothing was saved."""

    @abstractmethod
    def save(self, snapshot: StateSnapshot) -> None:
        ...

    @abstractmethod
    def clear(self, environment: str) -> None:
        ...


class LocalStateStore(StateStore):
    """Keeps one JSON state file per environment in a local directory."""

    def __init__(self, state_dir: str = ".deployment_state"):
        self.state_dir = Path(state_dir)

    def _path(self, environment: str) -> Path:
        return self.state_dir / f"{environment}.json"

    def load(self, environment: str) -> StateSnapshot:
        """Load deployment state from file."""
        path = self._path(environment)
        if not path.exists():
            return StateSnapshot.empty(environment)

        with open(path, 'r') as f:
            data = json.load(f)
        snapshot = StateSnapshot.from_dict(data)
        logger.debug(f"Loaded state for {environment} (serial {snapshot.serial}) from {path}")
        return snapshot

    def save(self, snapshot: StateSnapshot) -> None:
        """Save snapshot atomically by writing a temp file and renaming it."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(snapshot.environment)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, 'w') as f:
            json.dump(snapshot.to_dict(), f, indent=2)
        os.replace(tmp_path, path)
        logger.info(f"Saved state for {snapshot.environment} (serial {snapshot.serial}) to {path}")

    def clear(self, environment: str) -> None:
        path = self._path(environment)
        if path.exists():
            path.unlink()
            logger.info(f"Cleared state for {environment}")


class S3StateStore(StateStore):
    """Keeps one JSON state object per environment in an S3 bucket."""

    def __init__(self, s3_client: Any, bucket: str, prefix: str = "state"):
        self.s3 = s3_client
        self.bucket = bucket
        self.prefix = prefix.strip("/")

    def _key(self, environment: str) -> str:
        return f"{self.prefix}/{environment}.json"

    def load(self, environment: str) -> StateSnapshot:
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=self._key(environment))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return StateSnapshot.empty(environment)
            raise classify_client_error(e) from e
        data = json.loads(response["Body"].read())
        return StateSnapshot.from_dict(data)

    def save(self, snapshot: StateSnapshot) -> None:
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=self._key(snapshot.environment),
                Body=json.dumps(snapshot.to_dict(), indent=2).encode("utf-8"),
                ContentType="application/json",
            )
        except ClientError as e:
            raise classify_client_error(e) from e
        logger.info(
            f"Saved state for {snapshot.environment} (serial {snapshot.serial}) "
            f"to s3://{self.bucket}/{self._key(snapshot.environment)}"
        )

    def clear(self, environment: str) -> None:
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=self._key(environment))
        except ClientError as e:
            raise classify_client_error(e) from e


def build_state_store(settings, s3_client: Optional[Any] = None) -> StateStore:
    if settings.state_backend == "s3":
        if not settings.state_bucket:
            raise ValueError("state_bucket must be set when state_backend is 's3'")
        if s3_client is None:
            from fargate_pipeline.aws.clients import get_s3_client
            s3_client = get_s3_client()
        return S3StateStore(s3_client, settings.state_bucket)
    return LocalStateStore(settings.state_dir)
