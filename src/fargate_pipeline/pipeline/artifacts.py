"""Artifact storage for image definitions and run records (local directory or S3)."""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from botocore.exceptions import ClientError

from fargate_pipeline.provider import classify_client_error

logger = logging.getLogger(__name__)

IMAGE_DEFINITION_FILE = "docker_image_definition.json"


class ArtifactStore(ABC):

    @abstractmethod
    def put(self, key: str, body: str, content_type: str = "application/json") -> str:
        """Store ``body`` under ``key`` and return its location."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...


class LocalArtifactStore(ArtifactStore):
    def __init__(self, directory: str = "artifacts"):
        self.directory = Path(directory)

    def put(self, key: str, body: str, content_type: str = "application/json") -> str:
        path = self.directory / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body, encoding="utf-8")
        logger.info(f"Wrote artifact {path}")
        return str(path)

    def get(self, key: str) -> Optional[str]:
        path = self.directory / key
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")


class S3ArtifactStore(ArtifactStore):
    def __init__(self, s3_client: Any, bucket: str, prefix: str = ""):
        self.s3 = s3_client
        self.bucket = bucket
        self.prefix = prefix.strip("/")

    def _key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    def put(self, key: str, body: str, content_type: str = "application/json") -> str:
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=self._key(key),
                Body=body.encode("utf-8"),
                ContentType=content_type,
            )
        except ClientError as e:
            logger.error(f"Error uploading artifact {key}: {e}")
            raise classify_client_error(e) from e
        location = f"s3://{self.bucket}/{self._key(key)}"
        logger.info(f"Wrote artifact {location}")
        return location

    def get(self, key: str) -> Optional[str]:
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=self._key(key))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise classify_client_error(e) from e
        return response["Body"].read().decode("utf-8")
