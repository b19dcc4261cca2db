"""Build and push stages through the Docker Engine API."""
import base64
import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import docker
from botocore.exceptions import ClientError

from fargate_pipeline.exceptions import ImageBuildError, ImagePushError
from fargate_pipeline.pipeline.models import ImageArtifact, SourceSnapshot
from fargate_pipeline.provider import classify_client_error

logger = logging.getLogger(__name__)


def registry_credentials(ecr_client: Any) -> Dict[str, str]:
    """Docker login credentials from an ECR authorization token."""
    try:
        response = ecr_client.get_authorization_token()
    except ClientError as e:
        raise ImagePushError(f"cannot obtain registry credentials: {classify_client_error(e)}") from e
    data = response['authorizationData'][0]
    username, _, password = base64.b64decode(data['authorizationToken']).decode('utf-8').partition(':')
    return {
        'username': username,
        'password': password,
        'registry': data['proxyEndpoint'],
    }


class DockerImageBuilder:
    """Builds an image from a source snapshot and pushes its tags to ECR."""

    def __init__(self, ecr_client: Any = None, docker_client: Optional[Any] = None):
        if ecr_client is None:
            from fargate_pipeline.aws.clients import get_ecr_client
            ecr_client = get_ecr_client()
        self.ecr_client = ecr_client
        self._docker = docker_client

    @property
    def docker(self):
        if self._docker is None:
            self._docker = docker.from_env()
        return self._docker

    def build(self, source: SourceSnapshot, repository_uri: str, tags: Iterable[str],
              dockerfile: str = "Dockerfile", build_context: str = ".") -> ImageArtifact:
        """Build ``dockerfile`` with ``build_context`` (both relative to the source root)."""
        tags = tuple(dict.fromkeys(tags))
        context = os.path.join(source.path, build_context)
        dockerfile_in_context = os.path.relpath(os.path.join(source.path, dockerfile), context)
        logger.info(f"Building {repository_uri} from {context} with tags {', '.join(tags)}")

        try:
            image, logs = self.docker.images.build(
                path=context,
                dockerfile=dockerfile_in_context,
                tag=f"{repository_uri}:{tags[0]}",
                rm=True,
                labels={'org.opencontainers.image.revision': source.revision},
            )
        except docker.errors.BuildError as e:
            lines = _log_lines(e.build_log)
            logger.error(f"Image build failed: {e.msg}")
            raise ImageBuildError(str(e.msg), log_lines=lines) from e
        except docker.errors.APIError as e:
            logger.error(f"Docker API error during build: {e}")
            raise ImageBuildError(str(e)) from e

        for line in _log_lines(logs):
            logger.debug(line)
        for tag in tags[1:]:
            image.tag(repository_uri, tag=tag)
        return ImageArtifact(repository_uri=repository_uri, tags=tags, image_id=image.id)

    def push(self, artifact: ImageArtifact) -> List[str]:
        """Push every tag of ``artifact``; returns the pushed image URIs."""
        credentials = registry_credentials(self.ecr_client)
        auth_config = {'username': credentials['username'], 'password': credentials['password']}
        pushed = []
        for tag in artifact.tags:
            logger.info(f"Pushing {artifact.uri(tag)}")
            try:
                for chunk in self.docker.images.push(artifact.repository_uri, tag=tag, stream=True,
                                                     decode=True, auth_config=auth_config):
                    if 'error' in chunk:
                        raise ImagePushError(f"push of {artifact.uri(tag)} failed: {chunk['error']}")
            except docker.errors.APIError as e:
                logger.error(f"Docker API error during push: {e}")
                raise ImagePushError(f"push of {artifact.uri(tag)} failed: {e}") from e
            pushed.append(artifact.uri(tag))
        return pushed


def _log_lines(logs: Iterable[Dict[str, Any]]) -> List[str]:
    lines = []
    for chunk in logs or []:
        text = chunk.get('stream') or chunk.get('error') or ''
        text = text.rstrip()
        if text:
            lines.append(text)
    return lines
