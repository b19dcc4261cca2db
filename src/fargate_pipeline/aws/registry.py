"""ECR repository handler."""
import logging
from typing import Any, Optional

from botocore.exceptions import ClientError

from fargate_pipeline.aws.base import ResourceHandler, error_code, tags_upper
from fargate_pipeline.aws.clients import get_ecr_client
from fargate_pipeline.exceptions import Conflict
from fargate_pipeline.provider import ProviderRecord
from fargate_pipeline.resources import Resource, ResourceKind

logger = logging.getLogger(__name__)


class RegistryHandler(ResourceHandler):
    """Spec keys: ``repository_name``, ``image_tag_mutability``, ``scan_on_push``, ``tags``."""

    kind = ResourceKind.REGISTRY

    def __init__(self, ecr_client: Any = None):
        self.ecr_client = ecr_client or get_ecr_client()

    @staticmethod
    def _repository_name(resource: Resource) -> str:
        return resource.spec.get('repository_name', resource.name)

    @staticmethod
    def _to_record(repository: dict) -> ProviderRecord:
        return ProviderRecord(
            remote_id=repository['repositoryName'],
            attributes={
                'repository_name': repository['repositoryName'],
                'repository_uri': repository['repositoryUri'],
                'repository_arn': repository['repositoryArn'],
            },
        )

    def find(self, resource: Resource) -> Optional[ProviderRecord]:
        try:
            response = self.ecr_client.describe_repositories(
                repositoryNames=[self._repository_name(resource)]
            )
        except ClientError as e:
            if error_code(e) == 'RepositoryNotFoundException':
                return None
            raise
        return self._to_record(response['repositories'][0])

    def create(self, resource: Resource) -> ProviderRecord:
        name = self._repository_name(resource)
        response = self.ecr_client.create_repository(
            repositoryName=name,
            imageTagMutability=resource.spec.get('image_tag_mutability', 'MUTABLE'),
            imageScanningConfiguration={'scanOnPush': bool(resource.spec.get('scan_on_push', False))},
            tags=tags_upper(resource),
        )
        logger.info(f"Created ECR repository: {name}")
        return self._to_record(response['repository'])

    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        name = self._repository_name(resource)
        if name != self._repository_name(previous):
            raise Conflict("repository name cannot change in place", resource_id=resource.id)
        self.ecr_client.put_image_tag_mutability(
            repositoryName=name,
            imageTagMutability=resource.spec.get('image_tag_mutability', 'MUTABLE'),
        )
        self.ecr_client.put_image_scanning_configuration(
            repositoryName=name,
            imageScanningConfiguration={'scanOnPush': bool(resource.spec.get('scan_on_push', False))},
        )
        record = self.find(resource)
        self.ecr_client.tag_resource(
            resourceArn=record.attributes['repository_arn'], tags=tags_upper(resource)
        )
        logger.info(f"Updated ECR repository: {name}")
        return record

    def delete(self, resource: Resource) -> None:
        name = self._repository_name(resource)
        try:
            # force removes any images still in the repository
            self.ecr_client.delete_repository(repositoryName=name, force=True)
        except ClientError as e:
            if error_code(e) == 'RepositoryNotFoundException':
                return
            raise
        logger.info(f"Deleted ECR repository: {name}")
