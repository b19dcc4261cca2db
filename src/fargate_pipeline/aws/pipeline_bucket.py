"""S3 artifact bucket backing the delivery pipeline."""
import logging
from typing import Any, Optional

from botocore.exceptions import ClientError

from fargate_pipeline.aws.base import ResourceHandler, changed, error_code, tags_upper
from fargate_pipeline.aws.clients import get_s3_client
from fargate_pipeline.exceptions import Conflict
from fargate_pipeline.provider import ProviderRecord
from fargate_pipeline.resources import Resource, ResourceKind

logger = logging.getLogger(__name__)


class PipelineBucketHandler(ResourceHandler):
    """Versioned bucket holding image definitions and run records.

    Spec keys: ``bucket_name``, ``region``, ``tags``.
    """

    kind = ResourceKind.PIPELINE

    def __init__(self, s3_client: Any = None):
        self.s3_client = s3_client or get_s3_client()

    @staticmethod
    def _record(bucket_name: str) -> ProviderRecord:
        return ProviderRecord(
            remote_id=bucket_name,
            attributes={'bucket_name': bucket_name, 'bucket_arn': f"arn:aws:s3:::{bucket_name}"},
        )

    def find(self, resource: Resource) -> Optional[ProviderRecord]:
        bucket_name = resource.spec['bucket_name']
        try:
            self.s3_client.head_bucket(Bucket=bucket_name)
        except ClientError as e:
            if error_code(e) in ('404', 'NoSuchBucket', 'NotFound'):
                return None
            raise
        return self._record(bucket_name)

    def _configure(self, resource: Resource) -> None:
        bucket_name = resource.spec['bucket_name']
        self.s3_client.put_bucket_versioning(
            Bucket=bucket_name, VersioningConfiguration={'Status': 'Enabled'}
        )
        self.s3_client.put_bucket_tagging(
            Bucket=bucket_name, Tagging={'TagSet': tags_upper(resource)}
        )

    def create(self, resource: Resource) -> ProviderRecord:
        bucket_name = resource.spec['bucket_name']
        region = resource.spec.get('region', 'us-east-1')
        kwargs = {'Bucket': bucket_name}
        # us-east-1 rejects an explicit location constraint
        if region != 'us-east-1':
            kwargs['CreateBucketConfiguration'] = {'LocationConstraint': region}
        self.s3_client.create_bucket(**kwargs)
        self._configure(resource)
        logger.info(f"Created artifact bucket: {bucket_name}")
        return self._record(bucket_name)

    def update(self, resource: Resource, previous: Resource) -> ProviderRecord:
        if changed(resource, previous, 'bucket_name', 'region'):
            raise Conflict("bucket name and region cannot change in place", resource_id=resource.id)
        if self.find(resource) is None:
            return self.create(resource)
        self._configure(resource)
        return self._record(resource.spec['bucket_name'])

    def delete(self, resource: Resource) -> None:
        bucket_name = resource.spec['bucket_name']
        if self.find(resource) is None:
            return
        # A versioned bucket must be emptied of every version before deletion
        paginator = self.s3_client.get_paginator('list_object_versions')
        for page in paginator.paginate(Bucket=bucket_name):
            objects = [
                {'Key': v['Key'], 'VersionId': v['VersionId']}
                for v in page.get('Versions', []) + page.get('DeleteMarkers', [])
            ]
            if objects:
                self.s3_client.delete_objects(Bucket=bucket_name, Delete={'Objects': objects})
        self.s3_client.delete_bucket(Bucket=bucket_name)
        logger.info(f"Deleted artifact bucket: {bucket_name}")
