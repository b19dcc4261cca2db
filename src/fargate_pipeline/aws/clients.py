"""Cached boto3 clients shared by the AWS handlers, stores and pipeline stages."""
import logging
import os
from typing import Any, Dict, Optional

import boto3

from fargate_pipeline.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class AWSClientManager:
    """Process-wide client cache, built from the settings on first use.

    ``aws-prod`` honours ``AWS_PROFILE`` (SSO sessions); ``aws-mock`` points
    every client at ``AWS_ENDPOINT_URL`` so a moto server can stand in for AWS.
    """
    _instance = None

    def __new__(cls, settings: Optional[Settings] = None):
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._configure(settings or get_settings())
            cls._instance = instance
        return cls._instance

    def _configure(self, settings: Settings):
        self.settings = settings
        self.region = settings.aws_region
        self.mode = settings.deployment_mode
        self.endpoint_url = settings.aws_endpoint_url if settings.deployment_mode == 'aws-mock' else None
        self._clients: Dict[str, Any] = {}
        self._session = None

        profile = os.environ.get('AWS_PROFILE')
        if profile and self.mode == 'aws-prod':
            self._session = boto3.Session(profile_name=profile)
        logger.info(
            f"AWS clients for {self.mode} in {self.region}"
            + (f" via {self.endpoint_url}" if self.endpoint_url else "")
            + (f" (profile {profile})" if self._session else "")
        )

    def _client_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {'region_name': self.region}
        if self._session is None:
            # Explicit keys from settings win over the default credential chain
            if self.settings.aws_access_key_id:
                kwargs['aws_access_key_id'] = self.settings.aws_access_key_id
            if self.settings.aws_secret_access_key:
                kwargs['aws_secret_access_key'] = self.settings.aws_secret_access_key
        if self.endpoint_url:
            kwargs['endpoint_url'] = self.endpoint_url
        return kwargs

    def get_client(self, service_name: str) -> Any:
        client = self._clients.get(service_name)
        if client is not None:
            return client
        factory = self._session.client if self._session is not None else boto3.client
        try:
            client = factory(service_name, **self._client_kwargs())
        except Exception as e:
            logger.error(f"Could not create {service_name} client: {e}")
            raise
        self._clients[service_name] = client
        logger.debug(f"Created {service_name} client")
        return client

    @classmethod
    def reset(cls):
        """Forget the cached manager so the next client re-reads settings."""
        cls._instance = None


def get_ec2_client():
    return AWSClientManager().get_client('ec2')


def get_ecr_client():
    return AWSClientManager().get_client('ecr')


def get_ecs_client():
    return AWSClientManager().get_client('ecs')


def get_elbv2_client():
    return AWSClientManager().get_client('elbv2')


def get_route53_client():
    return AWSClientManager().get_client('route53')


def get_s3_client():
    return AWSClientManager().get_client('s3')


def get_secretsmanager_client():
    return AWSClientManager().get_client('secretsmanager')
