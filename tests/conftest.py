import os

import pytest

from fargate_pipeline.aws.clients import AWSClientManager
from fargate_pipeline.settings import get_settings
from tests.consts import TEST_REGION

pytest_plugins = [
    "tests.fixtures.aws_fixtures",
    "tests.fixtures.resource_fixtures",
    "tests.fixtures.pipeline_fixtures",
]


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Point every boto3 client at fake credentials so nothing reaches real AWS."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings and the client manager are process-wide caches; rebuild them per test."""
    get_settings.cache_clear()
    AWSClientManager.reset()
    yield
    get_settings.cache_clear()
    AWSClientManager.reset()
