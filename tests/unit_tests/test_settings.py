import pytest
from pydantic import ValidationError

from fargate_pipeline.settings import Settings, get_settings


def test_defaults():
    settings = Settings()

    assert settings.branch == "master"
    assert settings.rollout_poll_attempts == 10
    assert settings.rollout_poll_interval == 30.0
    assert settings.cluster_name == "exanubes-cluster"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("BRANCH", "main")
    monkeypatch.setenv("APP_NAME", "Shop Front")
    monkeypatch.setenv("AWS_ACCOUNT_ID", "111122223333")

    settings = get_settings()

    assert settings.branch == "main"
    assert settings.resource_prefix == "shop-front"
    assert settings.repository_uri == "111122223333.dkr.ecr.us-east-1.amazonaws.com/backend"
    assert get_settings() is settings


def test_invalid_deployment_mode():
    with pytest.raises(ValidationError):
        Settings(deployment_mode="staging")


def test_invalid_state_backend():
    with pytest.raises(ValidationError):
        Settings(state_backend="dynamodb")


def test_settings_are_frozen():
    settings = Settings()

    with pytest.raises(ValidationError):
        settings.branch = "main"
