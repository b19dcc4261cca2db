import pytest

from fargate_pipeline.aws.provider import AwsProvider
from fargate_pipeline.aws.registry import RegistryHandler
from fargate_pipeline.exceptions import Conflict, NotFound
from fargate_pipeline.resources import Resource, ResourceKind
from tests.consts import TEST_REPOSITORY


def registry(**overrides):
    spec = {"repository_name": TEST_REPOSITORY, "image_tag_mutability": "MUTABLE", "scan_on_push": False}
    spec.update(overrides)
    return Resource.declare(ResourceKind.REGISTRY, "backend", spec)


def test_create_and_find(ecr_client):
    handler = RegistryHandler(ecr_client)

    record = handler.create(registry())

    assert record.remote_id == TEST_REPOSITORY
    assert record.attributes["repository_uri"].endswith(f"/{TEST_REPOSITORY}")
    assert handler.find(registry()) == record


def test_provider_create_is_idempotent(ecr_client):
    provider = AwsProvider([RegistryHandler(ecr_client)])

    provider.create(registry())
    provider.create(registry())

    assert len(ecr_client.describe_repositories()["repositories"]) == 1


def test_update_changes_repository_settings(ecr_client):
    handler = RegistryHandler(ecr_client)
    handler.create(registry())

    handler.update(registry(image_tag_mutability="IMMUTABLE", scan_on_push=True), registry())

    repo = ecr_client.describe_repositories(repositoryNames=[TEST_REPOSITORY])["repositories"][0]
    assert repo["imageTagMutability"] == "IMMUTABLE"
    assert repo["imageScanningConfiguration"]["scanOnPush"] is True



def test_renaming_repository_is_a_conflict(ecr_client):
    handler = RegistryHandler(ecr_client)
    handler.create(registry())

    with pytest.raises(Conflict):
        handler.update(registry(repository_name="renamed"), registry())

    assert [r["repositoryName"] for r in ecr_client.describe_repositories()["repositories"]] == [TEST_REPOSITORY]

def test_delete_removes_repository(ecr_client):
    provider = AwsProvider([RegistryHandler(ecr_client)])
    provider.create(registry())

    provider.delete(registry())
    provider.delete(registry())

    with pytest.raises(NotFound):
        provider.read(registry())
