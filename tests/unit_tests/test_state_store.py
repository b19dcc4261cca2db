import json

import pytest

from fargate_pipeline.exceptions import NotFound
from fargate_pipeline.resources import Ref, Resource, ResourceId, ResourceKind
from fargate_pipeline.settings import Settings
from fargate_pipeline.snapshot import StateSnapshot
from fargate_pipeline.state_store import LocalStateStore, S3StateStore, build_state_store
from tests.consts import TEST_ENVIRONMENT, TEST_STATE_BUCKET


def populated_snapshot():
    network = Resource.declare(ResourceKind.NETWORK, "main", {"cidr": "10.0.0.0/16"}).with_record(
        "vpc-123", {"vpc_id": "vpc-123", "subnet_ids": ["subnet-1", "subnet-2"]}
    )
    cluster = Resource.declare(
        ResourceKind.CLUSTER, "main", {"vpc": Ref(ResourceId(ResourceKind.NETWORK, "main"), "vpc_id")},
    ).with_record("arn:cluster", {"cluster_name": "c"})
    return StateSnapshot.empty(TEST_ENVIRONMENT).with_resource(network).with_resource(cluster)


def test_local_store_returns_empty_snapshot_when_nothing_saved(tmp_path):
    store = LocalStateStore(str(tmp_path / "state"))

    snapshot = store.load(TEST_ENVIRONMENT)

    assert snapshot == StateSnapshot.empty(TEST_ENVIRONMENT)


def test_local_store_saves_and_loads(tmp_path):
    store = LocalStateStore(str(tmp_path / "state"))
    snapshot = populated_snapshot()

    store.save(snapshot)

    assert store.load(TEST_ENVIRONMENT) == snapshot
    data = json.loads((tmp_path / "state" / f"{TEST_ENVIRONMENT}.json").read_text())
    assert data["serial"] == 2
    assert data["resources"][1]["spec"]["vpc"] == {"$ref": "network/main", "attribute": "vpc_id"}
    assert not list((tmp_path / "state").glob("*.tmp"))


def test_local_store_clear(tmp_path):
    store = LocalStateStore(str(tmp_path))
    store.save(populated_snapshot())

    store.clear(TEST_ENVIRONMENT)

    assert len(store.load(TEST_ENVIRONMENT)) == 0


def test_s3_store_round_trip(s3_client):
    s3_client.create_bucket(Bucket=TEST_STATE_BUCKET)
    store = S3StateStore(s3_client, TEST_STATE_BUCKET)
    snapshot = populated_snapshot()

    assert len(store.load(TEST_ENVIRONMENT)) == 0
    store.save(snapshot)

    assert store.load(TEST_ENVIRONMENT) == snapshot
    keys = [o["Key"] for o in s3_client.list_objects_v2(Bucket=TEST_STATE_BUCKET)["Contents"]]
    assert keys == [f"state/{TEST_ENVIRONMENT}.json"]


def test_s3_store_missing_bucket_is_classified(s3_client):
    store = S3StateStore(s3_client, "does-not-exist")

    with pytest.raises(NotFound):
        store.save(populated_snapshot())


def test_build_state_store_picks_backend(tmp_path, s3_client):
    local = build_state_store(Settings(state_backend="local", state_dir=str(tmp_path)))
    remote = build_state_store(Settings(state_backend="s3", state_bucket=TEST_STATE_BUCKET), s3_client)

    assert isinstance(local, LocalStateStore)
    assert isinstance(remote, S3StateStore)
    with pytest.raises(ValueError):
        build_state_store(Settings(state_backend="s3"))
