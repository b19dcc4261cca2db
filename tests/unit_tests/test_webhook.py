import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from fargate_pipeline.settings import Settings
from fargate_pipeline.webhook import create_app, verify_signature
from tests.consts import TEST_REVISION, TEST_WEBHOOK_SECRET


class StubDispatcher:
    def __init__(self, branches=("main",)):
        self.branches = set(branches)
        self.events = []
        self.closed = False

    def submit(self, event):
        if event.branch not in self.branches:
            return False
        self.events.append(event)
        return True

    def status(self):
        return {"main": {"queued": len(self.events), "active": False, "revision": None}}

    async def close(self):
        self.closed = True


def push_body(ref="refs/heads/main", after=TEST_REVISION, deleted=False, repository="octo/app"):
    return json.dumps({
        "ref": ref,
        "after": after,
        "deleted": deleted,
        "repository": {"full_name": repository},
    }).encode("utf-8")


def webhook_settings():
    return Settings(branch="main", deployment_mode="local-dev", repository_owner="octo", repository_name="app")


def sign(body, secret=TEST_WEBHOOK_SECRET):
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


@pytest.fixture
def dispatcher():
    return StubDispatcher()


@pytest.fixture
def client(dispatcher):
    app = create_app(webhook_settings(), dispatcher=dispatcher,
                     webhook_secret=TEST_WEBHOOK_SECRET)
    with TestClient(app) as test_client:
        yield test_client
    assert dispatcher.closed


def post(client, body, event="push", signature=None):
    headers = {"X-GitHub-Event": event, "X-Hub-Signature-256": signature or sign(body),
               "Content-Type": "application/json"}
    return client.post("/webhook", content=body, headers=headers)


def test_verify_signature():
    body = b'{"ref": "refs/heads/main"}'

    assert verify_signature(TEST_WEBHOOK_SECRET, body, sign(body))
    assert not verify_signature(TEST_WEBHOOK_SECRET, body, sign(body, secret="other"))
    assert not verify_signature(TEST_WEBHOOK_SECRET, body, None)
    assert not verify_signature(TEST_WEBHOOK_SECRET, body, "sha1=abc")


def test_push_to_tracked_branch_is_accepted(client, dispatcher):
    response = post(client, push_body())

    assert response.status_code == 202
    assert response.json() == {"accepted": True, "branch": "main", "revision": TEST_REVISION}
    event = dispatcher.events[0]
    assert (event.branch, event.revision, event.repository) == ("main", TEST_REVISION, "octo/app")


def test_invalid_signature_is_rejected(client, dispatcher):
    response = post(client, push_body(), signature="sha256=" + "0" * 64)

    assert response.status_code == 401
    assert dispatcher.events == []


def test_ping_is_answered(client):
    body = b'{"zen": "Keep it logically awesome."}'

    response = post(client, body, event="ping")

    assert response.json() == {"status": "pong"}


def test_other_events_are_ignored(client, dispatcher):
    body = b'{"action": "opened"}'

    response = post(client, body, event="pull_request")

    assert response.status_code == 200
    assert response.json()["accepted"] is False
    assert dispatcher.events == []


def test_untracked_branch_is_not_queued(client, dispatcher):
    response = post(client, push_body(ref="refs/heads/feature/x"))

    assert response.status_code == 200
    assert response.json()["accepted"] is False
    assert dispatcher.events == []



def test_push_from_another_repository_is_ignored(client, dispatcher):
    response = post(client, push_body(repository="someone/fork"))

    assert response.status_code == 200
    assert response.json()["accepted"] is False
    assert dispatcher.events == []


def test_repository_match_ignores_case(client, dispatcher):
    response = post(client, push_body(repository="Octo/App"))

    assert response.status_code == 202
    assert dispatcher.events[0].repository == "Octo/App"

@pytest.mark.parametrize("body", [
    push_body(ref="refs/tags/v1.0.0"),
    push_body(deleted=True),
    push_body(after="0" * 40),
])
def test_tags_and_branch_deletions_do_not_trigger(client, dispatcher, body):
    response = post(client, body)

    assert response.json()["accepted"] is False
    assert dispatcher.events == []


def test_invalid_payload(client):
    response = post(client, b'{"after": "abc"}')

    assert response.status_code == 422


def test_unsigned_requests_accepted_without_secret(dispatcher):
    app = create_app(webhook_settings(), dispatcher=dispatcher)

    with TestClient(app) as client:
        response = client.post("/webhook", content=push_body(), headers={"X-GitHub-Event": "push"})

    assert response.status_code == 202


def test_health_reports_branch_queues(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["deployment_mode"] == "local-dev"
    assert body["branch"] == "main"
    assert body["branches"]["main"]["queued"] == 0
