import json

import pytest
from click.testing import CliRunner

from fargate_pipeline.cli import cli


@pytest.fixture
def local_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DEPLOYMENT_MODE", "local-dev")
    monkeypatch.setenv("STATE_BACKEND", "local")
    monkeypatch.setenv("STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("OWNER", "platform")
    return tmp_path / "state"


@pytest.fixture
def runner():
    return CliRunner()


def test_show_config(runner, local_env):
    result = runner.invoke(cli, ["show-config"])

    assert result.exit_code == 0
    assert "Deployment Mode: local-dev" in result.output
    assert "Owner: platform" in result.output


def test_plan_against_empty_state(runner, local_env):
    result = runner.invoke(cli, ["plan"])

    assert result.exit_code == 0
    assert "+ network/main" in result.output
    assert "7 to create, 0 to update, 0 to delete" in result.output


def test_apply_then_plan_is_empty(runner, local_env):
    applied = runner.invoke(cli, ["apply", "--yes"])

    assert applied.exit_code == 0
    assert "Applied 7 operation(s)" in applied.output
    state = json.loads((local_env / "test.json").read_text())
    assert len(state["resources"]) == 7

    planned = runner.invoke(cli, ["plan"])
    assert "No changes" in planned.output


def test_apply_asks_for_confirmation(runner, local_env):
    result = runner.invoke(cli, ["apply"], input="n\n")

    assert result.exit_code == 1
    assert not (local_env / "test.json").exists()


def test_state_status_lists_resources(runner, local_env):
    runner.invoke(cli, ["apply", "--yes"])

    result = runner.invoke(cli, ["state", "status"])

    assert result.exit_code == 0
    assert "service/backend" in result.output
    assert "active" in result.output


def test_destroy_removes_recorded_resources(runner, local_env):
    runner.invoke(cli, ["apply", "--yes"])

    result = runner.invoke(cli, ["destroy", "--yes"])

    assert result.exit_code == 0
    assert "- service/backend" in result.output
    status = runner.invoke(cli, ["state", "status"])
    assert "No resources recorded" in status.output


def test_state_clear(runner, local_env):
    runner.invoke(cli, ["apply", "--yes"])

    result = runner.invoke(cli, ["state", "clear", "--yes"])

    assert result.exit_code == 0
    assert "No resources recorded" in runner.invoke(cli, ["state", "status"]).output
