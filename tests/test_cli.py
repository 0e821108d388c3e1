"""Smoke tests of the command-line interface."""

import pytest
from typer.testing import CliRunner

from aws_app.cli import cli

runner = CliRunner()


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("AWS_APP_DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("AWS_APP_SCRIPT_DIRECTORY", str(tmp_path / "scripts"))


def test_schemas_create():
    result = runner.invoke(cli, ["schemas", "create", "--dialect", "sqlite"])
    assert result.exit_code == 0
    assert "CREATE TABLE instance_family" in result.output
    assert "CREATE TABLE instance_pricing" in result.output


def test_schemas_create_needs_dialect():
    result = runner.invoke(cli, ["schemas", "create"])
    assert result.exit_code == 1


def test_kinds():
    result = runner.invoke(cli, ["kinds"])
    assert result.exit_code == 0
    assert "instance-family" in result.output


def test_list_cached_kind(env):
    result = runner.invoke(cli, ["list", "instance-family"])
    assert result.exit_code == 0
    assert "no resources found" in result.output


def test_action_validation_error(env):
    result = runner.invoke(
        cli, ["action", "tag-resource", "i-1", "--tag", "Name="]
    )
    assert result.exit_code == 1
    assert "Invalid parameters" in result.output


def test_bad_key_value(env):
    result = runner.invoke(cli, ["action", "tag-resource", "i-1", "--tag", "Name"])
    assert result.exit_code != 0


def test_invalid_configuration(monkeypatch):
    monkeypatch.setenv("AWS_APP_MAX_CONCURRENCY", "0")
    result = runner.invoke(cli, ["prices", "m5"])
    assert result.exit_code == 1
