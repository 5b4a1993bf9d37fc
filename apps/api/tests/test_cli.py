"""Tests for the CLI."""

import json
import logging

import pytest
from click.testing import CliRunner

from medchain_api.cli import cli
from medchain_api.db.session import get_session_factory
from medchain_api.settings import get_settings


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point the CLI at a fresh SQLite ledger."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("LOG_FORMAT", "text")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    root_handlers, root_level = logging.root.handlers[:], logging.root.level
    get_settings.cache_clear()
    get_session_factory.cache_clear()
    yield CliRunner()
    get_session_factory().kw["bind"].dispose()
    get_settings.cache_clear()
    get_session_factory.cache_clear()
    logging.root.handlers[:] = root_handlers
    logging.root.setLevel(root_level)


def test_init_db_and_bootstrap_admin(cli_env):
    """Test table creation and first-admin registration."""
    result = cli_env.invoke(cli, ["init-db"])
    assert result.exit_code == 0, result.output

    result = cli_env.invoke(cli, ["bootstrap-admin", "--user-id", "admin1", "--name", "Org1 Admin"])
    assert result.exit_code == 0, result.output
    assert "admin1" in result.output

    result = cli_env.invoke(cli, ["bootstrap-admin", "--user-id", "admin2", "--name", "Second"])
    assert result.exit_code == 1
    assert "AUTHZ" in result.output


def test_history_and_verify_chain(cli_env):
    """Test history output and chain verification."""
    cli_env.invoke(cli, ["init-db"])
    cli_env.invoke(cli, ["bootstrap-admin", "--user-id", "admin1", "--name", "Org1 Admin"])

    result = cli_env.invoke(cli, ["history", "admin1"])
    assert result.exit_code == 0, result.output
    entries = json.loads(result.stdout)
    assert [e["version"] for e in entries] == [1]
    assert json.loads(entries[0]["value"])["role"] == "admin"

    result = cli_env.invoke(cli, ["verify-chain", "admin1"])
    assert result.exit_code == 0, result.output

    result = cli_env.invoke(cli, ["history", "missing"])
    assert result.exit_code == 1


def test_audit_command(cli_env):
    """Test audit timeline output."""
    cli_env.invoke(cli, ["init-db"])
    cli_env.invoke(cli, ["bootstrap-admin", "--user-id", "admin1", "--name", "Org1 Admin"])

    result = cli_env.invoke(cli, ["audit", "admin1", "--limit", "5"])
    assert result.exit_code == 0, result.output
    events = json.loads(result.stdout)
    assert [e["kind"] for e in events] == ["Registered"]


def test_cli_refuses_unsafe_production_settings(cli_env, monkeypatch):
    """Test that commands do not run with unsafe production settings."""
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.delenv("BLOB_ENCRYPTION_KEY", raising=False)
    get_settings.cache_clear()

    result = cli_env.invoke(cli, ["init-db"])
    assert result.exit_code == 1
    assert "BLOB_ENCRYPTION_KEY" in result.output
