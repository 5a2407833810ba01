"""Tests for main.py -- operator CLI against a temporary SQLite file."""

import json

import pytest

from auth.store import AccountStore
from main import main


@pytest.fixture
def cli_settings(settings_factory, tmp_path):
    return settings_factory(database_url=f"sqlite:///{tmp_path / 'cli.db'}")


def test_create_admin_then_stats(cli_settings, capsys) -> None:
    rc = main(["create-admin", "--email", "Root@Example.com", "--password", "R00t!pass"], settings=cli_settings)
    assert rc == 0
    assert "root@example.com" in capsys.readouterr().out

    assert main(["stats"], settings=cli_settings) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["total"] == 1
    assert stats["administrators"] == 1
    assert stats["active"] == 1


def test_create_admin_weak_password_fails(cli_settings, capsys) -> None:
    rc = main(["create-admin", "--email", "root@example.com", "--password", "weak"], settings=cli_settings)
    assert rc == 1
    assert "validation failed" in capsys.readouterr().err.lower()


def test_create_admin_twice_conflicts(cli_settings, capsys) -> None:
    args = ["create-admin", "--email", "root@example.com", "--password", "R00t!pass"]
    assert main(args, settings=cli_settings) == 0
    assert main(args, settings=cli_settings) == 1
    assert "already exists" in capsys.readouterr().err


def test_revoke_sessions(cli_settings, capsys) -> None:
    main(["create-admin", "--email", "root@example.com", "--password", "R00t!pass"], settings=cli_settings)
    rc = main(["revoke-sessions", "--email", "root@example.com"], settings=cli_settings)
    assert rc == 0
    assert "Revoked 0 session(s)" in capsys.readouterr().out

    store = AccountStore(cli_settings.database_url)
    try:
        actions = [e.action for e in store.list_audit_entries()]
    finally:
        store.close()
    assert "SESSIONS_REVOKED" in actions
    assert "ADMIN_BOOTSTRAPPED" in actions


def test_revoke_sessions_unknown_email(cli_settings) -> None:
    assert main(["revoke-sessions", "--email", "ghost@example.com"], settings=cli_settings) == 1


def test_no_command_prints_help(cli_settings) -> None:
    assert main([], settings=cli_settings) == 2
