"""
tests/test_cli.py -- Tests for the management CLI in main.py.

Each test points the CLI at a throwaway SQLite file and drives main(argv)
directly, asserting on exit codes, printed output and the resulting records.
"""

from __future__ import annotations

import re
from types import SimpleNamespace

import pytest

import main as cli
from auth.store import UserStore


@pytest.fixture
def db_url(tmp_path, monkeypatch) -> str:
    url = f"sqlite:///{tmp_path / 'cli_users.db'}"
    monkeypatch.setattr(cli, "get_settings", lambda: SimpleNamespace(user_db_url=url))
    return url


def _stored(db_url: str, username: str):
    store = UserStore(db_url)
    try:
        return store.get_by_username(username)
    finally:
        store.close()


def test_create_admin(db_url, capsys) -> None:
    assert cli.main(["create-user", "root", "--admin", "--password", "correct horse"]) == 0
    user = _stored(db_url, "root")
    assert (user.is_admin, user.role_id) == (True, None)
    assert "Created user" in capsys.readouterr().out


def test_create_with_unknown_role(db_url, capsys) -> None:
    assert cli.main(["create-user", "bob", "--role-id", "42", "--password", "correct horse"]) == 1
    assert "Role 42 does not exist" in capsys.readouterr().out
    assert _stored(db_url, "bob") is None


def test_create_rejects_short_password(db_url) -> None:
    assert cli.main(["create-user", "bob", "--password", "short"]) == 1


def test_duplicate_user(db_url, capsys) -> None:
    cli.main(["create-user", "bob", "--password", "correct horse"])
    assert cli.main(["create-user", "bob", "--password", "correct horse"]) == 1
    assert "already exists" in capsys.readouterr().out


def test_set_identity_transitions(db_url) -> None:
    cli.main(["create-user", "bob", "--role-id", "4", "--password", "correct horse"])

    assert cli.main(["set-identity", "bob", "--admin"]) == 0
    user = _stored(db_url, "bob")
    assert (user.is_admin, user.role_id) == (True, None)

    assert cli.main(["set-identity", "bob", "--role-id", "2"]) == 0
    user = _stored(db_url, "bob")
    assert (user.is_admin, user.role_id) == (False, 2)

    assert cli.main(["set-identity", "bob", "--clear-role"]) == 0
    user = _stored(db_url, "bob")
    assert (user.is_admin, user.role_id) == (False, None)


def test_set_identity_needs_a_change(db_url, capsys) -> None:
    cli.main(["create-user", "bob", "--password", "correct horse"])
    assert cli.main(["set-identity", "bob"]) == 1
    assert "Nothing to change" in capsys.readouterr().out


def test_roles_lists_counts(db_url, capsys) -> None:
    cli.main(["create-user", "root", "--admin", "--password", "correct horse"])
    cli.main(["create-user", "bob", "--role-id", "4", "--password", "correct horse"])
    capsys.readouterr()

    assert cli.main(["roles"]) == 0
    counts = {}
    for line in capsys.readouterr().out.splitlines():
        row = re.match(r"\s*(\d+)\s+(.+?)\s+(\d+)\s{2}", line)
        if row:
            counts[row.group(2)] = int(row.group(3))
    assert counts["Administrator"] == 1
    assert counts["Read Only"] == 1
    assert counts["Asset Manager"] == 0


def test_check_explains_decision(db_url, capsys) -> None:
    cli.main(["create-user", "bob", "--role-id", "4", "--password", "correct horse"])
    capsys.readouterr()

    assert cli.main(["check", "bob", "assets", "view"]) == 0
    assert "ALLOW" in capsys.readouterr().out

    assert cli.main(["check", "bob", "assets", "edit"]) == 2
    out = capsys.readouterr().out
    assert "DENY" in out
    assert "edit assets" in out


def test_check_unknown_user(db_url, capsys) -> None:
    assert cli.main(["check", "ghost", "assets", "view"]) == 1
    assert "No user named 'ghost'" in capsys.readouterr().out


def test_no_command_prints_help(db_url, capsys) -> None:
    assert cli.main([]) == 1
    assert "usage" in capsys.readouterr().out.lower()
