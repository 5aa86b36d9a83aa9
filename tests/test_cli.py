"""Tests for main.py -- the administration CLI.

Covers:
- create-admin prompts for the password and creates an active ROLE_ADMIN account
- mismatched password confirmation aborts
- unlock clears a lockout; unknown usernames fail
- roles lists the catalog in priority order
"""

from datetime import datetime, timezone

import pytest

import main
from auth.store import CredentialStore


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


def _answers(monkeypatch, *replies: str) -> None:
    it = iter(replies)
    monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": next(it))


def test_no_command_prints_help(capsys) -> None:
    assert main.main([]) == 0
    assert "create-admin" in capsys.readouterr().out


def test_create_admin(monkeypatch, db_url: str, capsys) -> None:
    _answers(monkeypatch, "Adm1n-password", "Adm1n-password")
    assert main.main(["--database-url", db_url, "create-admin", "root", "root@example.com"]) == 0
    assert "Created administrator root" in capsys.readouterr().out

    store = CredentialStore(db_url)
    try:
        root = store.find_by_username("root")
        assert root.is_active is True
        assert [r.name for r in store.get_roles_for(root.id)] == ["ROLE_ADMIN"]
    finally:
        store.close()


def test_create_admin_password_mismatch(monkeypatch, db_url: str, capsys) -> None:
    _answers(monkeypatch, "Adm1n-password", "something-else")
    assert main.main(["--database-url", db_url, "create-admin", "root", "root@example.com"]) == 1
    assert "do not match" in capsys.readouterr().out


def test_create_admin_invalid_input(monkeypatch, db_url: str, capsys) -> None:
    _answers(monkeypatch, "short", "short")
    assert main.main(["--database-url", db_url, "create-admin", "root", "root@example.com"]) == 1
    assert "password" in capsys.readouterr().out


def test_unlock(monkeypatch, db_url: str, capsys) -> None:
    _answers(monkeypatch, "Adm1n-password", "Adm1n-password")
    main.main(["--database-url", db_url, "create-admin", "root", "root@example.com"])

    store = CredentialStore(db_url)
    try:
        root = store.find_by_username("root")
        store.increment_failed_attempts(root.id, 1, datetime.now(timezone.utc))
        assert store.find_by_id(root.id).is_locked

        assert main.main(["--database-url", db_url, "unlock", "root"]) == 0
        refreshed = store.find_by_id(root.id)
        assert refreshed.is_locked is False
        assert refreshed.failed_login_attempts == 0
    finally:
        store.close()


def test_unlock_unknown_user(db_url: str, capsys) -> None:
    assert main.main(["--database-url", db_url, "unlock", "ghost"]) == 1
    assert "No account named 'ghost'" in capsys.readouterr().out


def test_roles(db_url: str, capsys) -> None:
    assert main.main(["--database-url", db_url, "roles"]) == 0
    lines = [line for line in capsys.readouterr().out.splitlines() if "ROLE_" in line]
    assert len(lines) == 12
    assert "ROLE_ADMIN" in lines[0]
    assert "ROLE_EMPLOYEE" in lines[-1]
