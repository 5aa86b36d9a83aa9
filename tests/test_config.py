"""Tests for core/config.py -- Settings validation.

Settings() is constructed directly (not via get_settings()) so each test sees
its own environment.
"""

import pytest
from pydantic import ValidationError

from core.config import DEFAULT_DB_URL, Settings

KEY = "x" * 32


def test_defaults(monkeypatch) -> None:
    monkeypatch.setenv("SECRET_KEY", KEY)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("DEBUG", "false")
    s = Settings(_env_file=None)
    assert s.access_token_expire_seconds == 86400
    assert s.refresh_token_expire_seconds == 604800
    assert s.max_login_attempts == 5
    assert s.self_registration_enabled is True
    assert s.restrict_self_assigned_roles is True
    assert s.database_url == DEFAULT_DB_URL


def test_default_database_is_a_file_next_to_the_project() -> None:
    assert DEFAULT_DB_URL.startswith("sqlite:///")
    assert DEFAULT_DB_URL.endswith("kmportal_identity.db")


def test_missing_key_in_production(monkeypatch) -> None:
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.setenv("DEBUG", "false")
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(_env_file=None)


def test_dev_mode_generates_key(monkeypatch) -> None:
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.setenv("DEBUG", "true")
    assert len(Settings(_env_file=None).secret_key) >= 32


def test_short_key_rejected(monkeypatch) -> None:
    monkeypatch.setenv("SECRET_KEY", "too-short")
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(_env_file=None)


@pytest.mark.parametrize(
    ("debug", "override", "expected"),
    [("true", None, True), ("false", None, False), ("false", "true", True), ("true", "false", False)],
)
def test_activation_policy(monkeypatch, debug: str, override, expected: bool) -> None:
    monkeypatch.setenv("SECRET_KEY", KEY)
    monkeypatch.setenv("DEBUG", debug)
    if override is None:
        monkeypatch.delenv("AUTO_ACTIVATE_REGISTRATIONS", raising=False)
    else:
        monkeypatch.setenv("AUTO_ACTIVATE_REGISTRATIONS", override)
    assert Settings(_env_file=None).activate_on_registration is expected
