"""Unit tests for core/config.py -- Settings validation and provider credentials."""

import inspect
import logging

import pytest
from pydantic import ValidationError

from core.config import DEFAULT_DATABASE_URL, Settings, get_settings
from identity.store import IdentityStore


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_defaults() -> None:
    s = _settings()
    assert s.bcrypt_rounds == 12
    assert (s.password_min_length, s.password_max_length) == (6, 100)
    assert s.token_expiry_policy == "strict"
    assert s.reset_checks_verify_expiration is False
    assert s.database_url.startswith("sqlite:///")


@pytest.mark.parametrize(
    "overrides",
    [
        {"password_min_length": 0},
        {"password_min_length": 20, "password_max_length": 10},
        {"verify_email_token_hours": 0},
        {"password_reset_token_hours": -1},
        {"bcrypt_rounds": 3},
        {"bcrypt_rounds": 32},
        {"token_expiry_policy": "lenient"},
    ],
)
def test_invalid_settings_rejected(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        _settings(**overrides)


def test_half_configured_provider_warns(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="identity.config"):
        _settings(facebook_client_id="fb-id")
    assert any("facebook" in r.getMessage() for r in caplog.records)


def test_legacy_policy_warns(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="identity.config"):
        s = _settings(token_expiry_policy="legacy")
    assert s.token_expiry_policy == "legacy"
    assert any("legacy" in r.getMessage() for r in caplog.records)


def test_provider_credentials() -> None:
    s = _settings(microsoft_client_id="ms-id", microsoft_client_secret="ms-secret")
    assert s.provider_credentials("live") == ("ms-id", "ms-secret")
    assert s.provider_credentials("github") == ("", "")
    assert s.provider_credentials("myspace") == ("", "")


def test_env_vars_are_read(monkeypatch) -> None:
    monkeypatch.setenv("BCRYPT_ROUNDS", "5")
    monkeypatch.setenv("TOKEN_EXPIRY_POLICY", "disabled")
    s = _settings()
    assert s.bcrypt_rounds == 5
    assert s.token_expiry_policy == "disabled"


def test_get_settings_is_cached() -> None:
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()


def test_store_and_settings_share_default_database() -> None:
    default = inspect.signature(IdentityStore.__init__).parameters["db_url"].default
    assert default == DEFAULT_DATABASE_URL == _settings().database_url
    assert DEFAULT_DATABASE_URL.endswith("identity.db")
