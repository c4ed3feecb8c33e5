"""
tests/conftest.py -- Shared fixtures for the identity core tests.

This module provides:
  - settings: Settings with a low bcrypt cost so hashing stays fast
  - store: an isolated in-memory IdentityStore per test
  - mailer: a Mailer that records what it was asked to send
  - providers: an empty ProviderRegistry; tests register StubProvider clients
  - service: an AuthService wired to all of the above
  - make_user(): helper that saves a user with an optional local password

Plain sqlite:///:memory: is enough here because every test runs on a single
thread; SQLAlchemy keeps one connection per thread for in-memory SQLite.
"""

from __future__ import annotations

from collections.abc import Callable, Generator

import pytest

from core.config import Settings
from core.errors import ExternalServiceError
from identity.mail import Mailer
from identity.models import DEFAULT_ROLES, ExternalAccount, ProviderProfile, User
from identity.oauth import ProviderClient, ProviderRegistry
from identity.passwords import generate_salt, hash_password
from identity.service import AuthService
from identity.store import IdentityStore

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingMailer(Mailer):
    def __init__(self) -> None:
        self.verify_emails: list[User] = []
        self.password_resets: list[User] = []

    def send_verify_email(self, user: User) -> None:
        self.verify_emails.append(user)

    def send_password_reset(self, user: User) -> None:
        self.password_resets.append(user)


class StubProvider(ProviderClient):
    """Returns a fixed profile (or fails) instead of calling a real provider."""

    def __init__(self, profile: ProviderProfile | None = None, label: str = "Stub") -> None:
        self.profile = profile
        self.label = label
        self.calls: list[tuple[str, str | None]] = []

    def exchange(self, code: str, redirect_uri: str | None = None) -> ProviderProfile:
        self.calls.append((code, redirect_uri))
        if self.profile is None:
            raise ExternalServiceError()
        return self.profile


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, bcrypt_rounds=4)


@pytest.fixture
def store() -> Generator[IdentityStore, None, None]:
    s = IdentityStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def providers() -> ProviderRegistry:
    return ProviderRegistry()


@pytest.fixture
def service(store, mailer, providers, settings) -> AuthService:
    return AuthService(store, mailer=mailer, providers=providers, settings=settings)


@pytest.fixture
def make_user(store) -> Callable[..., User]:
    """Save and return a user. password=None creates an external-login-only account."""

    def _make(
        email: str = "user@example.com",
        password: str | None = "secret1",
        name: str = "Test User",
        verified: bool = False,
        external: list[ExternalAccount] | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            full_name=name,
            email_address=email,
            is_active=is_active,
            is_email_address_verified=verified,
            roles=set(DEFAULT_ROLES),
            external_accounts=list(external or []),
        )
        if password is not None:
            user.salt = generate_salt(4)
            user.hashed_password = hash_password(password, user.salt)
        return store.save_user(user)

    return _make
