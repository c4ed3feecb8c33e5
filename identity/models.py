"""
identity/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; record mutations shared by several components live in accounts.py.

Layer rule: no imports from outside the standard library.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

ROLE_CLIENT = "client"
ROLE_USER = "user"
ROLE_GLOBAL_ADMIN = "global"

DEFAULT_ROLES = frozenset({ROLE_CLIENT, ROLE_USER})


@dataclass
class ExternalAccount:
    """A (provider, provider-assigned id) pair proving identity via a third party.

    (provider, provider_user_id) identifies at most one User at any time. The
    email is informational only and never part of the identity.
    """

    provider: str  # "github", "google", "facebook", "live"
    provider_user_id: str
    email_address: str | None = None


@dataclass
class User:
    """An identity record.

    hashed_password and salt are None for accounts created through an external
    login only. Such an account must always keep at least one external account,
    otherwise nobody could sign in to it.

    verify_email_address_token and password_reset_token are independent,
    single-use values. Consuming one clears it together with its expiration.
    """

    full_name: str
    email_address: str | None
    id: int | None = None
    is_active: bool = True
    is_email_address_verified: bool = False
    salt: str | None = None
    hashed_password: str | None = None  # None = external-login-only account
    verify_email_address_token: str | None = None
    verify_email_address_token_expiration: datetime | None = None
    password_reset_token: str | None = None
    password_reset_token_expiration: datetime | None = None
    roles: set[str] = field(default_factory=set)
    external_accounts: list[ExternalAccount] = field(default_factory=list)  # ordered, unique by identity
    organization_ids: set[int] = field(default_factory=set)
    created_at: str | None = None


@dataclass
class Invite:
    """An outstanding invitation into an organization, consumed exactly once."""

    token: str
    email_address: str
    date_added: str | None = None


@dataclass
class Organization:
    name: str
    id: int | None = None
    invites: list[Invite] = field(default_factory=list)
    created_at: str | None = None


@dataclass
class Token:
    """An opaque bearer credential. id is the string the client presents."""

    id: str
    user_id: int
    created_at: str | None = None


@dataclass
class ProviderProfile:
    """The identity a provider asserted after an authorization-code exchange.

    email_address is None when the provider did not report a verified address;
    the linking engine then never merges by email.
    """

    provider: str
    provider_user_id: str
    full_name: str
    email_address: str | None = None
