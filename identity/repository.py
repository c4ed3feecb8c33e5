"""
identity/repository.py -- Persistence contract consumed by the identity core.

The core never assumes database-enforced uniqueness: every invariant that
spans records (one verified email per account, one owner per external
account) is maintained by the code that calls these methods.

Contract for every implementation:
  - Lookups return None when nothing matches. They never raise for "not found".
  - Any storage failure raises core.errors.PersistenceError.
  - save_* is create-or-update, atomic per record, last write wins. There are
    no cross-record transactions.
  - Email lookups are case-insensitive.

identity/store.py provides the SQLAlchemy implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from identity.models import Invite, Organization, Token, User


class UserRepository(ABC):
    @abstractmethod
    def get_user_by_id(self, user_id: int) -> User | None: ...

    @abstractmethod
    def get_user_by_email(self, email_address: str) -> User | None: ...

    @abstractmethod
    def get_user_by_external_account(self, provider: str, provider_user_id: str) -> User | None: ...

    @abstractmethod
    def get_user_by_verify_token(self, token: str) -> User | None: ...

    @abstractmethod
    def get_user_by_reset_token(self, token: str) -> User | None: ...

    @abstractmethod
    def count_users(self) -> int: ...

    @abstractmethod
    def save_user(self, user: User) -> User:
        """Insert (id is None) or update the user and return it with its id set."""

    @abstractmethod
    def reserve_first_user(self) -> bool:
        """Atomically claim the first-user slot.

        Returns True for exactly one caller per outstanding claim, and only
        while no user exists yet.
        """

    @abstractmethod
    def release_first_user(self) -> None:
        """Drop a first-user claim whose account was never saved."""


class OrganizationRepository(ABC):
    @abstractmethod
    def get_organization_by_id(self, organization_id: int) -> Organization | None: ...

    @abstractmethod
    def get_organization_by_invite_token(self, token: str) -> tuple[Organization, Invite] | None:
        """Return the organization holding the invite together with the invite itself."""

    @abstractmethod
    def save_organization(self, organization: Organization) -> Organization: ...


class TokenRepository(ABC):
    @abstractmethod
    def save_token(self, token: Token) -> Token: ...

    @abstractmethod
    def get_token(self, token_id: str) -> Token | None: ...


class IdentityRepository(UserRepository, OrganizationRepository, TokenRepository):
    """Everything the auth facade needs from persistence."""
