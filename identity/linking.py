"""
identity/linking.py -- Reconcile an external identity with local accounts.

Given the identity a provider asserted and, optionally, the user who is
already signed in, AccountLinker.link() returns the single user that owns the
external account afterwards and saves every record it changed.

Resolution order:
  Signed in:
    1. The external account belongs to the signed-in user -> nothing to do.
    2. It belongs to someone else -> detach it from them first. This fails if
       it is their only way to sign in.
    3. Attach it to the signed-in user.
  Not signed in:
    1. The external account is already linked -> sign in as its owner,
       marking the email verified on the way.
    2. An account exists for the provider's email -> that account absorbs the
       external identity instead of a duplicate being created.
    3. Otherwise create a new account (first-user elevation applies).
    In cases 2 and 3 the email is marked verified and the account attached.

Post-condition: exactly one user owns (provider, provider_user_id), and it is
the one returned.
"""

from __future__ import annotations

import logging

from core.errors import PersistenceError
from identity.accounts import add_external_account, mark_email_verified, remove_external_account
from identity.bootstrap import FirstUserGate
from identity.models import DEFAULT_ROLES, ProviderProfile, User
from identity.repository import UserRepository

logger = logging.getLogger("identity.linking")


class AccountLinker:
    def __init__(self, store: UserRepository, first_user_gate: FirstUserGate) -> None:
        self._store = store
        self._gate = first_user_gate

    def link(self, profile: ProviderProfile, session_user: User | None = None) -> User:
        """Resolve profile to one authoritative user and persist the result.

        Raises:
            ConflictError: the external account is another user's sole credential.
            PersistenceError: a read or write failed.
        """
        owner = self._store.get_user_by_external_account(profile.provider, profile.provider_user_id)

        if session_user is not None:
            return self._link_to_session_user(profile, session_user, owner)

        if owner is not None:
            if not owner.is_email_address_verified:
                mark_email_verified(owner)
                self._store.save_user(owner)
            return owner

        granted_admin = False
        user = self._store.get_user_by_email(profile.email_address) if profile.email_address else None
        if user is None:
            user = User(
                full_name=profile.full_name,
                email_address=profile.email_address,
                roles=set(DEFAULT_ROLES),
            )
            granted_admin = self._gate.maybe_grant_admin(user)
            logger.info("Creating account from %s login", profile.provider)
        else:
            logger.info("Linking %s login to existing account id=%s by email", profile.provider, user.id)

        mark_email_verified(user)
        add_external_account(user, profile.provider, profile.provider_user_id, profile.email_address)
        try:
            return self._store.save_user(user)
        except PersistenceError:
            if granted_admin:
                self._gate.release(user)
            raise

    def _link_to_session_user(self, profile: ProviderProfile, session_user: User, owner: User | None) -> User:
        if owner is not None:
            if owner.id == session_user.id:
                return session_user
            remove_external_account(owner, profile.provider, profile.provider_user_id)
            self._store.save_user(owner)
            logger.warning(
                "Moved %s account from user id=%s to user id=%s",
                profile.provider,
                owner.id,
                session_user.id,
            )

        add_external_account(session_user, profile.provider, profile.provider_user_id, profile.email_address)
        return self._store.save_user(session_user)
