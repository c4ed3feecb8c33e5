"""
identity/accounts.py -- In-memory mutations of a User record.

These helpers change a User dataclass and never touch the repository; the
caller decides when to save. They are shared by the linking engine, invite
redemption, and the auth facade so the rules live in one place:

  - Marking an email verified consumes the verify-email token.
  - External accounts are unique by (provider, provider_user_id).
  - An account without a local password keeps its last external account.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from core.errors import ConflictError
from identity.models import ExternalAccount, User

EXPIRY_STRICT = "strict"
EXPIRY_LEGACY = "legacy"
EXPIRY_DISABLED = "disabled"


def normalize_email(email_address: str | None) -> str | None:
    """Trim and lower-case an address; blank becomes None."""
    if email_address is None:
        return None
    return email_address.strip().lower() or None


def new_single_use_token() -> str:
    """Return a 32-hex-character random token for verify/reset links."""
    return secrets.token_hex(16)


def expires_in(hours: int, now: datetime | None = None) -> datetime:
    return (now or datetime.now(timezone.utc)) + timedelta(hours=hours)


def mark_email_verified(user: User) -> None:
    user.is_email_address_verified = True
    user.verify_email_address_token = None
    user.verify_email_address_token_expiration = None


def clear_password_reset(user: User) -> None:
    user.password_reset_token = None
    user.password_reset_token_expiration = None


def has_external_account(user: User, provider: str, provider_user_id: str) -> bool:
    return any(
        a.provider == provider and a.provider_user_id == provider_user_id for a in user.external_accounts
    )


def add_external_account(user: User, provider: str, provider_user_id: str, email_address: str | None) -> bool:
    """Attach an external account unless it is already present. Returns True if added."""
    if has_external_account(user, provider, provider_user_id):
        return False
    user.external_accounts.append(ExternalAccount(provider, provider_user_id, email_address))
    return True


def can_remove_external_account(user: User) -> bool:
    """False when removing any external account could leave the user unable to sign in."""
    return bool(user.hashed_password) or len(user.external_accounts) > 1


def remove_external_account(user: User, provider: str, provider_user_id: str) -> bool:
    """Detach an external account.

    Returns True if it was removed, False if the user did not have it.
    Raises ConflictError if it is the user's only way to sign in.
    """
    if not can_remove_external_account(user):
        raise ConflictError(
            "You must set a local password before removing your external login.",
            code="sole_credential",
        )
    before = len(user.external_accounts)
    user.external_accounts = [
        a
        for a in user.external_accounts
        if not (a.provider == provider and a.provider_user_id == provider_user_id)
    ]
    return len(user.external_accounts) != before


def is_token_expired(expiration: datetime | None, policy: str = EXPIRY_STRICT, now: datetime | None = None) -> bool:
    """Decide whether a verify/reset token must be rejected as expired.

    strict:   expired once the expiration has passed. No expiration never expires.
    legacy:   rejected while the expiration is still in the future. This is the
              historical behaviour, kept behind a flag pending product review.
    disabled: never expired.
    """
    if expiration is None or policy == EXPIRY_DISABLED:
        return False
    now = now or datetime.now(timezone.utc)
    if expiration.tzinfo is None:
        expiration = expiration.replace(tzinfo=timezone.utc)
    if policy == EXPIRY_LEGACY:
        return expiration > now
    return expiration <= now
