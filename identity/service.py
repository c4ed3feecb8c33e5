"""
identity/service.py -- Auth facade: login, signup, external login, passwords, email verification.

AuthService sequences the codec, linking engine, invite redemption, and token
issuer. Every operation either returns its result (a Token, a User, or None)
or raises one of the core.errors types; the HTTP layer maps those to
responses.

Security:
  Timing equalization: login always runs one full codec verification, against
  a dummy credential when the account is unknown, inactive, or has no local
  password, so response time does not reveal which emails are registered.
  All those cases raise the same generic AuthenticationError.

  Tokens (bearer, verify, reset) are credentials and are never logged.

Concurrency:
  Operations are synchronous and re-entrant. There is no optimistic locking:
  two concurrent writes to one user follow the store's last-write-wins rule.
  Share one AuthService (or at least one FirstUserGate) per process.
"""

from __future__ import annotations

import logging

from core.config import Settings, get_settings
from core.errors import (
    AuthenticationError,
    ConflictError,
    ExpiredTokenError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from identity.accounts import (
    clear_password_reset,
    expires_in,
    is_token_expired,
    mark_email_verified,
    new_single_use_token,
    normalize_email,
    remove_external_account,
)
from identity.bootstrap import FirstUserGate
from identity.invites import InviteRedeemer
from identity.linking import AccountLinker
from identity.mail import LoggingMailer, Mailer
from identity.models import DEFAULT_ROLES, Token, User
from identity.oauth import ProviderRegistry
from identity.passwords import generate_salt, hash_password, is_valid_password, verify_password
from identity.repository import IdentityRepository
from identity.tokens import TokenIssuer

logger = logging.getLogger("identity.auth")


class AuthService:
    """The orchestration surface of the identity core.

    Usage:
        service = AuthService(IdentityStore(settings.database_url), settings=settings)
        token = service.signup("Ada Lovelace", "ada@example.com", "analytical")
        user = service.authenticate_token(token.id)
    """

    def __init__(
        self,
        store: IdentityRepository,
        mailer: Mailer | None = None,
        providers: ProviderRegistry | None = None,
        settings: Settings | None = None,
        first_user_gate: FirstUserGate | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._store = store
        self._mailer = mailer or LoggingMailer()
        self.providers = providers if providers is not None else ProviderRegistry.from_settings(self.settings)
        self.first_user_gate = first_user_gate or FirstUserGate(store)
        self.tokens = TokenIssuer(store)
        self.linker = AccountLinker(store, self.first_user_gate)
        self.invites = InviteRedeemer(store, store)

        # Computed once so the first failed login is not measurably faster
        # or slower than later ones.
        self._dummy_salt = generate_salt(self.settings.bcrypt_rounds)
        self._dummy_hash = hash_password("identity_timing_dummy", self._dummy_salt)

    # ------------------------------------------------------------------
    # Local accounts
    # ------------------------------------------------------------------

    def login(self, email_address: str, password: str) -> Token:
        """Authenticate with email and password and issue a bearer token."""
        if not email_address or not email_address.strip():
            raise ValidationError("Email Address is required.")
        if not password:
            raise ValidationError("Password is required.")

        user = self._store.get_user_by_email(normalize_email(email_address))
        if user is None or not user.is_active or not user.salt or not user.hashed_password:
            # Equalize timing -- do NOT return before running the codec.
            verify_password(password, self._dummy_salt, self._dummy_hash)
            logger.info("Failed login attempt")
            raise AuthenticationError()

        if not verify_password(password, user.salt, user.hashed_password):
            logger.info("Failed login attempt for user id=%s", user.id)
            raise AuthenticationError()

        logger.info("User id=%s logged in", user.id)
        return self.tokens.issue(user)

    def signup(self, name: str, email_address: str, password: str, invite_token: str | None = None) -> Token:
        """Register a local account and issue a token even before the email is verified."""
        if not email_address or not email_address.strip():
            raise ValidationError("Email Address is required.")
        if not name or not name.strip():
            raise ValidationError("Name is required.")
        self._require_valid_password(password, "Password")

        email_address = normalize_email(email_address)
        if self._store.get_user_by_email(email_address) is not None:
            raise ConflictError("A user already exists with this email address.", code="email_taken")

        user = User(
            full_name=name.strip(),
            email_address=email_address,
            is_active=True,
            is_email_address_verified=False,
            verify_email_address_token=new_single_use_token(),
            verify_email_address_token_expiration=expires_in(self.settings.verify_email_token_hours),
            roles=set(DEFAULT_ROLES),
        )
        granted_admin = self.first_user_gate.maybe_grant_admin(user)
        user.salt = generate_salt(self.settings.bcrypt_rounds)
        user.hashed_password = hash_password(password, user.salt)

        try:
            user = self._store.save_user(user)
        except PersistenceError as exc:
            logger.critical("Signup could not save new account: %s", exc)
            if granted_admin:
                self._release_first_user(user)
            raise PersistenceError("An error occurred.", code="signup_failed", critical=True) from exc

        self.invites.redeem(invite_token, user)

        if not user.is_email_address_verified:
            self._send(self._mailer.send_verify_email, user)

        logger.info("User id=%s signed up", user.id)
        return self.tokens.issue(user)

    def is_email_available(self, email_address: str, current_user: User | None = None) -> bool:
        """True if nobody uses the address, or the signed-in user already owns it."""
        if not email_address or not email_address.strip():
            raise ValidationError("Email Address is required.")
        email_address = normalize_email(email_address)
        if current_user is not None and normalize_email(current_user.email_address) == email_address:
            return True
        return self._store.get_user_by_email(email_address) is None

    def authenticate_token(self, token_id: str | None) -> User:
        """Resolve a presented bearer token to its active owner."""
        token = self.tokens.resolve(token_id)
        if token is None:
            raise AuthenticationError("Authentication required.")
        user = self._store.get_user_by_id(token.user_id)
        if user is None or not user.is_active:
            raise AuthenticationError("Authentication required.")
        return user

    # ------------------------------------------------------------------
    # External logins
    # ------------------------------------------------------------------

    def external_login(
        self,
        provider: str,
        auth_code: str,
        *,
        redirect_uri: str | None = None,
        session_user: User | None = None,
        invite_token: str | None = None,
    ) -> Token:
        """Sign in (or link, when session_user is given) through an identity provider."""
        if not auth_code:
            raise ValidationError("Authorization code is required.")
        client = self.providers.get(provider)
        if client is None:
            raise NotFoundError(f"Login provider {provider!r} is not configured.")

        profile = client.exchange(auth_code, redirect_uri)
        user = self.linker.link(profile, session_user)
        self.invites.redeem(invite_token, user)

        logger.info("User id=%s logged in via %s", user.id, provider)
        return self.tokens.issue(user)

    def remove_external_login(self, user: User, provider: str, provider_user_id: str) -> None:
        if not provider or not provider_user_id:
            raise ValidationError("Invalid Provider Name or Provider User Id.")
        if remove_external_account(user, provider, provider_user_id):
            self._store.save_user(user)
            logger.info("User id=%s removed %s login", user.id, provider)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def change_password(self, user: User, *, new_password: str, current_password: str | None = None) -> None:
        """Set a new local password.

        Users who already have a local password must prove it first. Users who
        only ever signed in externally are setting their first password.
        """
        self._require_valid_password(new_password, "The New Password")

        if user.hashed_password:
            if (
                not current_password
                or not current_password.strip()
                or not user.salt
                or not verify_password(current_password, user.salt, user.hashed_password)
            ):
                raise ValidationError("The current password is incorrect.", code="incorrect_password")

        self._set_password(user, new_password)

    def forgot_password(self, email_address: str) -> None:
        if not email_address or not email_address.strip():
            raise ValidationError("Please specify a valid Email Address.")

        user = self._store.get_user_by_email(normalize_email(email_address))
        if user is None:
            raise NotFoundError("No user was found with this Email Address.")

        user.password_reset_token = new_single_use_token()
        user.password_reset_token_expiration = expires_in(self.settings.password_reset_token_hours)
        self._store.save_user(user)

        self._send(self._mailer.send_password_reset, user)

    def reset_password(self, reset_token: str, new_password: str) -> None:
        if not reset_token:
            raise ValidationError("Invalid Password Reset Token.")

        user = self._store.get_user_by_reset_token(reset_token)
        if user is None:
            raise NotFoundError("Invalid Password Reset Token.")

        if self.settings.reset_checks_verify_expiration:
            expiration = user.verify_email_address_token_expiration
        else:
            expiration = user.password_reset_token_expiration
        if is_token_expired(expiration, self.settings.token_expiry_policy):
            raise ExpiredTokenError("Password Reset Token has expired.")

        self._require_valid_password(new_password, "The New Password")

        mark_email_verified(user)
        self._set_password(user, new_password)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def verify_email(self, token: str) -> Token:
        if not token:
            raise NotFoundError("Invalid Verify Email Address Token.")

        user = self._store.get_user_by_verify_token(token)
        if user is None:
            raise NotFoundError("Invalid Verify Email Address Token.")

        if is_token_expired(user.verify_email_address_token_expiration, self.settings.token_expiry_policy):
            raise ExpiredTokenError("Verify Email Address Token has expired.")

        mark_email_verified(user)
        self._store.save_user(user)
        logger.info("User id=%s verified email address", user.id)
        return self.tokens.issue(user)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_valid_password(self, password: str | None, label: str) -> None:
        if not is_valid_password(password, self.settings.password_min_length, self.settings.password_max_length):
            raise ValidationError(
                f"{label} must be between {self.settings.password_min_length} and "
                f"{self.settings.password_max_length} characters long."
            )

    def _set_password(self, user: User, password: str) -> None:
        if not user.salt:
            user.salt = generate_salt(self.settings.bcrypt_rounds)
        user.hashed_password = hash_password(password, user.salt)
        clear_password_reset(user)
        self._store.save_user(user)

    def _release_first_user(self, user: User) -> None:
        # Never replaces the signup error raised by the caller.
        try:
            self.first_user_gate.release(user)
        except PersistenceError as exc:
            logger.error("First-user slot could not be released: %s", exc)

    def _send(self, send, user: User) -> None:
        """Fire-and-forget: a mail failure is logged and never fails the operation."""
        try:
            send(user)
        except Exception:  # noqa: BLE001 -- any Mailer implementation may fail
            logger.exception("Mail delivery failed for user id=%s", user.id)
