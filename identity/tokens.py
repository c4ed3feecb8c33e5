"""
identity/tokens.py -- Opaque bearer token issuing and lookup.

Tokens are random, not signed: secrets.token_hex(20) gives 160 bits of
entropy, so guessing a live token is computationally infeasible. The token id
is the credential itself; whoever presents it is treated as its owner, so
tokens must never appear in logs.

Expiry and revocation are not handled here. Tokens are immutable once issued.
"""

from __future__ import annotations

import logging
import secrets

from identity.models import Token, User
from identity.repository import TokenRepository

logger = logging.getLogger("identity.auth")


def generate_token_id() -> str:
    """Return a new 40-hex-character bearer token id."""
    return secrets.token_hex(20)


class TokenIssuer:
    """Mint and resolve bearer tokens against a token store.

    Usage:
        issuer = TokenIssuer(store)
        token = issuer.issue(user)
        issuer.resolve(token.id).user_id == user.id
    """

    def __init__(self, store: TokenRepository) -> None:
        self._store = store

    def issue(self, user: User) -> Token:
        """Create and persist a new token for a saved user (user.id must be set)."""
        if user.id is None:
            raise ValueError("Cannot issue a token for an unsaved user")
        token = self._store.save_token(Token(id=generate_token_id(), user_id=user.id))
        logger.debug("Issued token for user id=%s", user.id)
        return token

    def resolve(self, token_id: str | None) -> Token | None:
        """Return the stored token for a presented credential, or None."""
        if not token_id:
            return None
        return self._store.get_token(token_id)
