"""
identity/oauth.py -- Authorization-code exchange against OAuth identity providers.

Every provider runs the same flow: trade the code for an access token, call
the provider's profile endpoint, normalize the response into a
ProviderProfile. Provider differences are data (endpoint URLs, scope, a
profile parser) held in a ProviderSpec, and ProviderRegistry is the lookup
table from provider name to a configured client.

Only providers with both client ID and secret configured get registered.

Security notes:
  Email verification: GitHub and Google report whether the address was
  verified. An unverified address could be a victim's address added by an
  attacker, and the linking engine merges accounts by email, so an
  unverified address is dropped from the profile (email_address=None).
  Facebook only returns addresses it has confirmed. Microsoft Graph reports
  mail and userPrincipalName as set by the tenant admin, with no verification
  signal, so Microsoft profiles never carry an email and are never merged by
  email.

  Errors: any transport, protocol, or parse failure is logged here with its
  cause and surfaced as a generic ExternalServiceError.

Uses authlib's requests-based OAuth2Session so the exchange is a plain
synchronous call usable from request handlers and workers alike.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

import requests
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session

from core.config import Settings
from core.errors import ExternalServiceError
from identity.models import ProviderProfile

logger = logging.getLogger("identity.oauth")

_TIMEOUT = 10  # seconds, per HTTP call

# ---------------------------------------------------------------------------
# Profile parsers -- provider-specific normalization
# ---------------------------------------------------------------------------


def _get_json(session: OAuth2Session, url: str):
    resp = session.get(url, timeout=_TIMEOUT)
    resp.raise_for_status()
    return resp.json()


def _join_name(*parts: str | None) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())


def _github_profile(session: OAuth2Session) -> ProviderProfile:
    """GitHub needs two calls: /user for the stable numeric id, /user/emails
    for the primary verified address."""
    profile = _get_json(session, "https://api.github.com/user")
    emails = _get_json(session, "https://api.github.com/user/emails")

    email: str | None = None
    for entry in emails:
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break

    return ProviderProfile(
        provider="github",
        provider_user_id=str(profile["id"]),
        full_name=profile.get("name") or profile.get("login") or "",
        email_address=email,
    )


def _google_profile(session: OAuth2Session) -> ProviderProfile:
    info = _get_json(session, "https://openidconnect.googleapis.com/v1/userinfo")
    email = info.get("email") if info.get("email_verified") else None
    return ProviderProfile(
        provider="google",
        provider_user_id=str(info["sub"]),
        full_name=info.get("name") or _join_name(info.get("given_name"), info.get("family_name")),
        email_address=email,
    )


def _facebook_profile(session: OAuth2Session) -> ProviderProfile:
    info = _get_json(session, "https://graph.facebook.com/me?fields=id,name,first_name,last_name,email")
    return ProviderProfile(
        provider="facebook",
        provider_user_id=str(info["id"]),
        full_name=info.get("name") or _join_name(info.get("first_name"), info.get("last_name")),
        email_address=info.get("email"),
    )


def _live_profile(session: OAuth2Session) -> ProviderProfile:
    info = _get_json(session, "https://graph.microsoft.com/v1.0/me")
    return ProviderProfile(
        provider="live",
        provider_user_id=str(info["id"]),
        full_name=info.get("displayName") or _join_name(info.get("givenName"), info.get("surname")),
        # Graph mail and userPrincipalName are tenant-controlled and unverified.
        email_address=None,
    )


# ---------------------------------------------------------------------------
# Provider table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderSpec:
    name: str
    label: str
    access_token_url: str
    scope: str
    parse_profile: Callable[[OAuth2Session], ProviderProfile]


PROVIDERS: dict[str, ProviderSpec] = {
    "github": ProviderSpec(
        name="github",
        label="GitHub",
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        scope="read:user user:email",
        parse_profile=_github_profile,
    ),
    "google": ProviderSpec(
        name="google",
        label="Google",
        access_token_url="https://oauth2.googleapis.com/token",  # noqa: S106
        scope="openid email profile",
        parse_profile=_google_profile,
    ),
    "facebook": ProviderSpec(
        name="facebook",
        label="Facebook",
        access_token_url="https://graph.facebook.com/oauth/access_token",  # noqa: S106
        scope="email public_profile",
        parse_profile=_facebook_profile,
    ),
    "live": ProviderSpec(
        name="live",
        label="Microsoft",
        access_token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",  # noqa: S106
        scope="openid email profile User.Read",
        parse_profile=_live_profile,
    ),
}


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class ProviderClient(ABC):
    """Anything that can turn an authorization code into a ProviderProfile."""

    label: str = ""

    @abstractmethod
    def exchange(self, code: str, redirect_uri: str | None = None) -> ProviderProfile:
        """Raises ExternalServiceError when no profile can be obtained."""


class OAuthProviderClient(ProviderClient):
    """Authorization-code client for one provider, built from a ProviderSpec."""

    def __init__(
        self,
        spec: ProviderSpec,
        client_id: str,
        client_secret: str,
        session_factory: Callable[..., OAuth2Session] = OAuth2Session,
    ) -> None:
        self.spec = spec
        self.label = spec.label
        self._client_id = client_id
        self._client_secret = client_secret
        self._session_factory = session_factory

    def exchange(self, code: str, redirect_uri: str | None = None) -> ProviderProfile:
        session = self._session_factory(
            client_id=self._client_id,
            client_secret=self._client_secret,
            scope=self.spec.scope,
            redirect_uri=redirect_uri,
            token_endpoint_auth_method="client_secret_post",
        )
        try:
            session.fetch_token(self.spec.access_token_url, code=code, timeout=_TIMEOUT)
            return self.spec.parse_profile(session)
        except (AuthlibBaseError, requests.RequestException, KeyError, TypeError, ValueError) as exc:
            logger.warning("%s code exchange failed: %s", self.spec.name, exc)
            raise ExternalServiceError() from exc
        finally:
            session.close()


class ProviderRegistry:
    """Lookup table from provider name to a configured ProviderClient.

    Usage:
        registry = ProviderRegistry.from_settings(get_settings())
        client = registry.get("github")   # None when not configured
        profile = client.exchange(code, redirect_uri)
    """

    def __init__(self, clients: dict[str, ProviderClient] | None = None) -> None:
        self._clients: dict[str, ProviderClient] = dict(clients or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> ProviderRegistry:
        registry = cls()
        for name, spec in PROVIDERS.items():
            client_id, client_secret = settings.provider_credentials(name)
            if client_id and client_secret:
                registry.register(name, OAuthProviderClient(spec, client_id, client_secret))
                logger.info("%s OAuth provider registered", spec.label)
        return registry

    def register(self, name: str, client: ProviderClient) -> None:
        self._clients[name] = client

    def get(self, name: str) -> ProviderClient | None:
        return self._clients.get(name)

    def enabled_providers(self) -> list[dict]:
        """Return {"name", "label"} for every registered provider, in registration order."""
        return [{"name": name, "label": client.label or name} for name, client in self._clients.items()]
