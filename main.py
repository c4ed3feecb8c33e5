#!/usr/bin/env python3
"""
identity-core -- operator CLI for the account and credential core.

Runs the same AuthService the HTTP layer uses, against the database named by
DATABASE_URL (default: identity.db next to this file). Handy for bootstrapping
the first admin, inviting people into an organization, and support tasks.

Usage:
  python main.py signup "Ada Lovelace" ada@example.com
  python main.py login ada@example.com
  python main.py verify-email <token>
  python main.py forgot-password ada@example.com
  python main.py reset-password <token>
  python main.py create-org "Analytical Engines"
  python main.py invite 1 charles@example.com
  python main.py providers

Passwords are always read with a hidden prompt, never from argv.

Environment variables:
  DATABASE_URL          SQLAlchemy URL of the identity database.
  GITHUB_CLIENT_ID ...  OAuth provider credentials (see core/config.py).
"""

import argparse
import getpass
import logging
import sys
from datetime import datetime, timezone

from core.config import get_settings
from core.errors import IdentityError
from identity.accounts import new_single_use_token
from identity.models import Invite, Organization
from identity.service import AuthService
from identity.store import IdentityStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("identity.cli")


def _ask_password(prompt: str = "Password: ") -> str:
    return getpass.getpass(prompt)


def _cmd_signup(service: AuthService, store: IdentityStore, args: argparse.Namespace) -> None:
    token = service.signup(args.name, args.email, _ask_password(), invite_token=args.invite)
    user = store.get_user_by_id(token.user_id)
    print(f"  Created user {user.id} ({user.email_address}) roles={','.join(sorted(user.roles))}")
    print(f"  Token: {token.id}")


def _cmd_login(service: AuthService, store: IdentityStore, args: argparse.Namespace) -> None:
    token = service.login(args.email, _ask_password())
    print(f"  Token: {token.id}")


def _cmd_verify_email(service: AuthService, store: IdentityStore, args: argparse.Namespace) -> None:
    token = service.verify_email(args.token)
    print(f"  Email verified for user {token.user_id}.")


def _cmd_forgot_password(service: AuthService, store: IdentityStore, args: argparse.Namespace) -> None:
    service.forgot_password(args.email)
    print("  Password reset email queued.")


def _cmd_reset_password(service: AuthService, store: IdentityStore, args: argparse.Namespace) -> None:
    service.reset_password(args.token, _ask_password("New password: "))
    print("  Password updated.")


def _cmd_create_org(service: AuthService, store: IdentityStore, args: argparse.Namespace) -> None:
    organization = store.save_organization(Organization(name=args.name))
    print(f"  Created organization {organization.id} ({organization.name})")


def _cmd_invite(service: AuthService, store: IdentityStore, args: argparse.Namespace) -> None:
    organization = store.get_organization_by_id(args.organization_id)
    if organization is None:
        print(f"  [!] No organization with id {args.organization_id}.")
        sys.exit(1)
    invite = Invite(
        token=new_single_use_token(),
        email_address=args.email.strip().lower(),
        date_added=datetime.now(timezone.utc).isoformat(),
    )
    organization.invites.append(invite)
    store.save_organization(organization)
    print(f"  Invite token for {invite.email_address}: {invite.token}")


def _cmd_providers(service: AuthService, store: IdentityStore, args: argparse.Namespace) -> None:
    providers = service.providers.enabled_providers()
    if not providers:
        print("  No OAuth providers configured.")
        return
    for p in providers:
        print(f"  {p['name']:<10} {p['label']}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="identity-core",
        description="Operator commands for the identity and credential core.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("signup", help="Register a local account (first account becomes global admin)")
    p.add_argument("name")
    p.add_argument("email")
    p.add_argument("--invite", metavar="TOKEN", help="Organization invite token to redeem")
    p.set_defaults(func=_cmd_signup)

    p = sub.add_parser("login", help="Check a password and print a bearer token")
    p.add_argument("email")
    p.set_defaults(func=_cmd_login)

    p = sub.add_parser("verify-email", help="Consume a verify-email token")
    p.add_argument("token")
    p.set_defaults(func=_cmd_verify_email)

    p = sub.add_parser("forgot-password", help="Issue a password reset token and mail it")
    p.add_argument("email")
    p.set_defaults(func=_cmd_forgot_password)

    p = sub.add_parser("reset-password", help="Set a new password using a reset token")
    p.add_argument("token")
    p.set_defaults(func=_cmd_reset_password)

    p = sub.add_parser("create-org", help="Create an organization")
    p.add_argument("name")
    p.set_defaults(func=_cmd_create_org)

    p = sub.add_parser("invite", help="Add an invite to an organization and print its token")
    p.add_argument("organization_id", type=int)
    p.add_argument("email")
    p.set_defaults(func=_cmd_invite)

    p = sub.add_parser("providers", help="List configured OAuth providers")
    p.set_defaults(func=_cmd_providers)

    args = parser.parse_args()

    settings = get_settings()
    store = IdentityStore(settings.database_url)
    service = AuthService(store, settings=settings)
    try:
        args.func(service, store, args)
    except IdentityError as exc:
        print(f"  [!] {exc.message} ({exc.code})")
        sys.exit(1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
