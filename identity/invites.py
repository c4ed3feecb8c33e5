"""
identity/invites.py -- Apply an organization invite token to a user.

Redemption is two independent writes: the user gains the organization, then
the organization loses the invite. They are not one transaction. If the
second write fails the PersistenceError propagates so the caller sees the
partial failure instead of a silently half-applied invite.

An invite token that matches no organization is not an error. Links go stale
(the invite was already used or revoked) and that must never break a signup
or login that carried one.
"""

from __future__ import annotations

import logging

from identity.accounts import mark_email_verified
from identity.models import User
from identity.repository import OrganizationRepository, UserRepository

logger = logging.getLogger("identity.invites")


class InviteRedeemer:
    def __init__(self, users: UserRepository, organizations: OrganizationRepository) -> None:
        self._users = users
        self._organizations = organizations

    def redeem(self, invite_token: str | None, user: User) -> None:
        """Add user to the organization that issued invite_token and consume the invite.

        Accepting an invite sent to the user's own address proves ownership of
        that address, so an unverified email becomes verified.
        """
        if not invite_token:
            return

        found = self._organizations.get_organization_by_invite_token(invite_token)
        if found is None:
            logger.info("Ignoring unknown invite token for user id=%s", user.id)
            return
        organization, invite = found

        if (
            not user.is_email_address_verified
            and user.email_address
            and user.email_address.casefold() == invite.email_address.casefold()
        ):
            mark_email_verified(user)

        user.organization_ids.add(organization.id)
        self._users.save_user(user)

        organization.invites = [i for i in organization.invites if i.token != invite.token]
        self._organizations.save_organization(organization)
        logger.info("User id=%s joined organization id=%s via invite", user.id, organization.id)
