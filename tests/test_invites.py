"""Unit tests for identity/invites.py -- organization invite redemption.

Covers:
- redemption adds the organization to the user and consumes the invite
- an invite addressed to the user's email verifies it (case-insensitive)
- an invite addressed elsewhere leaves verification alone
- unknown and blank tokens are silent no-ops
- a failed organization write after the user write is surfaced, not swallowed
"""

from unittest.mock import patch

import pytest

from core.errors import PersistenceError
from identity.invites import InviteRedeemer
from identity.models import Invite, Organization


@pytest.fixture
def redeemer(store) -> InviteRedeemer:
    return InviteRedeemer(store, store)


@pytest.fixture
def org(store) -> Organization:
    return store.save_organization(
        Organization(
            name="Engines",
            invites=[Invite("tok-ada", "Ada@Example.com"), Invite("tok-bob", "bob@example.com")],
        )
    )


def test_redeem_joins_org_and_consumes_invite(store, redeemer, org, make_user) -> None:
    user = make_user("ada@example.com")
    redeemer.redeem("tok-ada", user)

    assert store.get_user_by_id(user.id).organization_ids == {org.id}
    remaining = store.get_organization_by_id(org.id).invites
    assert [i.token for i in remaining] == ["tok-bob"]
    assert store.get_organization_by_invite_token("tok-ada") is None


def test_matching_email_marks_verified(store, redeemer, org, make_user) -> None:
    user = make_user("ada@example.com", verified=False)
    redeemer.redeem("tok-ada", user)
    assert store.get_user_by_id(user.id).is_email_address_verified is True


def test_other_email_stays_unverified(store, redeemer, org, make_user) -> None:
    user = make_user("carol@example.com", verified=False)
    redeemer.redeem("tok-ada", user)
    stored = store.get_user_by_id(user.id)
    assert stored.is_email_address_verified is False
    assert stored.organization_ids == {org.id}


def test_unknown_token_is_noop(store, redeemer, org, make_user) -> None:
    user = make_user("ada@example.com")
    before_user = store.get_user_by_id(user.id)
    before_org = store.get_organization_by_id(org.id)

    redeemer.redeem("no-such-token", user)

    assert store.get_user_by_id(user.id) == before_user
    assert store.get_organization_by_id(org.id) == before_org


def test_blank_token_is_noop(store, redeemer, make_user) -> None:
    user = make_user()
    with patch.object(store, "get_organization_by_invite_token") as lookup:
        redeemer.redeem(None, user)
        redeemer.redeem("", user)
    lookup.assert_not_called()


def test_organization_save_failure_propagates(store, redeemer, org, make_user) -> None:
    user = make_user("ada@example.com")
    with patch.object(store, "save_organization", side_effect=PersistenceError("Unable to save organization.")):
        with pytest.raises(PersistenceError):
            redeemer.redeem("tok-ada", user)
    # The user write already happened; the invite is still outstanding.
    assert store.get_user_by_id(user.id).organization_ids == {org.id}
    assert store.get_organization_by_invite_token("tok-ada") is not None
