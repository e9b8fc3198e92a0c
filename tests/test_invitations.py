"""
tests.test_invitations

Invitation acceptance tracking and automatic activation.
"""

from __future__ import annotations

import pytest

from dealguard.db.models import DealStatus, InvitationStatus, PartyRole
from dealguard.errors import ConflictError, NotFoundError, PermissionDeniedError
from tests.conftest import ADMIN, BUYER_USER, CREATOR, OUTSIDER, SELLER_USER


async def _proposed(flow):
    deal = await flow.create()
    await flow.deals.propose_deal(CREATOR, deal.id)
    buyer = next(p for p in deal.parties if p.role == PartyRole.buyer)
    seller = next(p for p in deal.parties if p.role == PartyRole.seller)
    return deal, buyer, seller


async def test_get_invitation(flow) -> None:
    deal, buyer, _ = await _proposed(flow)

    info = await flow.invitations.get_invitation(buyer.invitation_token)
    assert info["party"]["id"] == str(buyer.id)
    assert info["deal"]["deal_number"] == deal.deal_number
    assert {p["invitation_status"] for p in info["deal"]["parties"]} == {"PENDING"}

    with pytest.raises(NotFoundError):
        await flow.invitations.get_invitation("no-such-token")


async def test_accept_is_idempotent_and_activates_deal(flow) -> None:
    deal, buyer, seller = await _proposed(flow)

    first = await flow.invitations.accept_invitation(BUYER_USER, buyer.invitation_token)
    assert first["already_accepted"] is False
    assert first["all_parties_accepted"] is False
    assert deal.status == DealStatus.proposed

    again = await flow.invitations.accept_invitation(BUYER_USER, buyer.invitation_token)
    assert again["already_accepted"] is True

    last = await flow.invitations.accept_invitation(SELLER_USER, seller.invitation_token)
    assert last == {
        "already_accepted": False,
        "all_parties_accepted": True,
        "deal_id": str(deal.id),
        "deal_number": deal.deal_number,
    }
    # No contract yet, so nothing else gates activation.
    assert deal.status == DealStatus.accepted_by_all
    assert deal.all_parties_confirmed is True
    assert buyer.responded_at is not None


async def test_declined_invitation_cannot_be_accepted(flow) -> None:
    deal, buyer, _ = await _proposed(flow)

    await flow.invitations.decline_invitation(buyer.invitation_token, reason="terms too strict")
    assert buyer.invitation_status == InvitationStatus.declined

    with pytest.raises(ConflictError):
        await flow.invitations.accept_invitation(BUYER_USER, buyer.invitation_token)

    events = await flow.deals.audit_trail(ADMIN, deal.id)
    declined = [e for e in events if e.event_type == "PARTY_DECLINED_INVITATION"]
    assert len(declined) == 1
    assert declined[0].details == {"reason": "terms too strict"}


async def test_accepted_invitation_cannot_be_declined(flow) -> None:
    _, buyer, _ = await _proposed(flow)
    await flow.invitations.accept_invitation(BUYER_USER, buyer.invitation_token)

    with pytest.raises(ConflictError):
        await flow.invitations.decline_invitation(buyer.invitation_token)


async def test_resend_rotates_token(flow) -> None:
    _, buyer, _ = await _proposed(flow)
    old_token = buyer.invitation_token

    with pytest.raises(NotFoundError):
        await flow.invitations.resend_invitation(OUTSIDER, buyer.id)

    await flow.invitations.resend_invitation(CREATOR, buyer.id)
    assert buyer.invitation_token != old_token
    with pytest.raises(NotFoundError):
        await flow.invitations.get_invitation(old_token)

    await flow.invitations.accept_invitation(BUYER_USER, buyer.invitation_token)
    with pytest.raises(ConflictError):
        await flow.invitations.resend_invitation(CREATOR, buyer.id)


async def test_resend_requires_proposal(flow) -> None:
    deal = await flow.create()
    with pytest.raises(ConflictError):
        await flow.invitations.resend_invitation(CREATOR, deal.parties[0].id)


async def test_acceptance_status(flow) -> None:
    deal, buyer, seller = await _proposed(flow)
    await flow.invitations.accept_invitation(BUYER_USER, buyer.invitation_token)

    status = await flow.invitations.acceptance_status(CREATOR, deal.id)
    assert status["total"] == 2
    assert status["accepted"] == 1
    assert status["pending"] == 1
    assert status["all_accepted"] is False
    assert [p["id"] for p in status["pending_parties"]] == [str(seller.id)]

    with pytest.raises(NotFoundError):
        await flow.invitations.acceptance_status(OUTSIDER, deal.id)


async def test_member_without_creator_rights_cannot_resend(flow) -> None:
    _, buyer, seller = await _proposed(flow)
    await flow.invitations.accept_invitation(BUYER_USER, buyer.invitation_token)

    with pytest.raises(PermissionDeniedError):
        await flow.invitations.resend_invitation(BUYER_USER, seller.id)
