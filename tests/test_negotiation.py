"""
tests.test_negotiation

Per-party milestone responses and the derived negotiation status.
"""

from __future__ import annotations

import pydantic
import pytest

from dealguard.db.models import DealStatus, NegotiationStatus, PartyRole, ResponseType
from dealguard.errors import ConflictError, NotFoundError
from dealguard.schemas import MilestoneResponse
from tests.conftest import BUYER_USER, CREATOR, OUTSIDER, SELLER_USER

ACCEPT = MilestoneResponse(response_type=ResponseType.accepted)


async def _negotiating(flow):
    deal, contract = await flow.create_with_contract()
    await flow.deals.propose_deal(CREATOR, deal.id)
    await flow.accept_all(deal)
    buyer = next(p for p in deal.parties if p.role == PartyRole.buyer)
    seller = next(p for p in deal.parties if p.role == PartyRole.seller)
    return deal, contract, buyer, seller


def test_amendment_requires_reason() -> None:
    with pytest.raises(pydantic.ValidationError):
        MilestoneResponse(response_type=ResponseType.amendment_proposed)
    MilestoneResponse(
        response_type=ResponseType.amendment_proposed,
        amendment_proposal={"release_amount": "900000"},
        notes="price adjustment after inspection",
    )


async def test_status_follows_responses(flow) -> None:
    deal, contract, buyer, seller = await _negotiating(flow)
    milestone = contract.milestones[0]

    await flow.negotiation.submit_response(BUYER_USER, milestone.id, buyer.id, ACCEPT)
    assert milestone.negotiation_status == NegotiationStatus.pending_responses

    amend = MilestoneResponse(
        response_type=ResponseType.amendment_proposed,
        amendment_proposal={"deadline": "2026-12-31"},
        notes="need more time",
    )
    await flow.negotiation.submit_response(SELLER_USER, milestone.id, seller.id, amend)
    assert milestone.negotiation_status == NegotiationStatus.amendment_pending

    reject = MilestoneResponse(response_type=ResponseType.rejected, notes="no")
    await flow.negotiation.submit_response(BUYER_USER, milestone.id, buyer.id, reject)
    assert milestone.negotiation_status == NegotiationStatus.rejected

    # Both parties settle: the upsert replaces earlier answers.
    await flow.negotiation.submit_response(BUYER_USER, milestone.id, buyer.id, ACCEPT)
    await flow.negotiation.submit_response(SELLER_USER, milestone.id, seller.id, ACCEPT)
    assert milestone.negotiation_status == NegotiationStatus.agreed

    responses = await flow.negotiation.milestone_responses(CREATOR, milestone.id)
    assert len(responses["responses"]) == 2
    assert responses["summary"] == {
        "total": 2,
        "accepted": 2,
        "rejected": 0,
        "amendment_proposed": 0,
        "pending": 0,
    }
    # The second milestone is still open, so the deal waits.
    assert deal.status == DealStatus.proposed


async def test_deal_activates_when_every_milestone_agreed(flow) -> None:
    deal, contract, _, _ = await _negotiating(flow)
    await flow.agree_all(deal, contract)
    assert deal.status == DealStatus.accepted_by_all

    overview = await flow.negotiation.deal_negotiation_status(BUYER_USER, deal.id)
    assert overview["all_agreed"] is True
    assert [m["order"] for m in overview["milestones"]] == [1, 2]
    assert overview["milestones"][0]["my_response"]["response_type"] == "ACCEPTED"


async def test_responses_locked_after_signing(flow) -> None:
    deal, contract = await flow.signed_deal()
    buyer = next(p for p in deal.parties if p.role == PartyRole.buyer)

    with pytest.raises(ConflictError):
        await flow.negotiation.submit_response(
            BUYER_USER, contract.milestones[0].id, buyer.id, ACCEPT
        )


async def test_outsider_cannot_read_responses(flow) -> None:
    _, contract, _, _ = await _negotiating(flow)
    with pytest.raises(NotFoundError):
        await flow.negotiation.milestone_responses(OUTSIDER, contract.milestones[0].id)
