"""
tests.test_milestones

Evidence completeness, readiness and approval quorum on funded deals.
"""

from __future__ import annotations

import pytest

from dealguard.db.models import EvidenceStatus, MilestoneStatus, PartyRole
from dealguard.errors import ConflictError, PermissionDeniedError
from dealguard.schemas import EvidenceCreate
from tests.conftest import ADMIN, BUYER_USER, CREATOR, OFFICER, SELLER_USER


async def test_funding_starts_milestones(flow) -> None:
    _, contract, _ = await flow.funded_deal()
    assert {m.status for m in contract.milestones} == {MilestoneStatus.in_progress}


async def test_readiness_waits_for_accepted_evidence(flow) -> None:
    deal, contract, _ = await flow.funded_deal()
    milestone = contract.milestones[0]

    completeness = await flow.milestones.check_evidence_completeness(milestone.id)
    assert completeness["complete"] is False
    assert completeness["missing"] == ["Bill of Lading"]
    assert await flow.milestones.evaluate_readiness(milestone.id) is False

    item = await flow.evidence.submit_evidence(
        SELLER_USER,
        EvidenceCreate(deal_id=deal.id, milestone_id=milestone.id, subject="BILL OF LADING"),
    )
    # Received but not yet accepted.
    assert await flow.milestones.evaluate_readiness(milestone.id) is False

    await flow.evidence.review_evidence(OFFICER, item.id, EvidenceStatus.accepted)
    assert milestone.status == MilestoneStatus.ready_for_review


async def test_approval_quorum_with_party_requirements(flow) -> None:
    deal, contract, _ = await flow.funded_deal()
    milestone = contract.milestones[1]
    buyer = next(p for p in deal.parties if p.role == PartyRole.buyer)
    seller = next(p for p in deal.parties if p.role == PartyRole.seller)

    with pytest.raises(PermissionDeniedError):
        await flow.milestones.set_approval_requirements(CREATOR, milestone.id, buyer=True)
    await flow.milestones.set_approval_requirements(
        ADMIN, milestone.id, admin=True, buyer=True, seller=True
    )

    with pytest.raises(ConflictError):
        await flow.milestones.submit_approval(ADMIN, milestone.id)

    assert await flow.milestones.evaluate_readiness(milestone.id) is True

    result = await flow.milestones.submit_approval(BUYER_USER, milestone.id, party_id=buyer.id)
    assert result["milestone_status"] == "READY_FOR_REVIEW"
    assert result["missing_approvals"] == ["admin", "seller"]

    with pytest.raises(ConflictError):
        await flow.milestones.submit_approval(BUYER_USER, milestone.id, party_id=buyer.id)
    with pytest.raises(PermissionDeniedError):
        await flow.milestones.submit_approval(BUYER_USER, milestone.id, party_id=seller.id)

    # Case officers are staff but do not count as admin approvers.
    result = await flow.milestones.submit_approval(OFFICER, milestone.id)
    assert result["missing_approvals"] == ["admin", "seller"]

    await flow.milestones.submit_approval(SELLER_USER, milestone.id, party_id=seller.id)
    result = await flow.milestones.submit_approval(ADMIN, milestone.id)
    assert result["missing_approvals"] == []
    assert milestone.status == MilestoneStatus.approved

    approvals = await flow.milestones.list_approvals(CREATOR, milestone.id)
    assert len(approvals) == 4
    assert sum(a.approver_is_admin for a in approvals) == 1


async def test_relaxing_requirements_completes_quorum(flow) -> None:
    _, contract, _ = await flow.funded_deal()
    milestone = contract.milestones[1]
    await flow.milestones.set_approval_requirements(ADMIN, milestone.id, admin=True, seller=True)
    await flow.milestones.evaluate_readiness(milestone.id)
    await flow.milestones.submit_approval(ADMIN, milestone.id)
    assert milestone.status == MilestoneStatus.ready_for_review

    await flow.milestones.set_approval_requirements(ADMIN, milestone.id, admin=True)
    assert milestone.status == MilestoneStatus.approved


async def test_list_milestones(flow) -> None:
    _, contract = await flow.create_with_contract()
    milestones = await flow.milestones.list_milestones(CREATOR, contract.id)
    assert [m.title for m in milestones] == ["Shipment dispatched", "Installation complete"]
    got = await flow.milestones.get_milestone(CREATOR, milestones[0].id)
    assert got.id == milestones[0].id
