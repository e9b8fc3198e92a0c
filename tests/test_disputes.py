"""
tests.test_disputes

Dispute lifecycle: milestone freeze, mediation and resolution.
"""

from __future__ import annotations

import pytest

from dealguard.db.models import DisputeStatus, EvidenceStatus, MilestoneStatus
from dealguard.errors import ConflictError, PermissionDeniedError, ValidationError
from dealguard.schemas import EvidenceCreate
from tests.conftest import ADMIN, BUYER_USER, CREATOR, OFFICER, SELLER_USER


async def test_open_freezes_and_resolve_restores_milestone(flow) -> None:
    deal, contract, _ = await flow.funded_deal()
    milestone = contract.milestones[0]

    with pytest.raises(PermissionDeniedError):
        await flow.disputes.open_dispute(CREATOR, deal.id, "delay", "late shipment", milestone.id)

    dispute = await flow.disputes.open_dispute(
        SELLER_USER, deal.id, "payment", "buyer disputes weight", milestone.id
    )
    assert dispute.status == DisputeStatus.opened
    assert dispute.milestone_frozen is True
    assert milestone.status == MilestoneStatus.disputed

    await flow.disputes.add_mediation_note(OFFICER, dispute.id, "called both parties")
    await flow.disputes.add_mediation_note(ADMIN, dispute.id, "weighbridge ticket requested")
    assert [n["author"] for n in dispute.mediation_notes] == [OFFICER.subject, ADMIN.subject]

    with pytest.raises(PermissionDeniedError):
        await flow.disputes.add_mediation_note(BUYER_USER, dispute.id, "hello")

    await flow.disputes.advance_dispute(ADMIN, dispute.id, DisputeStatus.settlement_proposed)
    assert dispute.status == DisputeStatus.settlement_proposed
    with pytest.raises(ValidationError):
        await flow.disputes.advance_dispute(ADMIN, dispute.id, DisputeStatus.resolved)

    assert [d.id for d in await flow.disputes.list_open_disputes(ADMIN)] == [dispute.id]

    await flow.disputes.resolve_dispute(ADMIN, dispute.id, "weights confirmed")
    assert dispute.status == DisputeStatus.resolved
    assert dispute.final_resolution == {"notes": "weights confirmed"}
    assert milestone.status == MilestoneStatus.in_progress
    assert await flow.disputes.list_open_disputes(ADMIN) == []

    with pytest.raises(ConflictError):
        await flow.disputes.resolve_dispute(ADMIN, dispute.id, "again")
    with pytest.raises(ConflictError):
        await flow.disputes.add_mediation_note(ADMIN, dispute.id, "late note")


async def test_second_open_dispute_keeps_milestone_frozen(flow) -> None:
    deal, contract, _ = await flow.funded_deal()
    milestone = contract.milestones[0]

    first = await flow.disputes.open_dispute(BUYER_USER, deal.id, "a", "first", milestone.id)
    await flow.disputes.open_dispute(SELLER_USER, deal.id, "b", "second", milestone.id)

    await flow.disputes.resolve_dispute(ADMIN, first.id, "handled")
    assert milestone.status == MilestoneStatus.disputed

    listed = await flow.disputes.list_disputes(BUYER_USER, deal.id)
    assert len(listed) == 2


async def test_dispute_without_milestone(flow) -> None:
    deal, _ = await flow.signed_deal()
    dispute = await flow.disputes.open_dispute(BUYER_USER, deal.id, "conduct", "no reply")
    assert dispute.milestone_id is None
    assert dispute.milestone_frozen is False

    with pytest.raises(PermissionDeniedError):
        await flow.disputes.list_open_disputes(BUYER_USER)
    with pytest.raises(ValidationError):
        await flow.disputes.open_dispute(BUYER_USER, deal.id, " ", "x")


async def test_resolved_dispute_reopens_review_of_approved_milestone(flow) -> None:
    deal, contract, _ = await flow.funded_deal()
    await flow.complete_milestones(deal, contract)
    milestone = contract.milestones[0]
    assert milestone.status == MilestoneStatus.approved

    dispute = await flow.disputes.open_dispute(
        BUYER_USER, deal.id, "quality", "goods damaged on arrival", milestone.id
    )
    assert milestone.status == MilestoneStatus.disputed
    assert await flow.milestones.list_approvals(ADMIN, milestone.id) == []

    await flow.disputes.resolve_dispute(ADMIN, dispute.id, "replacement shipped")
    assert milestone.status == MilestoneStatus.in_progress

    item = await flow.evidence.submit_evidence(
        SELLER_USER,
        EvidenceCreate(deal_id=deal.id, milestone_id=milestone.id, subject="bill of lading #78"),
    )
    await flow.evidence.review_evidence(ADMIN, item.id, EvidenceStatus.accepted)
    assert milestone.status == MilestoneStatus.ready_for_review

    result = await flow.milestones.submit_approval(ADMIN, milestone.id)
    assert result["milestone_status"] == str(MilestoneStatus.approved)
    assert milestone.status == MilestoneStatus.approved
