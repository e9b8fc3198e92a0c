"""
dealguard.db.repositories.milestones

Repository for milestones and their approval / negotiation records.

Responsibilities:
- Fetch milestones per contract / deal.
- Upsert approval requirements and negotiation responses.
- Append approvals (one per approver).
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.db.models import (
    Milestone,
    MilestoneApproval,
    MilestoneApprovalRequirement,
    MilestonePartyResponse,
    MilestoneStatus,
    NegotiationStatus,
    ResponseType,
    utcnow,
)


class MilestoneRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, milestone_id: uuid.UUID) -> Milestone | None:
        return await self._session.get(Milestone, milestone_id)

    async def list_for_contract(self, contract_id: uuid.UUID) -> list[Milestone]:
        stmt = select(Milestone).where(Milestone.contract_id == contract_id).order_by(Milestone.order)
        return list((await self._session.execute(stmt)).scalars().all())

    async def set_status(self, milestone: Milestone, status: MilestoneStatus) -> None:
        milestone.status = status
        milestone.updated_at = utcnow()
        await self._session.flush()

    async def set_negotiation_status(
        self, milestone: Milestone, status: NegotiationStatus
    ) -> None:
        milestone.negotiation_status = status
        milestone.updated_at = utcnow()
        await self._session.flush()

    # --- approval requirements ------------------------------------------------

    async def get_requirement(self, milestone_id: uuid.UUID) -> MilestoneApprovalRequirement | None:
        stmt = select(MilestoneApprovalRequirement).where(
            MilestoneApprovalRequirement.milestone_id == milestone_id
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def upsert_requirement(
        self,
        *,
        milestone_id: uuid.UUID,
        require_admin_approval: bool,
        require_buyer_approval: bool,
        require_seller_approval: bool,
    ) -> MilestoneApprovalRequirement:
        req = await self.get_requirement(milestone_id)
        if req is None:
            req = MilestoneApprovalRequirement(milestone_id=milestone_id)
            self._session.add(req)
        req.require_admin_approval = require_admin_approval
        req.require_buyer_approval = require_buyer_approval
        req.require_seller_approval = require_seller_approval
        req.updated_at = utcnow()
        await self._session.flush()
        return req

    # --- approvals ------------------------------------------------------------

    async def get_approval(
        self, *, milestone_id: uuid.UUID, approver: str
    ) -> MilestoneApproval | None:
        stmt = select(MilestoneApproval).where(
            MilestoneApproval.milestone_id == milestone_id,
            MilestoneApproval.approver == approver,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def add_approval(
        self,
        *,
        milestone_id: uuid.UUID,
        approver: str,
        approver_is_admin: bool,
        party_id: uuid.UUID | None,
        notes: str | None,
    ) -> MilestoneApproval:
        approval = MilestoneApproval(
            milestone_id=milestone_id,
            approver=approver,
            approver_is_admin=approver_is_admin,
            party_id=party_id,
            notes=notes,
        )
        self._session.add(approval)
        await self._session.flush()
        return approval

    async def list_approvals(self, milestone_id: uuid.UUID) -> list[MilestoneApproval]:
        stmt = (
            select(MilestoneApproval)
            .where(MilestoneApproval.milestone_id == milestone_id)
            .order_by(MilestoneApproval.created_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def clear_approvals(self, milestone_id: uuid.UUID) -> int:
        approvals = await self.list_approvals(milestone_id)
        for approval in approvals:
            await self._session.delete(approval)
        await self._session.flush()
        return len(approvals)

    # --- negotiation responses --------------------------------------------------

    async def upsert_response(
        self,
        *,
        milestone_id: uuid.UUID,
        party_id: uuid.UUID,
        response_type: ResponseType,
        amendment_proposal: dict[str, Any] | None,
        notes: str | None,
        responded_by: str,
    ) -> MilestonePartyResponse:
        stmt = select(MilestonePartyResponse).where(
            MilestonePartyResponse.milestone_id == milestone_id,
            MilestonePartyResponse.party_id == party_id,
        )
        response = (await self._session.execute(stmt)).scalar_one_or_none()
        if response is None:
            response = MilestonePartyResponse(milestone_id=milestone_id, party_id=party_id)
            self._session.add(response)
        # A party may change its answer until the milestone is agreed.
        response.response_type = response_type
        response.amendment_proposal = amendment_proposal
        response.notes = notes
        response.responded_by = responded_by
        response.responded_at = utcnow()
        await self._session.flush()
        return response

    async def list_responses(self, milestone_id: uuid.UUID) -> list[MilestonePartyResponse]:
        stmt = (
            select(MilestonePartyResponse)
            .where(MilestonePartyResponse.milestone_id == milestone_id)
            .order_by(MilestonePartyResponse.responded_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())
