"""
dealguard.services.milestones

Milestone execution + approval quorum service.

Responsibilities:
- Configure which roles must approve a milestone.
- Move milestones to READY_FOR_REVIEW once their required evidence is accepted.
- Record approvals and auto-approve milestones when the quorum is met.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.auth.access import ensure_deal_access, ensure_party_member, require_staff
from dealguard.auth.models import SYSTEM, Principal
from dealguard.db.models import (
    Milestone,
    MilestoneApproval,
    MilestoneStatus,
    PartyRole,
)
from dealguard.db.repositories.audit import AuditRepo
from dealguard.db.repositories.contracts import ContractRepo
from dealguard.db.repositories.evidence import EvidenceRepo
from dealguard.db.repositories.milestones import MilestoneRepo
from dealguard.db.repositories.parties import PartyRepo
from dealguard.domain.quorum import (
    ApprovalFact,
    ApprovalRequirement,
    missing_approvals,
    missing_evidence_types,
)
from dealguard.errors import ConflictError, NotFoundError, ValidationError
from dealguard.observability.context import operation_context
from dealguard.observability.logging import get_logger
from dealguard.settings import Settings

log = get_logger(__name__)

READINESS_SOURCES = frozenset({MilestoneStatus.pending, MilestoneStatus.in_progress})


class MilestoneService:
    def __init__(self, *, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

        self._milestones = MilestoneRepo(session)
        self._contracts = ContractRepo(session)
        self._evidence = EvidenceRepo(session)
        self._parties = PartyRepo(session)
        self._audit = AuditRepo(session)

    async def _get(self, milestone_id: uuid.UUID) -> Milestone:
        milestone = await self._milestones.get(milestone_id)
        if milestone is None:
            raise NotFoundError(f"milestone {milestone_id} not found")
        return milestone

    async def get_milestone(self, principal: Principal, milestone_id: uuid.UUID) -> Milestone:
        milestone = await self._get(milestone_id)
        await ensure_deal_access(self._session, principal, milestone.deal_id)
        return milestone

    async def list_milestones(self, principal: Principal, contract_id: uuid.UUID) -> list[Milestone]:
        contract = await self._contracts.get(contract_id)
        if contract is None:
            raise NotFoundError(f"contract {contract_id} not found")
        await ensure_deal_access(self._session, principal, contract.deal_id)
        return await self._milestones.list_for_contract(contract.id)

    async def get_requirement(self, milestone_id: uuid.UUID) -> ApprovalRequirement:
        req = await self._milestones.get_requirement(milestone_id)
        if req is None:
            return ApprovalRequirement()
        return ApprovalRequirement(
            require_admin=req.require_admin_approval,
            require_buyer=req.require_buyer_approval,
            require_seller=req.require_seller_approval,
        )

    async def set_approval_requirements(
        self,
        principal: Principal,
        milestone_id: uuid.UUID,
        *,
        admin: bool = True,
        buyer: bool = False,
        seller: bool = False,
    ) -> ApprovalRequirement:
        require_staff(principal)
        milestone = await self._get(milestone_id)
        if not (admin or buyer or seller):
            raise ValidationError("at least one approval must be required")

        with operation_context(
            "milestone.set_requirements", deal_id=milestone.deal_id, actor=principal.subject
        ):
            old = await self.get_requirement(milestone.id)
            await self._milestones.upsert_requirement(
                milestone_id=milestone.id,
                require_admin_approval=admin,
                require_buyer_approval=buyer,
                require_seller_approval=seller,
            )
            await self._audit.add(
                deal_id=milestone.deal_id,
                actor=principal.subject,
                event_type="MILESTONE_APPROVAL_REQUIREMENTS_SET",
                entity_type="Milestone",
                entity_id=milestone.id,
                old_state={
                    "admin": old.require_admin,
                    "buyer": old.require_buyer,
                    "seller": old.require_seller,
                },
                new_state={"admin": admin, "buyer": buyer, "seller": seller},
            )
            # Relaxing the quorum can complete it.
            if milestone.status == MilestoneStatus.ready_for_review:
                await self._maybe_approve(milestone, actor=principal.subject)
            await self._session.commit()
            return await self.get_requirement(milestone.id)

    async def check_evidence_completeness(self, milestone_id: uuid.UUID) -> dict[str, Any]:
        milestone = await self._get(milestone_id)
        required = list(milestone.required_evidence_types or [])
        accepted = await self._evidence.list_accepted_for_milestone(milestone.id)
        missing = missing_evidence_types(required, [e.subject for e in accepted])
        return {
            "complete": not missing,
            "required": required,
            "missing": missing,
            "accepted_items": len(accepted),
        }

    async def evaluate_readiness(
        self, milestone_id: uuid.UUID, *, actor: str = SYSTEM.subject, commit: bool = True
    ) -> bool:
        """
        Move a PENDING / IN_PROGRESS milestone to READY_FOR_REVIEW when its
        evidence is complete. Returns True when the milestone changed status.
        """

        milestone = await self._get(milestone_id)
        if milestone.status not in READINESS_SOURCES:
            return False
        completeness = await self.check_evidence_completeness(milestone.id)
        if not completeness["complete"]:
            return False

        old = milestone.status
        await self._milestones.set_status(milestone, MilestoneStatus.ready_for_review)
        await self._audit.add(
            deal_id=milestone.deal_id,
            actor=actor,
            event_type="MILESTONE_READY_FOR_REVIEW",
            entity_type="Milestone",
            entity_id=milestone.id,
            old_state={"status": str(old)},
            new_state={"status": str(MilestoneStatus.ready_for_review)},
            details={"required_evidence": completeness["required"]},
        )
        if commit:
            await self._session.commit()
        log.info("milestone_ready_for_review", milestone_id=str(milestone.id))
        return True

    async def submit_approval(
        self,
        principal: Principal,
        milestone_id: uuid.UUID,
        *,
        party_id: uuid.UUID | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        milestone = await self._get(milestone_id)
        await ensure_deal_access(self._session, principal, milestone.deal_id)
        if party_id is not None:
            party = await ensure_party_member(self._session, principal, party_id)
            if party.deal_id != milestone.deal_id:
                raise ValidationError("party does not belong to this milestone's deal")

        with operation_context(
            "milestone.approve",
            deal_id=milestone.deal_id,
            actor=principal.subject,
            milestone_id=milestone.id,
        ):
            if milestone.status != MilestoneStatus.ready_for_review:
                raise ConflictError(f"milestone is {milestone.status}, not READY_FOR_REVIEW")
            existing = await self._milestones.get_approval(
                milestone_id=milestone.id, approver=principal.subject
            )
            if existing is not None:
                raise ConflictError("approver has already approved this milestone")

            approval = await self._milestones.add_approval(
                milestone_id=milestone.id,
                approver=principal.subject,
                approver_is_admin=principal.is_admin,
                party_id=party_id,
                notes=notes,
            )
            await self._audit.add(
                deal_id=milestone.deal_id,
                actor=principal.subject,
                event_type="MILESTONE_APPROVAL_SUBMITTED",
                entity_type="Milestone",
                entity_id=milestone.id,
                details={
                    "approval_id": str(approval.id),
                    "party_id": str(party_id) if party_id else None,
                    "as_admin": principal.is_admin,
                },
            )
            missing = await self._maybe_approve(milestone, actor=principal.subject)
            await self._session.commit()
            return {
                "approval_id": str(approval.id),
                "milestone_status": str(milestone.status),
                "missing_approvals": missing,
            }

    async def missing_approvals(self, milestone: Milestone) -> list[str]:
        requirement = await self.get_requirement(milestone.id)
        approvals = await self._milestones.list_approvals(milestone.id)
        buyer = await self._parties.find_by_role(milestone.deal_id, PartyRole.buyer)
        seller = await self._parties.find_by_role(milestone.deal_id, PartyRole.seller)
        return missing_approvals(
            requirement,
            [ApprovalFact(a.approver_is_admin, a.party_id) for a in approvals],
            buyer_party_id=buyer.id if buyer else None,
            seller_party_id=seller.id if seller else None,
        )

    async def _maybe_approve(self, milestone: Milestone, *, actor: str) -> list[str]:
        missing = await self.missing_approvals(milestone)
        if missing:
            return missing
        await self._milestones.set_status(milestone, MilestoneStatus.approved)
        await self._audit.add(
            deal_id=milestone.deal_id,
            actor=actor,
            event_type="MILESTONE_APPROVED",
            entity_type="Milestone",
            entity_id=milestone.id,
            old_state={"status": str(MilestoneStatus.ready_for_review)},
            new_state={"status": str(MilestoneStatus.approved)},
        )
        log.info("milestone_approved", milestone_id=str(milestone.id))
        return []

    async def list_approvals(
        self, principal: Principal, milestone_id: uuid.UUID
    ) -> list[MilestoneApproval]:
        milestone = await self._get(milestone_id)
        await ensure_deal_access(self._session, principal, milestone.deal_id)
        return await self._milestones.list_approvals(milestone.id)
