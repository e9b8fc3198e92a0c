"""
dealguard.services.disputes

Dispute + mediation service.

Responsibilities:
- Open disputes on a deal, freezing the affected milestone.
- Track mediation notes and the mediation stage.
- Resolve disputes and restore frozen milestones.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.auth.access import ensure_deal_access, require_staff
from dealguard.auth.models import Principal
from dealguard.db.models import Dispute, DisputeStatus, MilestoneStatus, utcnow
from dealguard.db.repositories.audit import AuditRepo
from dealguard.db.repositories.disputes import DisputeRepo
from dealguard.db.repositories.milestones import MilestoneRepo
from dealguard.db.repositories.parties import PartyRepo
from dealguard.domain import lifecycle
from dealguard.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from dealguard.observability.context import operation_context
from dealguard.observability.logging import get_logger
from dealguard.settings import Settings

log = get_logger(__name__)


class DisputeService:
    def __init__(self, *, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

        self._disputes = DisputeRepo(session)
        self._milestones = MilestoneRepo(session)
        self._parties = PartyRepo(session)
        self._audit = AuditRepo(session)

    async def _get(self, dispute_id: uuid.UUID) -> Dispute:
        dispute = await self._disputes.get(dispute_id)
        if dispute is None:
            raise NotFoundError(f"dispute {dispute_id} not found")
        return dispute

    async def open_dispute(
        self,
        principal: Principal,
        deal_id: uuid.UUID,
        issue_type: str,
        narrative: str,
        milestone_id: uuid.UUID | None = None,
    ) -> Dispute:
        deal = await ensure_deal_access(self._session, principal, deal_id)
        if not principal.is_staff and not await self._parties.parties_of_member(
            deal.id, principal.subject
        ):
            raise PermissionDeniedError("only party members or staff may open a dispute")
        if not issue_type.strip() or not narrative.strip():
            raise ValidationError("issue type and narrative are required")

        with operation_context("dispute.open", deal_id=deal.id, actor=principal.subject):
            if lifecycle.is_terminal(deal.status):
                raise ConflictError(f"deal is {deal.status}")

            milestone = None
            if milestone_id is not None:
                milestone = await self._milestones.get(milestone_id)
                if milestone is None or milestone.deal_id != deal.id:
                    raise ValidationError("milestone does not belong to this deal")

            dispute = await self._disputes.create(
                deal_id=deal.id,
                milestone_id=milestone_id,
                issue_type=issue_type.strip(),
                narrative=narrative,
                raised_by=principal.subject,
                milestone_frozen=milestone is not None,
            )
            await self._audit.add(
                deal_id=deal.id,
                actor=principal.subject,
                event_type="DISPUTE_OPENED",
                entity_type="Dispute",
                entity_id=dispute.id,
                new_state={"status": str(dispute.status)},
                details={
                    "issue_type": dispute.issue_type,
                    "milestone_id": str(milestone_id) if milestone_id else None,
                },
            )
            if milestone is not None and milestone.status != MilestoneStatus.disputed:
                old = milestone.status
                await self._milestones.set_status(milestone, MilestoneStatus.disputed)
                # A frozen milestone goes through a fresh review round once unfrozen.
                cleared = await self._milestones.clear_approvals(milestone.id)
                await self._audit.add(
                    deal_id=deal.id,
                    actor=principal.subject,
                    event_type="MILESTONE_FROZEN",
                    entity_type="Milestone",
                    entity_id=milestone.id,
                    old_state={"status": str(old)},
                    new_state={"status": str(MilestoneStatus.disputed)},
                    details={"dispute_id": str(dispute.id), "approvals_cleared": cleared},
                )
            await self._session.commit()
            log.info("dispute_opened", dispute_id=str(dispute.id))
            return dispute

    async def add_mediation_note(
        self, principal: Principal, dispute_id: uuid.UUID, note: str
    ) -> Dispute:
        require_staff(principal)
        dispute = await self._get(dispute_id)
        with operation_context("dispute.note", deal_id=dispute.deal_id, actor=principal.subject):
            if dispute.status == DisputeStatus.resolved:
                raise ConflictError("dispute is already resolved")
            if not note.strip():
                raise ValidationError("note is empty")

            # JSON columns are not mutation-tracked; assign a new list.
            dispute.mediation_notes = [
                *dispute.mediation_notes,
                {"author": principal.subject, "note": note, "at": utcnow().isoformat()},
            ]
            dispute.updated_at = utcnow()
            await self._disputes.flush()
            await self._audit.add(
                deal_id=dispute.deal_id,
                actor=principal.subject,
                event_type="DISPUTE_NOTE_ADDED",
                entity_type="Dispute",
                entity_id=dispute.id,
                details={"note_count": len(dispute.mediation_notes)},
            )
            await self._session.commit()
            return dispute

    async def advance_dispute(
        self, principal: Principal, dispute_id: uuid.UUID, status: DisputeStatus
    ) -> Dispute:
        require_staff(principal)
        dispute = await self._get(dispute_id)
        with operation_context(
            "dispute.advance", deal_id=dispute.deal_id, actor=principal.subject
        ):
            if dispute.status == DisputeStatus.resolved:
                raise ConflictError("dispute is already resolved")
            if status == DisputeStatus.resolved:
                raise ValidationError("use resolve_dispute to resolve a dispute")

            old = dispute.status
            dispute.status = status
            dispute.updated_at = utcnow()
            await self._disputes.flush()
            await self._audit.add(
                deal_id=dispute.deal_id,
                actor=principal.subject,
                event_type="DISPUTE_STATUS_CHANGED",
                entity_type="Dispute",
                entity_id=dispute.id,
                old_state={"status": str(old)},
                new_state={"status": str(status)},
            )
            await self._session.commit()
            return dispute

    async def resolve_dispute(
        self,
        principal: Principal,
        dispute_id: uuid.UUID,
        notes: str,
        resolution: dict[str, Any] | None = None,
    ) -> Dispute:
        require_staff(principal)
        dispute = await self._get(dispute_id)
        with operation_context(
            "dispute.resolve", deal_id=dispute.deal_id, actor=principal.subject
        ):
            if dispute.status == DisputeStatus.resolved:
                raise ConflictError("dispute is already resolved")

            old = dispute.status
            now = utcnow()
            dispute.status = DisputeStatus.resolved
            dispute.final_resolution = {"notes": notes, **(resolution or {})}
            dispute.resolved_by = principal.subject
            dispute.resolved_at = now
            dispute.updated_at = now
            await self._disputes.flush()
            await self._audit.add(
                deal_id=dispute.deal_id,
                actor=principal.subject,
                event_type="DISPUTE_RESOLVED",
                entity_type="Dispute",
                entity_id=dispute.id,
                old_state={"status": str(old)},
                new_state={"status": str(DisputeStatus.resolved)},
                details={"notes": notes},
            )
            if dispute.milestone_frozen and dispute.milestone_id is not None:
                await self._unfreeze(dispute, actor=principal.subject)
            await self._session.commit()
            log.info("dispute_resolved", dispute_id=str(dispute.id))
            return dispute

    async def _unfreeze(self, dispute: Dispute, *, actor: str) -> None:
        milestone = await self._milestones.get(dispute.milestone_id)
        if milestone is None or milestone.status != MilestoneStatus.disputed:
            return
        # Another open dispute on the same milestone keeps it frozen.
        for other in await self._disputes.list_for_deal(dispute.deal_id):
            if (
                other.id != dispute.id
                and other.milestone_id == milestone.id
                and other.status != DisputeStatus.resolved
            ):
                return
        await self._milestones.set_status(milestone, MilestoneStatus.in_progress)
        await self._audit.add(
            deal_id=dispute.deal_id,
            actor=actor,
            event_type="MILESTONE_UNFROZEN",
            entity_type="Milestone",
            entity_id=milestone.id,
            old_state={"status": str(MilestoneStatus.disputed)},
            new_state={"status": str(MilestoneStatus.in_progress)},
            details={"dispute_id": str(dispute.id)},
        )

    async def list_disputes(self, principal: Principal, deal_id: uuid.UUID) -> list[Dispute]:
        await ensure_deal_access(self._session, principal, deal_id)
        return await self._disputes.list_for_deal(deal_id)

    async def list_open_disputes(self, principal: Principal) -> list[Dispute]:
        require_staff(principal)
        return await self._disputes.list_open()
