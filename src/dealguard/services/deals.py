"""
dealguard.services.deals

Deal lifecycle service (transaction + persistence owner).

Responsibilities:
- Create deals with their parties, deal number, inbound mailbox and service fee.
- List / fetch deals under the visibility rules.
- Apply status transitions through the lifecycle guards and audit them.
- Advance deals automatically once the facts allow it (`check_and_advance`).
"""

from __future__ import annotations

import math
import secrets
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.auth.access import ensure_deal_access, require_creator_or_staff, require_staff
from dealguard.auth.models import SYSTEM, Principal
from dealguard.db.models import (
    AuditEvent,
    Deal,
    DealStatus,
    InvitationStatus,
    MilestoneStatus,
    NegotiationStatus,
    utcnow,
)
from dealguard.db.repositories.audit import AuditRepo
from dealguard.db.repositories.contracts import ContractRepo
from dealguard.db.repositories.custody import CustodyRepo
from dealguard.db.repositories.deals import DealRepo
from dealguard.db.repositories.disputes import DisputeRepo
from dealguard.db.repositories.evidence import EvidenceRepo
from dealguard.db.repositories.milestones import MilestoneRepo
from dealguard.db.repositories.parties import PartyRepo
from dealguard.domain import lifecycle
from dealguard.domain.fees import calculate_fee
from dealguard.domain.lifecycle import DealSnapshot
from dealguard.errors import InvalidTransitionError, NotFoundError, TransitionBlockedError
from dealguard.observability.context import operation_context
from dealguard.observability.logging import get_logger
from dealguard.schemas import DealCreate
from dealguard.settings import Settings

log = get_logger(__name__)


class DealService:
    def __init__(self, *, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

        self._deals = DealRepo(session)
        self._parties = PartyRepo(session)
        self._contracts = ContractRepo(session)
        self._milestones = MilestoneRepo(session)
        self._evidence = EvidenceRepo(session)
        self._custody = CustodyRepo(session)
        self._disputes = DisputeRepo(session)
        self._audit = AuditRepo(session)

    # --- creation / queries -----------------------------------------------------

    async def create_deal(self, principal: Principal, cmd: DealCreate) -> Deal:
        with operation_context("deal.create", actor=principal.subject):
            fee = calculate_fee(cmd.service_tier, cmd.estimated_value, cmd.currency)

            deal_id = uuid.uuid4()
            year = utcnow().year
            # Sequence follows the global deal count, matching existing numbering.
            deal_number = f"DEAL-{year}-{await self._deals.count() + 1:04d}"
            email_address = f"deal-{deal_id}@{self._settings.inbound_email_domain}"

            deal = await self._deals.create(
                deal_id=deal_id,
                deal_number=deal_number,
                title=cmd.title,
                description=cmd.description,
                creator=principal.subject,
                email_address=email_address,
                service_tier=cmd.service_tier,
                currency=cmd.currency,
                total_amount=cmd.estimated_value,
                service_fee=fee.fee_egp,
                parties=[
                    {
                        "role": p.role,
                        "name": p.name,
                        "contact_email": str(p.contact_email).lower(),
                        "contact_phone": p.contact_phone,
                        "is_organization": p.is_organization,
                        "organization_id": p.organization_id,
                        "invitation_status": InvitationStatus.pending,
                    }
                    for p in cmd.parties
                ],
            )
            await self._audit.add(
                deal_id=deal.id,
                actor=principal.subject,
                event_type="DEAL_CREATED",
                entity_type="Deal",
                entity_id=deal.id,
                new_state={"status": str(deal.status), "deal_number": deal_number},
                details={"service_fee": fee.as_dict(), "party_count": len(cmd.parties)},
            )
            await self._session.commit()
            log.info("deal_created", deal_id=str(deal.id), deal_number=deal_number)
            return deal

    async def list_deals(
        self,
        principal: Principal,
        *,
        status: DealStatus | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> dict[str, Any]:
        limit = max(1, limit or self._settings.default_page_size)
        page = max(page, 1)
        deals, total = await self._deals.list_page(
            status=status,
            visible_to=None if principal.is_staff else principal.subject,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return {
            "items": deals,
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }

    async def get_deal(self, principal: Principal, deal_id: uuid.UUID) -> Deal:
        return await ensure_deal_access(self._session, principal, deal_id)

    async def audit_trail(self, principal: Principal, deal_id: uuid.UUID) -> list[AuditEvent]:
        await ensure_deal_access(self._session, principal, deal_id)
        return await self._audit.list_for_deal(deal_id)

    # --- explicit transitions ---------------------------------------------------

    async def propose_deal(self, principal: Principal, deal_id: uuid.UUID) -> Deal:
        deal = await ensure_deal_access(self._session, principal, deal_id)
        require_creator_or_staff(principal, deal)
        with operation_context("deal.propose", deal_id=deal_id, actor=principal.subject):
            await self.apply_transition(
                deal, DealStatus.proposed, actor=principal.subject, reason="proposed to parties"
            )
            now = utcnow()
            for party in await self._parties.list_for_deal(deal.id):
                await self._parties.set_invitation(
                    party.id,
                    status=InvitationStatus.pending,
                    token=secrets.token_urlsafe(self._settings.invitation_token_bytes),
                    invited_at=now,
                )
                await self._audit.add(
                    deal_id=deal.id,
                    actor=principal.subject,
                    event_type="PARTY_INVITED",
                    entity_type="Party",
                    entity_id=party.id,
                    details={"role": str(party.role), "contact_email": party.contact_email},
                )
            await self._session.commit()
            return deal

    async def update_status(
        self,
        principal: Principal,
        deal_id: uuid.UUID,
        target: DealStatus,
        reason: str | None = None,
    ) -> Deal:
        require_staff(principal)
        deal = await ensure_deal_access(self._session, principal, deal_id)
        with operation_context("deal.update_status", deal_id=deal_id, actor=principal.subject):
            await self.apply_transition(deal, target, actor=principal.subject, reason=reason)
            await self._session.commit()
            return deal

    async def cancel_deal(
        self, principal: Principal, deal_id: uuid.UUID, reason: str | None = None
    ) -> Deal:
        deal = await ensure_deal_access(self._session, principal, deal_id)
        require_creator_or_staff(principal, deal)
        with operation_context("deal.cancel", deal_id=deal_id, actor=principal.subject):
            await self.apply_transition(
                deal, DealStatus.cancelled, actor=principal.subject, reason=reason
            )
            await self._session.commit()
            return deal

    async def apply_transition(
        self,
        deal: Deal,
        target: DealStatus,
        *,
        actor: str,
        reason: str | None = None,
    ) -> None:
        """
        Validate and persist one status change (no commit).

        Raises InvalidTransitionError / TransitionBlockedError without touching the deal.
        """

        old = deal.status
        snapshot = await self.snapshot(deal.id)
        try:
            lifecycle.assert_transition(old, target, snapshot)
        except (InvalidTransitionError, TransitionBlockedError) as e:
            log.info(
                "deal_transition_rejected",
                deal_id=str(deal.id),
                from_status=str(old),
                to_status=str(target),
                error=str(e),
            )
            raise

        closed_at = utcnow() if lifecycle.is_terminal(target) else None
        await self._deals.set_status(deal.id, target, closed_at=closed_at)
        await self._audit.add(
            deal_id=deal.id,
            actor=actor,
            event_type="DEAL_STATUS_CHANGED",
            entity_type="Deal",
            entity_id=deal.id,
            old_state={"status": str(old)},
            new_state={"status": str(target)},
            details={"reason": reason} if reason else {},
        )
        if target == DealStatus.funded_verified:
            await self._start_milestones(deal.id, actor=actor)
        log.info(
            "deal_transition", deal_id=str(deal.id), from_status=str(old), to_status=str(target)
        )

    async def _start_milestones(self, deal_id: uuid.UUID, *, actor: str) -> None:
        contract = await self._contracts.effective_for_deal(deal_id)
        if contract is None:
            return
        for m in await self._milestones.list_for_contract(contract.id):
            if m.status != MilestoneStatus.pending:
                continue
            await self._milestones.set_status(m, MilestoneStatus.in_progress)
            await self._audit.add(
                deal_id=deal_id,
                actor=actor,
                event_type="MILESTONE_STARTED",
                entity_type="Milestone",
                entity_id=m.id,
                old_state={"status": str(MilestoneStatus.pending)},
                new_state={"status": str(MilestoneStatus.in_progress)},
            )

    # --- automatic advancement ----------------------------------------------------

    async def check_and_advance(
        self, deal_id: uuid.UUID, *, actor: str = SYSTEM.subject, commit: bool = True
    ) -> dict[str, Any]:
        deal = await self._deals.get(deal_id)
        if deal is None:
            raise NotFoundError(f"deal {deal_id} not found")

        with operation_context("deal.check_and_advance", deal_id=deal_id, actor=actor):
            path: list[str] = []
            while True:
                snapshot = await self.snapshot(deal.id)
                target = lifecycle.next_automatic_status(deal.status, snapshot)
                if target is None:
                    break
                await self.apply_transition(
                    deal, target, actor=actor, reason="automatic: guards satisfied"
                )
                path.append(str(target))

            pending_target = lifecycle.AUTOMATIC_PATH.get(deal.status)
            remaining = (
                lifecycle.blockers(pending_target, await self.snapshot(deal.id))
                if pending_target is not None
                else []
            )
            if commit:
                await self._session.commit()

        if path:
            reason = "advanced to " + " -> ".join(path)
        elif lifecycle.is_terminal(deal.status):
            reason = "deal is closed"
        elif pending_target is None:
            reason = "next step requires an explicit action"
        else:
            reason = "waiting on: " + "; ".join(remaining)
        return {
            "advanced": bool(path),
            "status": str(deal.status),
            "reason": reason,
            "blockers": remaining,
        }

    # --- reporting ------------------------------------------------------------------

    async def snapshot(self, deal_id: uuid.UUID) -> DealSnapshot:
        parties = await self._parties.list_for_deal(deal_id)
        contract = await self._contracts.effective_for_deal(deal_id)
        if contract is None:
            contract = await self._contracts.latest_for_deal(deal_id)
        milestones = (
            await self._milestones.list_for_contract(contract.id) if contract is not None else []
        )
        custody = await self._custody.list_for_deal(deal_id)
        return DealSnapshot(
            party_count=len(parties),
            invitation_statuses=tuple(p.invitation_status for p in parties),
            milestone_negotiation=tuple(m.negotiation_status for m in milestones),
            milestone_statuses=tuple(m.status for m in milestones),
            has_effective_contract=contract is not None and contract.is_effective,
            custody_statuses=tuple(r.status for r in custody),
            open_disputes=await self._disputes.count_open(deal_id),
            usable_evidence=await self._evidence.count_usable(deal_id),
        )

    async def progress(self, principal: Principal, deal_id: uuid.UUID) -> dict[str, Any]:
        deal = await ensure_deal_access(self._session, principal, deal_id)
        snapshot = await self.snapshot(deal.id)

        accepted_parties = sum(
            1 for s in snapshot.invitation_statuses if s == InvitationStatus.accepted
        )
        milestone_count = len(snapshot.milestone_statuses)
        agreed = sum(1 for s in snapshot.milestone_negotiation if s == NegotiationStatus.agreed)
        approved = sum(1 for s in snapshot.milestone_statuses if s == MilestoneStatus.approved)

        next_steps = {
            str(target): lifecycle.blockers(target, snapshot)
            for target in sorted(lifecycle.allowed_targets(deal.status))
        }
        ready_for_release = deal.status == DealStatus.in_verification and not lifecycle.blockers(
            DealStatus.release_authorized, snapshot
        )
        return {
            "deal_id": str(deal.id),
            "deal_number": deal.deal_number,
            "status": str(deal.status),
            "parties": {"total": snapshot.party_count, "accepted": accepted_parties},
            "milestones": {"total": milestone_count, "agreed": agreed, "approved": approved},
            "percent_complete": round(100 * approved / milestone_count) if milestone_count else 0,
            "ready_for_release": ready_for_release,
            "next_steps": next_steps,
        }


# --- Module Notes -----------------------------------------------------------
# Other services call `apply_transition` / `check_and_advance(commit=False)` inside
# their own unit of work so the triggering change and the status change commit together.
