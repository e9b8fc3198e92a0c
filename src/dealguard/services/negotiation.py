"""
dealguard.services.negotiation

Milestone negotiation service.

Responsibilities:
- Record each party's response to a milestone's terms (accept / reject / amend).
- Recompute the milestone's negotiation status from all responses.
- Summarize negotiation progress per milestone and per deal.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.auth.access import ensure_deal_access, ensure_party_member
from dealguard.auth.models import Principal
from dealguard.db.models import (
    DealStatus,
    Milestone,
    MilestonePartyResponse,
    NegotiationStatus,
)
from dealguard.db.repositories.audit import AuditRepo
from dealguard.db.repositories.contracts import ContractRepo
from dealguard.db.repositories.deals import DealRepo
from dealguard.db.repositories.milestones import MilestoneRepo
from dealguard.db.repositories.parties import PartyRepo
from dealguard.domain.quorum import negotiation_outcome, summarize_responses
from dealguard.errors import ConflictError, NotFoundError, ValidationError
from dealguard.observability.context import operation_context
from dealguard.observability.logging import get_logger
from dealguard.schemas import MilestoneResponse
from dealguard.services.deals import DealService
from dealguard.settings import Settings

log = get_logger(__name__)

NEGOTIABLE_STATUSES = frozenset(
    {DealStatus.draft, DealStatus.proposed, DealStatus.accepted_by_all}
)


def _response_dict(r: MilestonePartyResponse) -> dict[str, Any]:
    return {
        "party_id": str(r.party_id),
        "response_type": str(r.response_type),
        "amendment_proposal": r.amendment_proposal,
        "notes": r.notes,
        "responded_by": r.responded_by,
        "responded_at": r.responded_at.isoformat(),
    }


class NegotiationService:
    def __init__(self, *, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

        self._deals = DealRepo(session)
        self._parties = PartyRepo(session)
        self._contracts = ContractRepo(session)
        self._milestones = MilestoneRepo(session)
        self._audit = AuditRepo(session)
        self._deal_service = DealService(session=session, settings=settings)

    async def _milestone(self, milestone_id: uuid.UUID) -> Milestone:
        milestone = await self._milestones.get(milestone_id)
        if milestone is None:
            raise NotFoundError(f"milestone {milestone_id} not found")
        return milestone

    async def submit_response(
        self,
        principal: Principal,
        milestone_id: uuid.UUID,
        party_id: uuid.UUID,
        cmd: MilestoneResponse,
    ) -> Milestone:
        milestone = await self._milestone(milestone_id)
        party = await ensure_party_member(self._session, principal, party_id)
        if party.deal_id != milestone.deal_id:
            raise ValidationError("party does not belong to this milestone's deal")
        deal = await self._deals.get(milestone.deal_id)
        if deal is None:
            raise NotFoundError(f"deal {milestone.deal_id} not found")

        with operation_context(
            "milestone.respond", deal_id=deal.id, actor=principal.subject, milestone_id=milestone.id
        ):
            if deal.status not in NEGOTIABLE_STATUSES:
                raise ConflictError(f"milestone terms are locked once the deal is {deal.status}")

            await self._milestones.upsert_response(
                milestone_id=milestone.id,
                party_id=party.id,
                response_type=cmd.response_type,
                amendment_proposal=cmd.amendment_proposal,
                notes=cmd.notes,
                responded_by=principal.subject,
            )

            old = milestone.negotiation_status
            parties = await self._parties.list_for_deal(deal.id)
            responses = await self._milestones.list_responses(milestone.id)
            new = negotiation_outcome(len(parties), [r.response_type for r in responses])
            if new != old:
                await self._milestones.set_negotiation_status(milestone, new)

            await self._audit.add(
                deal_id=deal.id,
                actor=principal.subject,
                event_type="MILESTONE_RESPONSE_SUBMITTED",
                entity_type="Milestone",
                entity_id=milestone.id,
                old_state={"negotiation_status": str(old)},
                new_state={"negotiation_status": str(new)},
                details={"party_id": str(party.id), "response_type": str(cmd.response_type)},
            )
            await self._deal_service.check_and_advance(deal.id, commit=False)
            await self._session.commit()
            log.info("milestone_response", negotiation_status=str(new))
            return milestone

    async def milestone_responses(
        self, principal: Principal, milestone_id: uuid.UUID
    ) -> dict[str, Any]:
        milestone = await self._milestone(milestone_id)
        await ensure_deal_access(self._session, principal, milestone.deal_id)

        parties = await self._parties.list_for_deal(milestone.deal_id)
        responses = await self._milestones.list_responses(milestone.id)
        summary = summarize_responses(len(parties), [r.response_type for r in responses])
        return {
            "milestone_id": str(milestone.id),
            "negotiation_status": str(milestone.negotiation_status),
            "responses": [_response_dict(r) for r in responses],
            "summary": summary.as_dict(),
        }

    async def deal_negotiation_status(
        self, principal: Principal, deal_id: uuid.UUID
    ) -> dict[str, Any]:
        await ensure_deal_access(self._session, principal, deal_id)
        contract = await self._contracts.effective_for_deal(deal_id)
        if contract is None:
            contract = await self._contracts.latest_for_deal(deal_id)
        if contract is None:
            return {"deal_id": str(deal_id), "contract_id": None, "milestones": []}

        parties = await self._parties.list_for_deal(deal_id)
        mine_ids = await self._parties.parties_of_member(deal_id, principal.subject)
        my_party_ids = {p.id for p in mine_ids}

        items = []
        for m in await self._milestones.list_for_contract(contract.id):
            responses = await self._milestones.list_responses(m.id)
            mine = next((r for r in responses if r.party_id in my_party_ids), None)
            items.append(
                {
                    "milestone_id": str(m.id),
                    "order": m.order,
                    "title": m.title,
                    "negotiation_status": str(m.negotiation_status),
                    "summary": summarize_responses(
                        len(parties), [r.response_type for r in responses]
                    ).as_dict(),
                    "my_response": _response_dict(mine) if mine else None,
                }
            )
        all_agreed = bool(items) and all(
            i["negotiation_status"] == NegotiationStatus.agreed for i in items
        )
        return {
            "deal_id": str(deal_id),
            "contract_id": str(contract.id),
            "all_agreed": all_agreed,
            "milestones": items,
        }
