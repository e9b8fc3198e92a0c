"""
dealguard.services.invitations

Party invitation service.

Responsibilities:
- Resolve invitation tokens to a party + deal summary.
- Record acceptance (binding the caller to the party) or decline.
- Rotate tokens for pending parties and report acceptance progress.
"""

from __future__ import annotations

import secrets
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.auth.access import ensure_deal_access, require_creator_or_staff
from dealguard.auth.models import Principal
from dealguard.db.models import Deal, InvitationStatus, Party, utcnow
from dealguard.db.repositories.audit import AuditRepo
from dealguard.db.repositories.deals import DealRepo
from dealguard.db.repositories.parties import PartyRepo
from dealguard.domain import lifecycle
from dealguard.errors import ConflictError, NotFoundError
from dealguard.observability.context import operation_context
from dealguard.observability.logging import get_logger
from dealguard.services.deals import DealService
from dealguard.settings import Settings

log = get_logger(__name__)


def _party_summary(party: Party) -> dict[str, Any]:
    return {
        "id": str(party.id),
        "role": str(party.role),
        "name": party.name,
        "invitation_status": str(party.invitation_status),
    }


class InvitationService:
    def __init__(self, *, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

        self._deals = DealRepo(session)
        self._parties = PartyRepo(session)
        self._audit = AuditRepo(session)
        self._deal_service = DealService(session=session, settings=settings)

    async def _resolve(self, token: str) -> tuple[Party, Deal]:
        party = await self._parties.get_by_token(token) if token else None
        if party is None:
            raise NotFoundError("invitation not found")
        deal = await self._deals.get(party.deal_id)
        if deal is None:
            raise NotFoundError("invitation not found")
        return party, deal

    async def get_invitation(self, token: str) -> dict[str, Any]:
        party, deal = await self._resolve(token)
        parties = await self._parties.list_for_deal(deal.id)
        return {
            "party": {**_party_summary(party), "contact_email": party.contact_email},
            "deal": {
                "id": str(deal.id),
                "deal_number": deal.deal_number,
                "title": deal.title,
                "status": str(deal.status),
                "parties": [_party_summary(p) for p in parties],
            },
        }

    async def accept_invitation(self, principal: Principal, token: str) -> dict[str, Any]:
        party, deal = await self._resolve(token)
        with operation_context("invitation.accept", deal_id=deal.id, actor=principal.subject):
            if party.invitation_status == InvitationStatus.accepted:
                return {
                    "already_accepted": True,
                    "all_parties_accepted": await self._all_accepted(deal.id),
                    "deal_id": str(deal.id),
                    "deal_number": deal.deal_number,
                }
            if party.invitation_status == InvitationStatus.declined:
                raise ConflictError("invitation was declined and can no longer be accepted")
            if lifecycle.is_terminal(deal.status):
                raise ConflictError(f"deal is {deal.status}")

            await self._parties.set_invitation(
                party.id, status=InvitationStatus.accepted, responded_at=utcnow()
            )
            await self._parties.add_member(party_id=party.id, user_subject=principal.subject)
            await self._audit.add(
                deal_id=deal.id,
                actor=principal.subject,
                event_type="PARTY_ACCEPTED_INVITATION",
                entity_type="Party",
                entity_id=party.id,
                old_state={"invitation_status": str(InvitationStatus.pending)},
                new_state={"invitation_status": str(InvitationStatus.accepted)},
            )
            await self._deal_service.check_and_advance(deal.id, commit=False)
            await self._session.commit()
            log.info("invitation_accepted", party_id=str(party.id))

            return {
                "already_accepted": False,
                "all_parties_accepted": await self._all_accepted(deal.id),
                "deal_id": str(deal.id),
                "deal_number": deal.deal_number,
            }

    async def decline_invitation(self, token: str, reason: str | None = None) -> Party:
        party, deal = await self._resolve(token)
        with operation_context("invitation.decline", deal_id=deal.id, actor=party.contact_email):
            if party.invitation_status == InvitationStatus.accepted:
                raise ConflictError("invitation was already accepted")
            if party.invitation_status == InvitationStatus.declined:
                return party

            await self._parties.set_invitation(
                party.id, status=InvitationStatus.declined, responded_at=utcnow()
            )
            await self._audit.add(
                deal_id=deal.id,
                actor=party.contact_email,
                event_type="PARTY_DECLINED_INVITATION",
                entity_type="Party",
                entity_id=party.id,
                old_state={"invitation_status": str(InvitationStatus.pending)},
                new_state={"invitation_status": str(InvitationStatus.declined)},
                details={"reason": reason} if reason else {},
            )
            await self._session.commit()
            log.info("invitation_declined", party_id=str(party.id))
            return party

    async def resend_invitation(self, principal: Principal, party_id: uuid.UUID) -> Party:
        party = await self._parties.get(party_id)
        if party is None:
            raise NotFoundError(f"party {party_id} not found")
        deal = await ensure_deal_access(self._session, principal, party.deal_id)
        require_creator_or_staff(principal, deal)

        with operation_context("invitation.resend", deal_id=deal.id, actor=principal.subject):
            if party.invitation_status != InvitationStatus.pending:
                raise ConflictError(f"invitation is {party.invitation_status}")
            if party.invited_at is None:
                raise ConflictError("deal has not been proposed yet")

            await self._parties.set_invitation(
                party.id,
                status=InvitationStatus.pending,
                token=secrets.token_urlsafe(self._settings.invitation_token_bytes),
                invited_at=utcnow(),
            )
            await self._audit.add(
                deal_id=deal.id,
                actor=principal.subject,
                event_type="INVITATION_RESENT",
                entity_type="Party",
                entity_id=party.id,
            )
            await self._session.commit()
            return party

    async def acceptance_status(self, principal: Principal, deal_id: uuid.UUID) -> dict[str, Any]:
        await ensure_deal_access(self._session, principal, deal_id)
        parties = await self._parties.list_for_deal(deal_id)
        by_status = {s: [p for p in parties if p.invitation_status == s] for s in InvitationStatus}
        return {
            "total": len(parties),
            "accepted": len(by_status[InvitationStatus.accepted]),
            "pending": len(by_status[InvitationStatus.pending]),
            "declined": len(by_status[InvitationStatus.declined]),
            "all_accepted": bool(parties)
            and len(by_status[InvitationStatus.accepted]) == len(parties),
            "pending_parties": [_party_summary(p) for p in by_status[InvitationStatus.pending]],
        }

    async def _all_accepted(self, deal_id: uuid.UUID) -> bool:
        parties = await self._parties.list_for_deal(deal_id)
        return bool(parties) and all(p.invitation_status == InvitationStatus.accepted for p in parties)
