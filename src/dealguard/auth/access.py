"""
dealguard.auth.access

Access-control rules for service operations.

Responsibilities:
- Decide whether a principal may see / act on a deal (staff, creator, party member).
- Enforce staff-only and party-membership checks with domain errors.
"""

from __future__ import annotations

import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.auth.models import Principal
from dealguard.db.models import Deal, Party
from dealguard.db.repositories.deals import DealRepo
from dealguard.db.repositories.parties import PartyRepo
from dealguard.errors import NotFoundError, PermissionDeniedError


async def can_access_deal(session: AsyncSession, principal: Principal, deal: Deal) -> bool:
    if principal.is_staff or deal.creator == principal.subject:
        return True
    parties = await PartyRepo(session).parties_of_member(deal.id, principal.subject)
    return bool(parties)


async def ensure_deal_access(
    session: AsyncSession, principal: Principal, deal_id: uuid.UUID
) -> Deal:
    deal = await DealRepo(session).get(deal_id)
    # Invisible deals are reported as missing so their existence does not leak.
    if deal is None or not await can_access_deal(session, principal, deal):
        raise NotFoundError(f"deal {deal_id} not found")
    return deal


def require_staff(principal: Principal) -> None:
    if not principal.is_staff:
        raise PermissionDeniedError("staff role required")


def require_creator_or_staff(principal: Principal, deal: Deal) -> None:
    if not (principal.is_staff or deal.creator == principal.subject):
        raise PermissionDeniedError("only the deal creator or staff may do this")


async def ensure_party_member(
    session: AsyncSession, principal: Principal, party_id: uuid.UUID
) -> Party:
    repo = PartyRepo(session)
    party = await repo.get(party_id)
    if party is None:
        raise NotFoundError(f"party {party_id} not found")
    if await repo.get_member(party_id=party_id, user_subject=principal.subject) is None:
        raise PermissionDeniedError("principal is not a member of this party")
    return party


# --- Module Notes -----------------------------------------------------------
# Membership is created when an invitation is accepted (services.invitations).
