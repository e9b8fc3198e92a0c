from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.db.models import InvitationStatus, Party, PartyMember, PartyRole


class PartyRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, party_id: uuid.UUID) -> Party | None:
        return await self._session.get(Party, party_id)

    async def get_by_token(self, token: str) -> Party | None:
        stmt = select(Party).where(Party.invitation_token == token)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list_for_deal(self, deal_id: uuid.UUID) -> list[Party]:
        stmt = select(Party).where(Party.deal_id == deal_id).order_by(Party.created_at)
        return list((await self._session.execute(stmt)).scalars().all())

    async def find_by_role(self, deal_id: uuid.UUID, role: PartyRole) -> Party | None:
        stmt = (
            select(Party)
            .where(Party.deal_id == deal_id, Party.role == role)
            .order_by(Party.created_at)
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def set_invitation(
        self,
        party_id: uuid.UUID,
        *,
        status: InvitationStatus,
        token: str | None = None,
        invited_at: datetime | None = None,
        responded_at: datetime | None = None,
    ) -> Party | None:
        party = await self._session.get(Party, party_id, with_for_update=True)
        if party is None:
            return None
        party.invitation_status = status
        if token is not None:
            party.invitation_token = token
        if invited_at is not None:
            party.invited_at = invited_at
        if responded_at is not None:
            party.responded_at = responded_at
        await self._session.flush()
        return party

    async def add_member(self, *, party_id: uuid.UUID, user_subject: str) -> PartyMember:
        existing = await self.get_member(party_id=party_id, user_subject=user_subject)
        if existing is not None:
            return existing
        member = PartyMember(party_id=party_id, user_subject=user_subject)
        self._session.add(member)
        await self._session.flush()
        return member

    async def get_member(self, *, party_id: uuid.UUID, user_subject: str) -> PartyMember | None:
        stmt = select(PartyMember).where(
            PartyMember.party_id == party_id, PartyMember.user_subject == user_subject
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def parties_of_member(self, deal_id: uuid.UUID, user_subject: str) -> list[Party]:
        stmt = (
            select(Party)
            .join(PartyMember, PartyMember.party_id == Party.id)
            .where(Party.deal_id == deal_id, PartyMember.user_subject == user_subject)
        )
        return list((await self._session.execute(stmt)).scalars().all())
