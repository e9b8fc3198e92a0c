"""
dealguard.db.repositories.deals

Repository for `Deal` entities.

Responsibilities:
- Create deals together with their parties.
- Fetch / list / count deals with visibility filters.
- Persist status changes.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Select, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.db.models import (
    Deal,
    DealStatus,
    Party,
    PartyMember,
    ServiceTier,
    utcnow,
)


class DealRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        deal_id: uuid.UUID,
        deal_number: str,
        title: str,
        description: str | None,
        creator: str,
        email_address: str,
        service_tier: ServiceTier,
        currency: str,
        total_amount: Decimal | None,
        service_fee: Decimal,
        parties: list[dict[str, Any]],
    ) -> Deal:
        deal = Deal(
            id=deal_id,
            deal_number=deal_number,
            title=title,
            description=description,
            creator=creator,
            email_address=email_address,
            status=DealStatus.draft,
            service_tier=service_tier,
            currency=currency,
            total_amount=total_amount,
            service_fee=service_fee,
            all_parties_confirmed=False,
            parties=[Party(**p) for p in parties],
        )
        self._session.add(deal)
        await self._session.flush()
        return deal

    async def get(self, deal_id: uuid.UUID) -> Deal | None:
        return await self._session.get(Deal, deal_id)

    async def get_by_number(self, deal_number: str) -> Deal | None:
        stmt = select(Deal).where(Deal.deal_number == deal_number)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def count(self) -> int:
        return int((await self._session.execute(select(func.count(Deal.id)))).scalar_one())

    def _visible(self, stmt: Select, subject: str | None) -> Select:
        # subject=None means unrestricted (staff view).
        if subject is None:
            return stmt
        member_deal_ids = (
            select(Party.deal_id)
            .join(PartyMember, PartyMember.party_id == Party.id)
            .where(PartyMember.user_subject == subject)
        )
        return stmt.where(or_(Deal.creator == subject, Deal.id.in_(member_deal_ids)))

    async def list_page(
        self,
        *,
        status: DealStatus | None = None,
        visible_to: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Deal], int]:
        stmt = select(Deal)
        count_stmt = select(func.count(Deal.id))
        if status is not None:
            stmt = stmt.where(Deal.status == status)
            count_stmt = count_stmt.where(Deal.status == status)
        stmt = self._visible(stmt, visible_to)
        count_stmt = self._visible(count_stmt, visible_to)

        stmt = stmt.order_by(desc(Deal.created_at)).offset(offset).limit(limit)
        deals = list((await self._session.execute(stmt)).scalars().all())
        total = int((await self._session.execute(count_stmt)).scalar_one())
        return deals, total

    async def set_status(
        self, deal_id: uuid.UUID, status: DealStatus, *, closed_at: datetime | None = None
    ) -> Deal | None:
        deal = await self._session.get(Deal, deal_id, with_for_update=True)
        if deal is None:
            return None
        deal.status = status
        if status == DealStatus.accepted_by_all:
            deal.all_parties_confirmed = True
        if closed_at is not None:
            deal.closed_at = closed_at
        deal.updated_at = utcnow()
        await self._session.flush()
        return deal


# --- Module Notes -----------------------------------------------------------
# Visibility mirrors auth.access: creator or party member; staff pass visible_to=None.
