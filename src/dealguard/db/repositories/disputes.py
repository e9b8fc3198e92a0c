from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.db.models import OPEN_DISPUTE_STATUSES, Dispute, DisputeStatus


class DisputeRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        deal_id: uuid.UUID,
        milestone_id: uuid.UUID | None,
        issue_type: str,
        narrative: str,
        raised_by: str,
        milestone_frozen: bool,
    ) -> Dispute:
        dispute = Dispute(
            deal_id=deal_id,
            milestone_id=milestone_id,
            issue_type=issue_type,
            narrative=narrative,
            raised_by=raised_by,
            status=DisputeStatus.opened,
            milestone_frozen=milestone_frozen,
            mediation_notes=[],
        )
        self._session.add(dispute)
        await self._session.flush()
        return dispute

    async def get(self, dispute_id: uuid.UUID) -> Dispute | None:
        return await self._session.get(Dispute, dispute_id, with_for_update=True)

    async def list_for_deal(self, deal_id: uuid.UUID) -> list[Dispute]:
        stmt = select(Dispute).where(Dispute.deal_id == deal_id).order_by(Dispute.created_at.desc())
        return list((await self._session.execute(stmt)).scalars().all())

    async def list_open(self) -> list[Dispute]:
        # Oldest first: the mediation queue is worked in arrival order.
        stmt = (
            select(Dispute)
            .where(Dispute.status.in_(OPEN_DISPUTE_STATUSES))
            .order_by(Dispute.created_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def count_open(self, deal_id: uuid.UUID) -> int:
        stmt = select(func.count(Dispute.id)).where(
            Dispute.deal_id == deal_id, Dispute.status.in_(OPEN_DISPUTE_STATUSES)
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def flush(self) -> None:
        await self._session.flush()
