from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.db.models import CustodyRecord, CustodyStatus


class CustodyRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        deal_id: uuid.UUID,
        amount: Decimal,
        currency: str,
        funding_proof_hash: str,
        submitted_by: str,
    ) -> CustodyRecord:
        record = CustodyRecord(
            deal_id=deal_id,
            amount=amount,
            currency=currency,
            status=CustodyStatus.funding_submitted,
            funding_proof_hash=funding_proof_hash,
            submitted_by=submitted_by,
        )
        self._session.add(record)
        await self._session.flush()
        return record

    async def get(self, record_id: uuid.UUID) -> CustodyRecord | None:
        return await self._session.get(CustodyRecord, record_id, with_for_update=True)

    async def list_for_deal(self, deal_id: uuid.UUID) -> list[CustodyRecord]:
        stmt = (
            select(CustodyRecord)
            .where(CustodyRecord.deal_id == deal_id)
            .order_by(desc(CustodyRecord.created_at))
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def flush(self) -> None:
        await self._session.flush()
