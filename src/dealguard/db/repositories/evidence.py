from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.db.models import Attachment, EvidenceItem, EvidenceSource, EvidenceStatus


class EvidenceRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        deal_id: uuid.UUID,
        milestone_id: uuid.UUID | None,
        subject: str | None,
        description: str | None,
        source_type: EvidenceSource,
        source_email: str | None,
        submitted_by: str,
        status: EvidenceStatus = EvidenceStatus.received,
        quarantine_reason: str | None = None,
        attachments: list[dict] | None = None,
    ) -> EvidenceItem:
        item = EvidenceItem(
            deal_id=deal_id,
            milestone_id=milestone_id,
            subject=subject,
            description=description,
            source_type=source_type,
            source_email=source_email,
            submitted_by=submitted_by,
            status=status,
            quarantine_reason=quarantine_reason,
            attachments=[Attachment(**a) for a in attachments or []],
        )
        self._session.add(item)
        await self._session.flush()
        return item

    async def get(self, evidence_id: uuid.UUID) -> EvidenceItem | None:
        return await self._session.get(EvidenceItem, evidence_id)

    async def list_for_deal(
        self, deal_id: uuid.UUID, *, status: EvidenceStatus | None = None
    ) -> list[EvidenceItem]:
        stmt = select(EvidenceItem).where(EvidenceItem.deal_id == deal_id)
        if status is not None:
            stmt = stmt.where(EvidenceItem.status == status)
        stmt = stmt.order_by(desc(EvidenceItem.created_at))
        return list((await self._session.execute(stmt)).scalars().all())

    async def list_accepted_for_milestone(self, milestone_id: uuid.UUID) -> list[EvidenceItem]:
        stmt = select(EvidenceItem).where(
            EvidenceItem.milestone_id == milestone_id,
            EvidenceItem.status == EvidenceStatus.accepted,
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def list_quarantined(self) -> list[EvidenceItem]:
        stmt = (
            select(EvidenceItem)
            .where(EvidenceItem.status == EvidenceStatus.quarantined)
            .order_by(desc(EvidenceItem.created_at))
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def count_usable(self, deal_id: uuid.UUID) -> int:
        stmt = select(func.count(EvidenceItem.id)).where(
            EvidenceItem.deal_id == deal_id,
            EvidenceItem.status.in_([EvidenceStatus.received, EvidenceStatus.accepted]),
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def set_review(
        self,
        item: EvidenceItem,
        *,
        status: EvidenceStatus,
        milestone_id: uuid.UUID | None,
        notes: str | None,
        reviewed_by: str,
        reviewed_at: datetime,
    ) -> None:
        item.status = status
        if milestone_id is not None:
            item.milestone_id = milestone_id
        item.review_notes = notes
        item.reviewed_by = reviewed_by
        item.reviewed_at = reviewed_at
        if status != EvidenceStatus.quarantined:
            item.quarantine_reason = None
        await self._session.flush()
