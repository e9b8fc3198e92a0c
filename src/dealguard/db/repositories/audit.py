"""
dealguard.db.repositories.audit

Repository for `AuditEvent` entities.

Responsibilities:
- Append audit events (party/staff/system actions) with a tamper-evident payload hash.
- Query the audit trail of a deal.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.db.models import AuditEvent, utcnow


def payload_digest(payload: dict[str, Any]) -> str:
    # Canonical JSON: sorted keys, no whitespace, non-JSON types stringified.
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class AuditRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        deal_id: uuid.UUID | None,
        actor: str,
        event_type: str,
        entity_type: str,
        entity_id: uuid.UUID | str,
        old_state: dict[str, Any] | None = None,
        new_state: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        # Audit events are append-only (no update/delete) in normal operation.
        created_at = utcnow()
        payload_hash = payload_digest(
            {
                "event_type": event_type,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "old_state": old_state,
                "new_state": new_state,
                "timestamp": created_at.isoformat(),
            }
        )
        ev = AuditEvent(
            deal_id=deal_id,
            actor=actor,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=str(entity_id),
            old_state=old_state,
            new_state=new_state,
            details=details or {},
            payload_hash=payload_hash,
            created_at=created_at,
        )
        self._session.add(ev)
        await self._session.flush()
        return ev

    async def list_for_deal(self, deal_id: uuid.UUID, *, limit: int = 500) -> list[AuditEvent]:
        # Newest-first for UI consumption.
        stmt = (
            select(AuditEvent)
            .where(AuditEvent.deal_id == deal_id)
            .order_by(desc(AuditEvent.created_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())


# --- Module Notes -----------------------------------------------------------
# payload_digest is also used by the custody service for the anchoring digest.
