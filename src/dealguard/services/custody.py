"""
dealguard.services.custody

Custody (funds held in escrow) service.

Responsibilities:
- Record funding proofs and their verification by staff.
- Authorize release / return and confirm the disbursement.
- Keep the deal status in step with custody through the lifecycle guards.
- Stamp every custody step with a deterministic SHA-256 event digest.
"""

from __future__ import annotations

import dataclasses
import hashlib
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.auth.access import ensure_deal_access, require_staff
from dealguard.auth.models import Principal
from dealguard.db.models import (
    CustodyAction,
    CustodyRecord,
    CustodyStatus,
    Deal,
    DealStatus,
    utcnow,
)
from dealguard.db.repositories.audit import AuditRepo, payload_digest
from dealguard.db.repositories.custody import CustodyRepo
from dealguard.db.repositories.deals import DealRepo
from dealguard.domain import lifecycle
from dealguard.errors import ConflictError, NotFoundError, ValidationError
from dealguard.observability.context import operation_context
from dealguard.observability.logging import get_logger
from dealguard.services.deals import DealService
from dealguard.settings import Settings

log = get_logger(__name__)

FUNDABLE_STATUSES = frozenset(
    {
        DealStatus.signed_recorded,
        DealStatus.funded_verified,
        DealStatus.in_verification,
    }
)

_AUTHORIZE: dict[CustodyAction, tuple[CustodyStatus, DealStatus]] = {
    CustodyAction.release: (CustodyStatus.release_authorized, DealStatus.release_authorized),
    CustodyAction.return_: (CustodyStatus.return_authorized, DealStatus.return_authorized),
}

_CONFIRM: dict[CustodyStatus, tuple[CustodyStatus, DealStatus]] = {
    CustodyStatus.release_authorized: (
        CustodyStatus.release_confirmed,
        DealStatus.release_confirmed,
    ),
    CustodyStatus.return_authorized: (
        CustodyStatus.return_confirmed,
        DealStatus.return_confirmed,
    ),
}


def _proof_hash(proof: bytes | str) -> str:
    raw = proof.encode("utf-8") if isinstance(proof, str) else proof
    if not raw:
        raise ValidationError("proof is empty")
    return hashlib.sha256(raw).hexdigest()


class CustodyService:
    def __init__(self, *, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

        self._deals = DealRepo(session)
        self._custody = CustodyRepo(session)
        self._audit = AuditRepo(session)
        self._deal_service = DealService(session=session, settings=settings)

    async def _get(self, record_id: uuid.UUID) -> tuple[CustodyRecord, Deal]:
        record = await self._custody.get(record_id)
        if record is None:
            raise NotFoundError(f"custody record {record_id} not found")
        deal = await self._deals.get(record.deal_id)
        if deal is None:
            raise NotFoundError(f"deal {record.deal_id} not found")
        return record, deal

    async def _stamp(
        self,
        record: CustodyRecord,
        *,
        actor: str,
        event_type: str,
        old_status: CustodyStatus | None,
        details: dict[str, Any] | None = None,
    ) -> str:
        digest = payload_digest(
            {
                "event_type": event_type,
                "custody_record_id": str(record.id),
                "deal_id": str(record.deal_id),
                "amount": str(record.amount),
                "currency": record.currency,
                "status": str(record.status),
                "funding_proof_hash": record.funding_proof_hash,
                "disbursement_proof_hash": record.disbursement_proof_hash,
                "actor": actor,
            }
        )
        record.last_event_digest = digest
        record.updated_at = utcnow()
        await self._custody.flush()
        await self._audit.add(
            deal_id=record.deal_id,
            actor=actor,
            event_type=event_type,
            entity_type="CustodyRecord",
            entity_id=record.id,
            old_state={"status": str(old_status)} if old_status else None,
            new_state={"status": str(record.status)},
            details={"event_digest": digest, **(details or {})},
        )
        return digest

    async def submit_funding_proof(
        self,
        principal: Principal,
        deal_id: uuid.UUID,
        amount: Decimal,
        currency: str,
        proof: bytes | str,
    ) -> CustodyRecord:
        deal = await ensure_deal_access(self._session, principal, deal_id)
        with operation_context("custody.submit_funding", deal_id=deal.id, actor=principal.subject):
            if deal.status not in FUNDABLE_STATUSES:
                raise ConflictError(f"funding cannot be submitted while the deal is {deal.status}")
            if amount <= 0:
                raise ValidationError("amount must be positive")

            record = await self._custody.create(
                deal_id=deal.id,
                amount=amount,
                currency=currency.upper(),
                funding_proof_hash=_proof_hash(proof),
                submitted_by=principal.subject,
            )
            await self._stamp(
                record,
                actor=principal.subject,
                event_type="CUSTODY_FUNDING_SUBMITTED",
                old_status=None,
            )
            await self._session.commit()
            log.info("custody_funding_submitted", record_id=str(record.id))
            return record

    async def verify_funding(self, principal: Principal, record_id: uuid.UUID) -> CustodyRecord:
        require_staff(principal)
        record, deal = await self._get(record_id)
        with operation_context("custody.verify", deal_id=deal.id, actor=principal.subject):
            if record.status != CustodyStatus.funding_submitted:
                raise ConflictError(f"custody record is {record.status}")

            record.status = CustodyStatus.funding_verified
            record.funding_verified_at = utcnow()
            record.funding_verified_by = principal.subject
            await self._stamp(
                record,
                actor=principal.subject,
                event_type="CUSTODY_FUNDING_VERIFIED",
                old_status=CustodyStatus.funding_submitted,
            )
            await self._deal_service.check_and_advance(deal.id, commit=False)
            await self._session.commit()
            return record

    async def authorize_action(
        self, principal: Principal, record_id: uuid.UUID, action: CustodyAction
    ) -> CustodyRecord:
        require_staff(principal)
        record, deal = await self._get(record_id)
        record_target, deal_target = _AUTHORIZE[CustodyAction(action)]

        with operation_context("custody.authorize", deal_id=deal.id, actor=principal.subject):
            if record.status != CustodyStatus.funding_verified:
                raise ConflictError(f"custody record is {record.status}")
            # The deal must be able to follow before the record moves.
            lifecycle.assert_transition(
                deal.status, deal_target, await self._deal_service.snapshot(deal.id)
            )

            record.status = record_target
            record.authorized_action = CustodyAction(action)
            record.authorized_at = utcnow()
            record.authorized_by = principal.subject
            await self._stamp(
                record,
                actor=principal.subject,
                event_type=f"CUSTODY_{record_target}",
                old_status=CustodyStatus.funding_verified,
            )
            await self._deal_service.apply_transition(
                deal, deal_target, actor=principal.subject, reason=f"custody {action} authorized"
            )
            await self._session.commit()
            return record

    async def confirm_disbursement(
        self, principal: Principal, record_id: uuid.UUID, proof: bytes | str
    ) -> CustodyRecord:
        require_staff(principal)
        record, deal = await self._get(record_id)

        with operation_context("custody.confirm", deal_id=deal.id, actor=principal.subject):
            if record.status not in _CONFIRM:
                raise ConflictError(f"custody record is {record.status}")
            record_target, deal_target = _CONFIRM[record.status]
            proof_hash = _proof_hash(proof)

            snapshot = await self._deal_service.snapshot(deal.id)
            prospective = dataclasses.replace(
                snapshot, custody_statuses=(*snapshot.custody_statuses, record_target)
            )
            lifecycle.assert_transition(deal.status, deal_target, prospective)

            old = record.status
            record.status = record_target
            record.disbursement_proof_hash = proof_hash
            record.disbursement_confirmed_at = utcnow()
            record.disbursement_confirmed_by = principal.subject
            await self._stamp(
                record,
                actor=principal.subject,
                event_type=f"CUSTODY_{record_target}",
                old_status=old,
            )
            await self._deal_service.apply_transition(
                deal, deal_target, actor=principal.subject, reason="disbursement confirmed"
            )
            await self._session.commit()
            return record

    async def list_records(self, principal: Principal, deal_id: uuid.UUID) -> list[CustodyRecord]:
        await ensure_deal_access(self._session, principal, deal_id)
        return await self._custody.list_for_deal(deal_id)
