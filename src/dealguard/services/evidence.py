"""
dealguard.services.evidence

Evidence intake + review service.

Responsibilities:
- Accept evidence from parties (upload / API) and from the per-deal inbound mailbox.
- Quarantine mail from senders who are not party contacts.
- Let staff review evidence and trigger milestone readiness checks.
"""

from __future__ import annotations

import re
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.auth.access import ensure_deal_access, require_staff
from dealguard.auth.models import EMAIL_SYSTEM, Principal
from dealguard.db.models import EvidenceItem, EvidenceSource, EvidenceStatus, utcnow
from dealguard.db.repositories.audit import AuditRepo
from dealguard.db.repositories.deals import DealRepo
from dealguard.db.repositories.evidence import EvidenceRepo
from dealguard.db.repositories.milestones import MilestoneRepo
from dealguard.db.repositories.parties import PartyRepo
from dealguard.domain import lifecycle
from dealguard.errors import ConflictError, NotFoundError, ValidationError
from dealguard.observability.context import operation_context
from dealguard.observability.logging import get_logger
from dealguard.schemas import EvidenceCreate, InboundEmail
from dealguard.services.deals import DealService
from dealguard.services.milestones import MilestoneService
from dealguard.settings import Settings

log = get_logger(__name__)

_DEAL_MAILBOX = re.compile(
    r"^deal-(?P<deal_id>[0-9a-f]{8}(?:-[0-9a-f]{4}){3}-[0-9a-f]{12})@(?P<domain>.+)$",
    re.IGNORECASE,
)

REVIEW_OUTCOMES = frozenset({EvidenceStatus.accepted, EvidenceStatus.rejected})


def parse_deal_mailbox(address: str, domain: str) -> uuid.UUID | None:
    # Accept "Name <deal-...@domain>" as well as the bare address.
    match = re.search(r"<([^>]+)>", address)
    bare = (match.group(1) if match else address).strip()
    m = _DEAL_MAILBOX.match(bare)
    if m is None or m.group("domain").lower() != domain.lower():
        return None
    return uuid.UUID(m.group("deal_id"))


class EvidenceService:
    def __init__(self, *, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

        self._deals = DealRepo(session)
        self._parties = PartyRepo(session)
        self._milestones = MilestoneRepo(session)
        self._evidence = EvidenceRepo(session)
        self._audit = AuditRepo(session)
        self._deal_service = DealService(session=session, settings=settings)
        self._milestone_service = MilestoneService(session=session, settings=settings)

    async def _get(self, evidence_id: uuid.UUID) -> EvidenceItem:
        item = await self._evidence.get(evidence_id)
        if item is None:
            raise NotFoundError(f"evidence {evidence_id} not found")
        return item

    async def _check_milestone(self, deal_id: uuid.UUID, milestone_id: uuid.UUID | None) -> None:
        if milestone_id is None:
            return
        milestone = await self._milestones.get(milestone_id)
        if milestone is None or milestone.deal_id != deal_id:
            raise ValidationError("milestone does not belong to this deal")

    async def submit_evidence(self, principal: Principal, cmd: EvidenceCreate) -> EvidenceItem:
        deal = await ensure_deal_access(self._session, principal, cmd.deal_id)
        with operation_context("evidence.submit", deal_id=deal.id, actor=principal.subject):
            if lifecycle.is_terminal(deal.status):
                raise ConflictError(f"deal is {deal.status}")
            await self._check_milestone(deal.id, cmd.milestone_id)

            item = await self._evidence.create(
                deal_id=deal.id,
                milestone_id=cmd.milestone_id,
                subject=cmd.subject,
                description=cmd.description,
                source_type=cmd.source_type,
                source_email=principal.email,
                submitted_by=principal.subject,
                attachments=[a.model_dump() for a in cmd.attachments],
            )
            await self._audit.add(
                deal_id=deal.id,
                actor=principal.subject,
                event_type="EVIDENCE_RECEIVED",
                entity_type="EvidenceItem",
                entity_id=item.id,
                new_state={"status": str(item.status)},
                details={"source": str(cmd.source_type), "attachments": len(cmd.attachments)},
            )
            await self._deal_service.check_and_advance(deal.id, commit=False)
            await self._session.commit()
            return item

    async def review_evidence(
        self,
        principal: Principal,
        evidence_id: uuid.UUID,
        status: EvidenceStatus,
        *,
        milestone_id: uuid.UUID | None = None,
        notes: str | None = None,
    ) -> EvidenceItem:
        require_staff(principal)
        item = await self._get(evidence_id)
        with operation_context("evidence.review", deal_id=item.deal_id, actor=principal.subject):
            if item.status == EvidenceStatus.quarantined:
                raise ConflictError("quarantined evidence must be released before review")
            if status not in REVIEW_OUTCOMES:
                raise ValidationError(f"review outcome must be ACCEPTED or REJECTED, got {status}")
            await self._check_milestone(item.deal_id, milestone_id)

            old = item.status
            await self._evidence.set_review(
                item,
                status=status,
                milestone_id=milestone_id,
                notes=notes,
                reviewed_by=principal.subject,
                reviewed_at=utcnow(),
            )
            await self._audit.add(
                deal_id=item.deal_id,
                actor=principal.subject,
                event_type="EVIDENCE_REVIEWED",
                entity_type="EvidenceItem",
                entity_id=item.id,
                old_state={"status": str(old)},
                new_state={"status": str(status)},
                details={"milestone_id": str(item.milestone_id) if item.milestone_id else None},
            )
            if status == EvidenceStatus.accepted and item.milestone_id is not None:
                await self._milestone_service.evaluate_readiness(
                    item.milestone_id, actor=principal.subject, commit=False
                )
            await self._session.commit()
            return item

    async def process_inbound_email(self, email: InboundEmail) -> EvidenceItem | None:
        deal_id = parse_deal_mailbox(email.to, self._settings.inbound_email_domain)
        deal = await self._deals.get(deal_id) if deal_id else None
        if deal is None:
            log.info("inbound_email_ignored", to=email.to)
            return None
        if lifecycle.is_terminal(deal.status):
            log.info("inbound_email_ignored", to=email.to, deal_status=str(deal.status))
            return None

        with operation_context(
            "evidence.inbound_email", deal_id=deal.id, actor=EMAIL_SYSTEM.subject
        ):
            sender = str(email.sender).lower()
            contacts = {p.contact_email.lower() for p in await self._parties.list_for_deal(deal.id)}
            quarantined = sender not in contacts

            item = await self._evidence.create(
                deal_id=deal.id,
                milestone_id=None,
                subject=email.subject,
                description=email.body,
                source_type=EvidenceSource.email,
                source_email=sender,
                submitted_by=EMAIL_SYSTEM.subject,
                status=EvidenceStatus.quarantined if quarantined else EvidenceStatus.received,
                quarantine_reason=f"sender {sender} is not a party contact" if quarantined else None,
                attachments=[a.model_dump() for a in email.attachments],
            )
            await self._audit.add(
                deal_id=deal.id,
                actor=EMAIL_SYSTEM.subject,
                event_type="EVIDENCE_QUARANTINED" if quarantined else "EVIDENCE_RECEIVED",
                entity_type="EvidenceItem",
                entity_id=item.id,
                new_state={"status": str(item.status)},
                details={"source": str(EvidenceSource.email), "sender": sender},
            )
            if not quarantined:
                await self._deal_service.check_and_advance(deal.id, commit=False)
            await self._session.commit()
            log.info("inbound_email_processed", evidence_id=str(item.id), quarantined=quarantined)
            return item

    async def list_quarantined(self, principal: Principal) -> list[EvidenceItem]:
        require_staff(principal)
        return await self._evidence.list_quarantined()

    async def release_from_quarantine(
        self, principal: Principal, evidence_id: uuid.UUID, notes: str | None = None
    ) -> EvidenceItem:
        require_staff(principal)
        item = await self._get(evidence_id)
        with operation_context("evidence.release", deal_id=item.deal_id, actor=principal.subject):
            if item.status != EvidenceStatus.quarantined:
                raise ConflictError("evidence is not quarantined")

            await self._evidence.set_review(
                item,
                status=EvidenceStatus.received,
                milestone_id=None,
                notes=notes,
                reviewed_by=principal.subject,
                reviewed_at=utcnow(),
            )
            await self._audit.add(
                deal_id=item.deal_id,
                actor=principal.subject,
                event_type="EVIDENCE_RELEASED_FROM_QUARANTINE",
                entity_type="EvidenceItem",
                entity_id=item.id,
                old_state={"status": str(EvidenceStatus.quarantined)},
                new_state={"status": str(EvidenceStatus.received)},
            )
            await self._deal_service.check_and_advance(item.deal_id, commit=False)
            await self._session.commit()
            return item

    async def list_evidence(
        self,
        principal: Principal,
        deal_id: uuid.UUID,
        *,
        status: EvidenceStatus | None = None,
    ) -> list[EvidenceItem]:
        await ensure_deal_access(self._session, principal, deal_id)
        return await self._evidence.list_for_deal(deal_id, status=status)
