"""
dealguard.db.models

Core persistence schema.

Responsibilities:
- Define ORM models for the escrow domain:
  - Deal / Party / PartyMember: the deal and its invited participants
  - Contract / ContractAcceptance: versioned terms and per-party sign-off
  - Milestone (+ approval requirement, approvals, negotiation responses)
  - EvidenceItem / Attachment: submitted proof of milestone completion
  - CustodyRecord: funds held in custody and their disbursement
  - Dispute: frozen milestones and mediation
  - AuditEvent: append-only audit trail
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dealguard.db.base import Base


def utcnow() -> datetime:
    # Persist naive UTC timestamps; SQLite has no tz-aware column type.
    return datetime.now(tz=UTC).replace(tzinfo=None)


class DealStatus(enum.StrEnum):
    draft = "DRAFT"
    proposed = "PROPOSED"
    accepted_by_all = "ACCEPTED_BY_ALL"
    signed_recorded = "SIGNED_RECORDED"
    funded_verified = "FUNDED_VERIFIED"
    in_verification = "IN_VERIFICATION"
    release_authorized = "RELEASE_AUTHORIZED"
    return_authorized = "RETURN_AUTHORIZED"
    release_confirmed = "RELEASE_CONFIRMED"
    return_confirmed = "RETURN_CONFIRMED"
    closed = "CLOSED"
    cancelled = "CANCELLED"


class PartyRole(enum.StrEnum):
    buyer = "BUYER"
    seller = "SELLER"
    payer = "PAYER"
    payee = "PAYEE"
    beneficiary = "BENEFICIARY"
    agent = "AGENT"
    other = "OTHER"


class InvitationStatus(enum.StrEnum):
    pending = "PENDING"
    accepted = "ACCEPTED"
    declined = "DECLINED"


class ServiceTier(enum.StrEnum):
    governance_advisory = "GOVERNANCE_ADVISORY"
    document_custody = "DOCUMENT_CUSTODY"
    financial_escrow = "FINANCIAL_ESCROW"


class MilestoneStatus(enum.StrEnum):
    # Execution status once the deal is funded.
    pending = "PENDING"
    in_progress = "IN_PROGRESS"
    ready_for_review = "READY_FOR_REVIEW"
    approved = "APPROVED"
    disputed = "DISPUTED"


class NegotiationStatus(enum.StrEnum):
    # Agreement on the milestone terms before the deal is signed.
    pending_responses = "PENDING_RESPONSES"
    amendment_pending = "AMENDMENT_PENDING"
    rejected = "REJECTED"
    agreed = "AGREED"


class ResponseType(enum.StrEnum):
    accepted = "ACCEPTED"
    rejected = "REJECTED"
    amendment_proposed = "AMENDMENT_PROPOSED"


class EvidenceStatus(enum.StrEnum):
    received = "RECEIVED"
    accepted = "ACCEPTED"
    rejected = "REJECTED"
    quarantined = "QUARANTINED"


class EvidenceSource(enum.StrEnum):
    upload = "UPLOAD"
    email = "EMAIL"
    api = "API"


class CustodyStatus(enum.StrEnum):
    funding_submitted = "FUNDING_SUBMITTED"
    funding_verified = "FUNDING_VERIFIED"
    release_authorized = "RELEASE_AUTHORIZED"
    return_authorized = "RETURN_AUTHORIZED"
    release_confirmed = "RELEASE_CONFIRMED"
    return_confirmed = "RETURN_CONFIRMED"


class CustodyAction(enum.StrEnum):
    release = "RELEASE"
    return_ = "RETURN"


class DisputeStatus(enum.StrEnum):
    opened = "OPENED"
    evidence_collection = "EVIDENCE_COLLECTION"
    settlement_proposed = "SETTLEMENT_PROPOSED"
    admin_review = "ADMIN_REVIEW"
    resolved = "RESOLVED"


OPEN_DISPUTE_STATUSES = frozenset(DisputeStatus) - {DisputeStatus.resolved}


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


class Deal(Base):
    __tablename__ = "deals"

    id: Mapped[uuid.UUID] = _uuid_pk()
    deal_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[DealStatus] = mapped_column(Enum(DealStatus), nullable=False, index=True)
    creator: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    email_address: Mapped[str] = mapped_column(String(256), nullable=False)

    service_tier: Mapped[ServiceTier] = mapped_column(Enum(ServiceTier), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EGP")
    total_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    service_fee: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    all_parties_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    parties: Mapped[list[Party]] = relationship(
        back_populates="deal",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Party.created_at",
    )


class Party(Base):
    __tablename__ = "parties"

    id: Mapped[uuid.UUID] = _uuid_pk()
    deal_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("deals.id"), nullable=False, index=True
    )

    role: Mapped[PartyRole] = mapped_column(Enum(PartyRole), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    is_organization: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    organization_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    contact_email: Mapped[str] = mapped_column(String(320), nullable=False)
    contact_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    invitation_status: Mapped[InvitationStatus] = mapped_column(
        Enum(InvitationStatus), nullable=False, default=InvitationStatus.pending
    )
    invitation_token: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    invited_at: Mapped[datetime | None] = mapped_column(nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    deal: Mapped[Deal] = relationship(back_populates="parties")


class PartyMember(Base):
    __tablename__ = "party_members"

    id: Mapped[uuid.UUID] = _uuid_pk()
    party_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("parties.id"), nullable=False, index=True
    )
    # Subject of the identity-provider principal that joined on behalf of the party.
    user_subject: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("party_id", "user_subject", name="uq_party_member"),)


class Contract(Base):
    __tablename__ = "contracts"

    id: Mapped[uuid.UUID] = _uuid_pk()
    deal_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("deals.id"), nullable=False, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    terms: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    is_effective: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    effective_at: Mapped[datetime | None] = mapped_column(nullable=True)
    document_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_by: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    milestones: Mapped[list[Milestone]] = relationship(
        back_populates="contract",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Milestone.order",
    )

    __table_args__ = (UniqueConstraint("deal_id", "version", name="uq_contract_version"),)


class ContractAcceptance(Base):
    __tablename__ = "contract_acceptances"

    id: Mapped[uuid.UUID] = _uuid_pk()
    contract_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("contracts.id"), nullable=False, index=True
    )
    party_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("parties.id"), nullable=False
    )
    accepted_by: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("contract_id", "party_id", name="uq_contract_party"),)


class Milestone(Base):
    __tablename__ = "milestones"

    id: Mapped[uuid.UUID] = _uuid_pk()
    contract_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("contracts.id"), nullable=False, index=True
    )
    deal_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("deals.id"), nullable=False, index=True
    )

    order: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    release_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    return_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    deadline: Mapped[datetime | None] = mapped_column(nullable=True)
    grace_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    conditions: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    required_evidence_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[MilestoneStatus] = mapped_column(
        Enum(MilestoneStatus), nullable=False, default=MilestoneStatus.pending, index=True
    )
    negotiation_status: Mapped[NegotiationStatus] = mapped_column(
        Enum(NegotiationStatus), nullable=False, default=NegotiationStatus.pending_responses
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    contract: Mapped[Contract] = relationship(back_populates="milestones")

    __table_args__ = (Index("ix_milestones_contract_order", "contract_id", "order"),)


class MilestoneApprovalRequirement(Base):
    __tablename__ = "milestone_approval_requirements"

    id: Mapped[uuid.UUID] = _uuid_pk()
    milestone_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("milestones.id"), nullable=False, unique=True
    )
    require_admin_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    require_buyer_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    require_seller_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)


class MilestoneApproval(Base):
    __tablename__ = "milestone_approvals"

    id: Mapped[uuid.UUID] = _uuid_pk()
    milestone_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("milestones.id"), nullable=False, index=True
    )
    approver: Mapped[str] = mapped_column(String(256), nullable=False)
    # Snapshot of the approver's admin status at approval time (roles live in the IdP).
    approver_is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    party_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("parties.id"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("milestone_id", "approver", name="uq_milestone_approver"),)


class MilestonePartyResponse(Base):
    __tablename__ = "milestone_party_responses"

    id: Mapped[uuid.UUID] = _uuid_pk()
    milestone_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("milestones.id"), nullable=False, index=True
    )
    party_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("parties.id"), nullable=False
    )
    response_type: Mapped[ResponseType] = mapped_column(Enum(ResponseType), nullable=False)
    amendment_proposal: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    responded_by: Mapped[str] = mapped_column(String(256), nullable=False)
    responded_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("milestone_id", "party_id", name="uq_milestone_party"),)


class EvidenceItem(Base):
    __tablename__ = "evidence_items"

    id: Mapped[uuid.UUID] = _uuid_pk()
    deal_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("deals.id"), nullable=False, index=True
    )
    milestone_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("milestones.id"), nullable=True, index=True
    )

    subject: Mapped[str | None] = mapped_column(String(512), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_type: Mapped[EvidenceSource] = mapped_column(Enum(EvidenceSource), nullable=False)
    source_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    submitted_by: Mapped[str] = mapped_column(String(256), nullable=False)

    status: Mapped[EvidenceStatus] = mapped_column(
        Enum(EvidenceStatus), nullable=False, default=EvidenceStatus.received, index=True
    )
    quarantine_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    attachments: Mapped[list[Attachment]] = relationship(
        back_populates="evidence_item", cascade="all, delete-orphan", lazy="selectin"
    )


class Attachment(Base):
    __tablename__ = "attachments"

    id: Mapped[uuid.UUID] = _uuid_pk()
    evidence_item_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("evidence_items.id"), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)

    evidence_item: Mapped[EvidenceItem] = relationship(back_populates="attachments")


class CustodyRecord(Base):
    __tablename__ = "custody_records"

    id: Mapped[uuid.UUID] = _uuid_pk()
    deal_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("deals.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[CustodyStatus] = mapped_column(Enum(CustodyStatus), nullable=False, index=True)

    funding_proof_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    submitted_by: Mapped[str] = mapped_column(String(256), nullable=False)
    funding_verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    funding_verified_by: Mapped[str | None] = mapped_column(String(256), nullable=True)

    authorized_action: Mapped[CustodyAction | None] = mapped_column(
        Enum(CustodyAction), nullable=True
    )
    authorized_at: Mapped[datetime | None] = mapped_column(nullable=True)
    authorized_by: Mapped[str | None] = mapped_column(String(256), nullable=True)

    disbursement_proof_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    disbursement_confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    disbursement_confirmed_by: Mapped[str | None] = mapped_column(String(256), nullable=True)

    # SHA-256 digest of the last custody event payload, kept for external anchoring.
    last_event_digest: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)


class Dispute(Base):
    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = _uuid_pk()
    deal_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("deals.id"), nullable=False, index=True
    )
    milestone_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("milestones.id"), nullable=True
    )

    issue_type: Mapped[str] = mapped_column(String(128), nullable=False)
    narrative: Mapped[str] = mapped_column(Text, nullable=False)
    raised_by: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[DisputeStatus] = mapped_column(Enum(DisputeStatus), nullable=False, index=True)
    milestone_frozen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    mediation_notes: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    final_resolution: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = _uuid_pk()
    deal_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), nullable=True, index=True
    )

    actor: Mapped[str] = mapped_column(String(256), nullable=False)  # user subject / SYSTEM
    event_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    old_state: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_state: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)

    __table_args__ = (Index("ix_audit_deal_created", "deal_id", "created_at"),)


# --- Module Notes -----------------------------------------------------------
# Milestones carry two independent statuses: `negotiation_status` tracks agreement on
# the terms before signing, `status` tracks execution after funding.
