"""
dealguard.schemas

Pydantic command models accepted by the service layer.

Responsibilities:
- Validate the shape of caller input (types, lengths, enum values) before any
  business rule runs.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from dealguard.db.models import EvidenceSource, PartyRole, ResponseType, ServiceTier


class _Command(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class PartyIn(_Command):
    role: PartyRole
    name: str = Field(min_length=1, max_length=256)
    contact_email: EmailStr
    contact_phone: str | None = Field(default=None, max_length=64)
    is_organization: bool = False
    organization_id: str | None = Field(default=None, max_length=128)


class DealCreate(_Command):
    title: str = Field(min_length=1, max_length=256)
    description: str | None = None
    service_tier: ServiceTier = ServiceTier.governance_advisory
    currency: str = Field(default="EGP", min_length=3, max_length=3)
    estimated_value: Decimal | None = Field(default=None, gt=0)
    parties: list[PartyIn] = Field(min_length=2)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()


class MilestoneIn(_Command):
    order: int = Field(ge=0)
    title: str = Field(min_length=1, max_length=256)
    description: str | None = None
    release_amount: Decimal | None = Field(default=None, ge=0)
    return_amount: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    deadline: datetime | None = None
    grace_period_days: int | None = Field(default=None, ge=0)
    required_evidence_types: list[str] = Field(default_factory=list)
    conditions: dict[str, Any] = Field(default_factory=dict)


class ContractCreate(_Command):
    terms: dict[str, Any] = Field(default_factory=dict)
    milestones: list[MilestoneIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_order(self) -> ContractCreate:
        orders = [m.order for m in self.milestones]
        if len(orders) != len(set(orders)):
            raise ValueError("milestone order values must be unique")
        return self


class MilestoneResponse(_Command):
    response_type: ResponseType
    amendment_proposal: dict[str, Any] | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _amendment_needs_reason(self) -> MilestoneResponse:
        if self.response_type == ResponseType.amendment_proposed and not self.notes:
            raise ValueError("an amendment proposal requires a reason")
        return self


class AttachmentIn(_Command):
    filename: str = Field(min_length=1, max_length=512)
    mime_type: str = Field(default="application/octet-stream", max_length=128)
    size_bytes: int = Field(ge=0)
    sha256: str = Field(pattern=r"^[0-9a-f]{64}$")


class EvidenceCreate(_Command):
    deal_id: uuid.UUID
    milestone_id: uuid.UUID | None = None
    subject: str | None = Field(default=None, max_length=512)
    description: str | None = None
    source_type: EvidenceSource = EvidenceSource.upload
    attachments: list[AttachmentIn] = Field(default_factory=list)


class InboundEmail(_Command):
    to: str
    sender: EmailStr
    subject: str | None = None
    body: str | None = None
    attachments: list[AttachmentIn] = Field(default_factory=list)


# --- Module Notes -----------------------------------------------------------
# Schemas carry no persistence concerns; services translate them into repository calls.
