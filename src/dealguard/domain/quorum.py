"""
dealguard.domain.quorum

Milestone agreement and approval rules.

Responsibilities:
- Decide which approvals a milestone still lacks (admin / buyer / seller quorum).
- Derive the negotiation outcome of a milestone from the parties' responses.
- Check that accepted evidence covers every required evidence type.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from dealguard.db.models import NegotiationStatus, ResponseType


@dataclass(frozen=True, slots=True)
class ApprovalRequirement:
    require_admin: bool = True
    require_buyer: bool = False
    require_seller: bool = False


@dataclass(frozen=True, slots=True)
class ApprovalFact:
    approver_is_admin: bool
    party_id: uuid.UUID | None


def missing_approvals(
    requirement: ApprovalRequirement,
    approvals: Iterable[ApprovalFact],
    *,
    buyer_party_id: uuid.UUID | None,
    seller_party_id: uuid.UUID | None,
) -> list[str]:
    """
    Return the roles whose approval is still outstanding ("admin", "buyer", "seller").

    A buyer / seller requirement is satisfied vacuously when the deal has no
    party in that role.
    """

    approvals = list(approvals)
    missing: list[str] = []
    if requirement.require_admin and not any(a.approver_is_admin for a in approvals):
        missing.append("admin")
    if (
        requirement.require_buyer
        and buyer_party_id is not None
        and not any(a.party_id == buyer_party_id for a in approvals)
    ):
        missing.append("buyer")
    if (
        requirement.require_seller
        and seller_party_id is not None
        and not any(a.party_id == seller_party_id for a in approvals)
    ):
        missing.append("seller")
    return missing


@dataclass(frozen=True, slots=True)
class ResponseSummary:
    total: int
    accepted: int
    rejected: int
    amendment_proposed: int
    pending: int

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "amendment_proposed": self.amendment_proposed,
            "pending": self.pending,
        }


def summarize_responses(party_count: int, responses: Sequence[ResponseType]) -> ResponseSummary:
    accepted = sum(1 for r in responses if r == ResponseType.accepted)
    rejected = sum(1 for r in responses if r == ResponseType.rejected)
    amended = sum(1 for r in responses if r == ResponseType.amendment_proposed)
    return ResponseSummary(
        total=party_count,
        accepted=accepted,
        rejected=rejected,
        amendment_proposed=amended,
        pending=max(party_count - len(responses), 0),
    )


def negotiation_outcome(party_count: int, responses: Sequence[ResponseType]) -> NegotiationStatus:
    # Precedence: a rejection beats an amendment, which beats agreement.
    summary = summarize_responses(party_count, responses)
    if summary.rejected:
        return NegotiationStatus.rejected
    if summary.amendment_proposed:
        return NegotiationStatus.amendment_pending
    if party_count > 0 and summary.accepted >= party_count:
        return NegotiationStatus.agreed
    return NegotiationStatus.pending_responses


def missing_evidence_types(required: Iterable[str], accepted_subjects: Iterable[str | None]) -> list[str]:
    subjects = [s.lower() for s in accepted_subjects if s]
    return [t for t in required if not any(t.lower() in s for s in subjects)]


def evidence_complete(required: Iterable[str], accepted_subjects: Iterable[str | None]) -> bool:
    return not missing_evidence_types(required, accepted_subjects)
