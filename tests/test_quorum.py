"""
tests.test_quorum

Pure tests for approval quorum, negotiation outcome and evidence completeness.
"""

from __future__ import annotations

import uuid

from dealguard.db.models import NegotiationStatus, ResponseType
from dealguard.domain.quorum import (
    ApprovalFact,
    ApprovalRequirement,
    evidence_complete,
    missing_approvals,
    missing_evidence_types,
    negotiation_outcome,
    summarize_responses,
)

BUYER = uuid.uuid4()
SELLER = uuid.uuid4()


def test_default_requirement_needs_an_admin() -> None:
    req = ApprovalRequirement()
    assert missing_approvals(req, [], buyer_party_id=BUYER, seller_party_id=SELLER) == ["admin"]
    assert (
        missing_approvals(
            req,
            [ApprovalFact(approver_is_admin=True, party_id=None)],
            buyer_party_id=BUYER,
            seller_party_id=SELLER,
        )
        == []
    )


def test_party_approvals_are_matched_by_party() -> None:
    req = ApprovalRequirement(require_admin=False, require_buyer=True, require_seller=True)
    approvals = [ApprovalFact(approver_is_admin=False, party_id=SELLER)]
    assert missing_approvals(req, approvals, buyer_party_id=BUYER, seller_party_id=SELLER) == [
        "buyer"
    ]


def test_missing_role_is_satisfied_vacuously() -> None:
    req = ApprovalRequirement(require_admin=False, require_buyer=True, require_seller=True)
    assert missing_approvals(req, [], buyer_party_id=None, seller_party_id=None) == []


def test_negotiation_precedence() -> None:
    a, r, m = ResponseType.accepted, ResponseType.rejected, ResponseType.amendment_proposed
    assert negotiation_outcome(3, [a, m, r]) == NegotiationStatus.rejected
    assert negotiation_outcome(3, [a, m]) == NegotiationStatus.amendment_pending
    assert negotiation_outcome(2, [a]) == NegotiationStatus.pending_responses
    assert negotiation_outcome(2, [a, a]) == NegotiationStatus.agreed
    assert negotiation_outcome(0, []) == NegotiationStatus.pending_responses


def test_response_summary() -> None:
    summary = summarize_responses(3, [ResponseType.accepted, ResponseType.amendment_proposed])
    assert summary.as_dict() == {
        "total": 3,
        "accepted": 1,
        "rejected": 0,
        "amendment_proposed": 1,
        "pending": 1,
    }


def test_evidence_types_match_case_insensitive_substring() -> None:
    subjects = ["Signed BILL OF LADING no. 12", None, "photos"]
    assert evidence_complete(["bill of lading"], subjects)
    assert missing_evidence_types(["Bill of Lading", "Inspection report"], subjects) == [
        "Inspection report"
    ]
    assert evidence_complete([], [])
