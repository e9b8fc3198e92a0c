"""
dealguard.domain.lifecycle

Deal lifecycle state machine.

Responsibilities:
- Hold the allowed transition table between `DealStatus` values.
- Evaluate the business-rule guards of a target status against a `DealSnapshot`.
- Pick the next status a deal may advance to without human input.

All functions are pure; services build the snapshot from the database.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from dealguard.db.models import (
    CustodyStatus,
    DealStatus,
    InvitationStatus,
    MilestoneStatus,
    NegotiationStatus,
)
from dealguard.errors import InvalidTransitionError, TransitionBlockedError

TRANSITIONS: dict[DealStatus, frozenset[DealStatus]] = {
    DealStatus.draft: frozenset({DealStatus.proposed, DealStatus.cancelled}),
    DealStatus.proposed: frozenset({DealStatus.accepted_by_all, DealStatus.cancelled}),
    DealStatus.accepted_by_all: frozenset({DealStatus.signed_recorded, DealStatus.cancelled}),
    DealStatus.signed_recorded: frozenset({DealStatus.funded_verified, DealStatus.cancelled}),
    DealStatus.funded_verified: frozenset(
        {DealStatus.in_verification, DealStatus.return_authorized}
    ),
    DealStatus.in_verification: frozenset(
        {DealStatus.release_authorized, DealStatus.return_authorized}
    ),
    DealStatus.release_authorized: frozenset({DealStatus.release_confirmed}),
    DealStatus.return_authorized: frozenset({DealStatus.return_confirmed}),
    DealStatus.release_confirmed: frozenset({DealStatus.closed}),
    DealStatus.return_confirmed: frozenset({DealStatus.closed}),
    DealStatus.closed: frozenset(),
    DealStatus.cancelled: frozenset(),
}

TERMINAL: frozenset[DealStatus] = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Statuses the deal moves through on its own once the facts allow it.
AUTOMATIC_PATH: dict[DealStatus, DealStatus] = {
    DealStatus.proposed: DealStatus.accepted_by_all,
    DealStatus.accepted_by_all: DealStatus.signed_recorded,
    DealStatus.signed_recorded: DealStatus.funded_verified,
    DealStatus.funded_verified: DealStatus.in_verification,
}

_VERIFIED_CUSTODY = frozenset(
    {
        CustodyStatus.funding_verified,
        CustodyStatus.release_authorized,
        CustodyStatus.return_authorized,
        CustodyStatus.release_confirmed,
        CustodyStatus.return_confirmed,
    }
)


@dataclass(frozen=True, slots=True)
class DealSnapshot:
    """
    Facts about a deal that the transition guards read.

    Milestone tuples describe the milestones of the current contract only.
    """

    party_count: int = 0
    invitation_statuses: tuple[InvitationStatus, ...] = ()
    milestone_negotiation: tuple[NegotiationStatus, ...] = ()
    milestone_statuses: tuple[MilestoneStatus, ...] = ()
    has_effective_contract: bool = False
    custody_statuses: tuple[CustodyStatus, ...] = ()
    open_disputes: int = 0
    usable_evidence: int = 0

    @property
    def has_verified_custody(self) -> bool:
        return any(s in _VERIFIED_CUSTODY for s in self.custody_statuses)

    @property
    def all_invitations_accepted(self) -> bool:
        return bool(self.invitation_statuses) and all(
            s == InvitationStatus.accepted for s in self.invitation_statuses
        )


@dataclass(slots=True)
class _Reasons:
    items: list[str] = field(default_factory=list)

    def require(self, condition: bool, reason: str) -> None:
        if not condition:
            self.items.append(reason)


def allowed_targets(status: DealStatus) -> frozenset[DealStatus]:
    return TRANSITIONS.get(status, frozenset())


def can_transition(from_status: DealStatus, to_status: DealStatus) -> bool:
    return to_status in allowed_targets(from_status)


def is_terminal(status: DealStatus) -> bool:
    return status in TERMINAL


def blockers(to_status: DealStatus, snapshot: DealSnapshot) -> list[str]:
    """
    Human-readable reasons why the deal cannot enter `to_status` yet.
    An empty list means the guards pass.
    """

    r = _Reasons()
    s = snapshot

    if to_status == DealStatus.proposed:
        r.require(s.party_count >= 2, "a deal needs at least two parties")

    elif to_status == DealStatus.accepted_by_all:
        pending = sum(1 for st in s.invitation_statuses if st != InvitationStatus.accepted)
        r.require(s.party_count > 0 and pending == 0, f"{pending} party invitation(s) not accepted")
        not_agreed = sum(1 for st in s.milestone_negotiation if st != NegotiationStatus.agreed)
        r.require(not_agreed == 0, f"{not_agreed} milestone(s) not agreed by all parties")

    elif to_status == DealStatus.signed_recorded:
        r.require(s.has_effective_contract, "no contract has been accepted by every party")

    elif to_status == DealStatus.funded_verified:
        r.require(
            CustodyStatus.funding_verified in s.custody_statuses,
            "no verified custody funding",
        )

    elif to_status == DealStatus.in_verification:
        r.require(s.usable_evidence > 0, "no evidence has been submitted")

    elif to_status == DealStatus.release_authorized:
        r.require(s.open_disputes == 0, f"{s.open_disputes} open dispute(s)")
        not_approved = sum(1 for st in s.milestone_statuses if st != MilestoneStatus.approved)
        r.require(not_approved == 0, f"{not_approved} milestone(s) not approved")
        r.require(s.has_verified_custody, "no verified custody funding")

    elif to_status == DealStatus.return_authorized:
        r.require(s.has_verified_custody, "no verified custody funding")

    elif to_status == DealStatus.release_confirmed:
        r.require(
            CustodyStatus.release_confirmed in s.custody_statuses,
            "release has not been confirmed by custody",
        )

    elif to_status == DealStatus.return_confirmed:
        r.require(
            CustodyStatus.return_confirmed in s.custody_statuses,
            "return has not been confirmed by custody",
        )

    return r.items


def assert_transition(
    from_status: DealStatus, to_status: DealStatus, snapshot: DealSnapshot
) -> None:
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(str(from_status), str(to_status))
    reasons = blockers(to_status, snapshot)
    if reasons:
        raise TransitionBlockedError(to_status=str(to_status), blockers=reasons)


def next_automatic_status(status: DealStatus, snapshot: DealSnapshot) -> DealStatus | None:
    target = AUTOMATIC_PATH.get(status)
    if target is None or blockers(target, snapshot):
        return None
    return target


def describe(statuses: Iterable[DealStatus]) -> list[str]:
    return sorted(str(s) for s in statuses)


# --- Module Notes -----------------------------------------------------------
# Release / return authorization and closing are always explicit staff actions;
# only the pre-verification path is automatic.
