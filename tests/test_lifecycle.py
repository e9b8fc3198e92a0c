"""
tests.test_lifecycle

Pure tests for the deal transition table and guards.
"""

from __future__ import annotations

import pytest

from dealguard.db.models import (
    CustodyStatus,
    DealStatus,
    InvitationStatus,
    MilestoneStatus,
    NegotiationStatus,
)
from dealguard.domain import lifecycle
from dealguard.domain.lifecycle import DealSnapshot
from dealguard.errors import InvalidTransitionError, TransitionBlockedError


def test_terminal_statuses_have_no_targets() -> None:
    assert lifecycle.TERMINAL == {DealStatus.closed, DealStatus.cancelled}
    for status in lifecycle.TERMINAL:
        assert lifecycle.allowed_targets(status) == frozenset()


def test_every_status_is_in_the_table() -> None:
    assert set(lifecycle.TRANSITIONS) == set(DealStatus)


@pytest.mark.parametrize(
    ("src", "dst", "ok"),
    [
        (DealStatus.draft, DealStatus.proposed, True),
        (DealStatus.draft, DealStatus.accepted_by_all, False),
        (DealStatus.signed_recorded, DealStatus.cancelled, True),
        (DealStatus.funded_verified, DealStatus.cancelled, False),
        (DealStatus.funded_verified, DealStatus.return_authorized, True),
        (DealStatus.funded_verified, DealStatus.release_authorized, False),
        (DealStatus.release_authorized, DealStatus.return_confirmed, False),
        (DealStatus.return_confirmed, DealStatus.closed, True),
        (DealStatus.closed, DealStatus.draft, False),
    ],
)
def test_can_transition(src: DealStatus, dst: DealStatus, ok: bool) -> None:
    assert lifecycle.can_transition(src, dst) is ok


def test_proposal_requires_two_parties() -> None:
    assert lifecycle.blockers(DealStatus.proposed, DealSnapshot(party_count=1))
    assert lifecycle.blockers(DealStatus.proposed, DealSnapshot(party_count=2)) == []


def test_accepted_by_all_needs_invitations_and_agreed_milestones() -> None:
    snap = DealSnapshot(
        party_count=2,
        invitation_statuses=(InvitationStatus.accepted, InvitationStatus.pending),
        milestone_negotiation=(NegotiationStatus.agreed, NegotiationStatus.amendment_pending),
    )
    reasons = lifecycle.blockers(DealStatus.accepted_by_all, snap)
    assert len(reasons) == 2
    assert "1 party invitation(s) not accepted" in reasons
    assert "1 milestone(s) not agreed by all parties" in reasons


def test_release_blocked_by_open_dispute() -> None:
    snap = DealSnapshot(
        milestone_statuses=(MilestoneStatus.approved,),
        custody_statuses=(CustodyStatus.funding_verified,),
        open_disputes=1,
    )
    assert lifecycle.blockers(DealStatus.release_authorized, snap) == ["1 open dispute(s)"]


def test_assert_transition_distinguishes_table_and_guard_failures() -> None:
    with pytest.raises(InvalidTransitionError):
        lifecycle.assert_transition(DealStatus.draft, DealStatus.closed, DealSnapshot())

    with pytest.raises(TransitionBlockedError) as exc:
        lifecycle.assert_transition(
            DealStatus.signed_recorded, DealStatus.funded_verified, DealSnapshot()
        )
    assert exc.value.blockers == ["no verified custody funding"]
    assert "FUNDED_VERIFIED" in str(exc.value)


def test_next_automatic_status() -> None:
    ready = DealSnapshot(
        party_count=2,
        invitation_statuses=(InvitationStatus.accepted, InvitationStatus.accepted),
    )
    assert lifecycle.next_automatic_status(DealStatus.proposed, ready) == DealStatus.accepted_by_all
    # Release authorization is never automatic.
    assert lifecycle.next_automatic_status(DealStatus.in_verification, ready) is None
    assert lifecycle.next_automatic_status(DealStatus.accepted_by_all, ready) is None
