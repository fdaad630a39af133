"""State machine and capacity guard — pure decision rules.

Invariants:
    - Checks run in order: leader, still pending, capacity, section/year
    - Terminal states never transition again (AlreadyReviewed)
    - Only rejected join requests may go back to pending
"""

import pytest

from teamup.models.application import ApplicationStatus
from teamup.models.request import RequestStatus
from teamup.models.team import Team
from teamup.services import state_machine
from teamup.services.capacity import clamp_team_size, ensure_capacity, has_capacity, remaining_slots
from teamup.services.errors import (
    AlreadyReviewed,
    CapacityExceeded,
    ConflictingMember,
    InvalidTransition,
    NotAllowed,
    NotTeamLeader,
    SectionYearConflict,
)
from teamup.services.state_machine import Decision, Subject

CONFLICT = ConflictingMember(user_id=9, name="Ravi", section="A1", year=2)


def _team(member_count=2, max_size=4, leader_id=1):
    return Team(name="Blue", year=2, leader_id=leader_id, max_size=max_size, member_count=member_count)


# ── Capacity guard ──

def test_capacity_helpers():
    assert has_capacity(_team(3, 4))
    assert not has_capacity(_team(4, 4))
    assert remaining_slots(_team(1, 4)) == 3
    assert remaining_slots(_team(4, 4)) == 0
    with pytest.raises(CapacityExceeded, match="Blue"):
        ensure_capacity(_team(4, 4))


@pytest.mark.parametrize("raw,expected", [(0, 1), (-3, 1), (4.6, 5), (11, 10), (7, 7)])
def test_clamp_team_size(raw, expected):
    assert clamp_team_size(raw) == expected


# ── Leader decisions ──

def test_accept_returns_subject_specific_status():
    team = _team()
    assert state_machine.decide(
        Subject.APPLICATION, ApplicationStatus.PENDING, Decision.ACCEPT, team=team, actor_id=1,
    ) == ApplicationStatus.ACCEPTED
    assert state_machine.decide(
        Subject.JOIN_REQUEST, RequestStatus.PENDING, Decision.ACCEPT, team=team, actor_id=1,
    ) == RequestStatus.APPROVED


def test_only_leader_decides():
    with pytest.raises(NotTeamLeader):
        state_machine.decide(
            Subject.APPLICATION, ApplicationStatus.PENDING, Decision.REJECT, team=_team(), actor_id=2,
        )


@pytest.mark.parametrize("status", [ApplicationStatus.ACCEPTED, ApplicationStatus.REJECTED])
def test_terminal_application_is_already_reviewed(status):
    with pytest.raises(AlreadyReviewed):
        state_machine.decide(Subject.APPLICATION, status, Decision.ACCEPT, team=_team(), actor_id=1)


def test_accept_checks_capacity_before_conflict():
    with pytest.raises(CapacityExceeded):
        state_machine.decide(
            Subject.APPLICATION, ApplicationStatus.PENDING, Decision.ACCEPT,
            team=_team(4, 4), actor_id=1, conflict=CONFLICT,
        )


def test_accept_with_conflict_names_member():
    with pytest.raises(SectionYearConflict) as exc:
        state_machine.decide(
            Subject.JOIN_REQUEST, RequestStatus.PENDING, Decision.ACCEPT,
            team=_team(), actor_id=1, conflict=CONFLICT,
        )
    assert "Ravi" in exc.value.message
    assert exc.value.to_response()["error"]["conflicting_member"]["user_id"] == 9


def test_reject_ignores_capacity_and_conflict():
    assert state_machine.decide(
        Subject.APPLICATION, ApplicationStatus.PENDING, Decision.REJECT,
        team=_team(4, 4), actor_id=1, conflict=CONFLICT,
    ) == ApplicationStatus.REJECTED


def test_accepting_existing_member_skips_capacity():
    assert state_machine.decide(
        Subject.APPLICATION, ApplicationStatus.PENDING, Decision.ACCEPT,
        team=_team(4, 4), actor_id=1, already_member=True,
    ) == ApplicationStatus.ACCEPTED


def test_transition_table():
    assert state_machine.is_allowed(Subject.JOIN_REQUEST, RequestStatus.REJECTED, RequestStatus.PENDING)
    assert not state_machine.is_allowed(Subject.APPLICATION, ApplicationStatus.REJECTED, ApplicationStatus.PENDING)
    assert not state_machine.is_allowed(Subject.JOIN_REQUEST, RequestStatus.APPROVED, RequestStatus.REJECTED)
    assert state_machine.is_allowed(Subject.APPLICATION, "pending", "accepted")


# ── Resubmission ──

def test_resubmit_rejected_request():
    assert state_machine.resubmit(
        RequestStatus.REJECTED, team=_team(), requester_id=3, owner_id=3,
    ) == RequestStatus.PENDING


def test_resubmit_rules():
    with pytest.raises(NotAllowed):
        state_machine.resubmit(RequestStatus.REJECTED, team=_team(), requester_id=3, owner_id=4)
    with pytest.raises(InvalidTransition):
        state_machine.resubmit(RequestStatus.PENDING, team=_team(), requester_id=3, owner_id=3)
    with pytest.raises(InvalidTransition):
        state_machine.resubmit(RequestStatus.APPROVED, team=_team(), requester_id=3, owner_id=3)
    with pytest.raises(CapacityExceeded):
        state_machine.resubmit(RequestStatus.REJECTED, team=_team(4, 4), requester_id=3, owner_id=3)
