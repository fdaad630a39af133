"""Lifecycle rules for applications and join requests.

    pending  --accept-->  accepted / approved   (terminal)
    pending  --reject-->  rejected              (terminal for applications)
    rejected --resubmit-> pending               (join requests only)

Pure functions only: callers load state, ask here whether the transition is
legal, then perform the conditional write themselves. Side effects are never
triggered from this module.
"""

import enum
from typing import Optional

from teamup.models.application import ApplicationStatus
from teamup.models.request import RequestStatus
from teamup.models.team import Team
from teamup.services.capacity import ensure_capacity, has_capacity
from teamup.services.errors import (
    AlreadyReviewed,
    CapacityExceeded,
    ConflictingMember,
    InvalidTransition,
    NotAllowed,
    NotTeamLeader,
    SectionYearConflict,
)

PENDING = "pending"


class Subject(str, enum.Enum):
    APPLICATION = "application"
    JOIN_REQUEST = "join_request"


class Decision(str, enum.Enum):
    ACCEPT = "accept"
    REJECT = "reject"


PENDING_STATUS = {
    Subject.APPLICATION: ApplicationStatus.PENDING,
    Subject.JOIN_REQUEST: RequestStatus.PENDING,
}

ACCEPTED_STATUS = {
    Subject.APPLICATION: ApplicationStatus.ACCEPTED,
    Subject.JOIN_REQUEST: RequestStatus.APPROVED,
}

REJECTED_STATUS = {
    Subject.APPLICATION: ApplicationStatus.REJECTED,
    Subject.JOIN_REQUEST: RequestStatus.REJECTED,
}

TRANSITIONS = {
    Subject.APPLICATION: {
        (ApplicationStatus.PENDING, ApplicationStatus.ACCEPTED),
        (ApplicationStatus.PENDING, ApplicationStatus.REJECTED),
    },
    Subject.JOIN_REQUEST: {
        (RequestStatus.PENDING, RequestStatus.APPROVED),
        (RequestStatus.PENDING, RequestStatus.REJECTED),
        (RequestStatus.REJECTED, RequestStatus.PENDING),
    },
}


def _value(status) -> str:
    return str(getattr(status, "value", status))


def is_allowed(subject: Subject, current, target) -> bool:
    pair = (_value(current), _value(target))
    return any((_value(a), _value(b)) == pair for a, b in TRANSITIONS[subject])


def target_status(subject: Subject, decision: Decision):
    if decision is Decision.ACCEPT:
        return ACCEPTED_STATUS[subject]
    return REJECTED_STATUS[subject]


def ensure_leader(team: Team, actor_id: int) -> None:
    if team.leader_id != actor_id:
        raise NotTeamLeader()


def decide(
    subject: Subject,
    current,
    decision: Decision,
    *,
    team: Team,
    actor_id: int,
    conflict: Optional[ConflictingMember] = None,
    already_member: bool = False,
):
    """Validate a leader decision and return the status to write.

    Checks run in a fixed order: authority, stale decision, capacity,
    section/year conflict. Rejections skip the last two, and so does an
    acceptance of someone already on the roster.
    """
    ensure_leader(team, actor_id)

    if _value(current) != PENDING:
        raise AlreadyReviewed()

    target = target_status(subject, decision)
    if decision is Decision.ACCEPT and not already_member:
        ensure_capacity(team)
        if conflict is not None:
            raise SectionYearConflict(conflict)
    return target


def resubmit(current, *, team: Team, requester_id: int, owner_id: int):
    """Validate a requester putting a rejected join request back to pending."""
    if requester_id != owner_id:
        raise NotAllowed("Only the requester can resubmit a join request.")
    if _value(current) == PENDING:
        raise InvalidTransition("Your join request is already pending review.")
    if not is_allowed(Subject.JOIN_REQUEST, current, RequestStatus.PENDING):
        raise InvalidTransition(f"A join request in state '{_value(current)}' cannot be resubmitted.")
    if not has_capacity(team):
        raise CapacityExceeded(team.name)
    return RequestStatus.PENDING
