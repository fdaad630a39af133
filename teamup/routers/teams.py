"""Teams router – roster, settings, leadership and join requests (JSON API)."""

from typing import List

from fastapi import APIRouter, Depends, status

from teamup.models.user import User
from teamup.routers.auth import require_user
from teamup.routers.common import (
    decision_out,
    get_reconciliation,
    retry_out,
    review_entry_out,
    roster_change_out,
    roster_out,
    submission_out,
)
from teamup.schemas.team import (
    DecisionOut,
    JoinRequestCreate,
    LeaderTransfer,
    MemberRemoval,
    RetryOut,
    ReviewEntryOut,
    RosterChangeOut,
    SubmissionOut,
    TeamCreate,
    TeamOut,
    TeamSettingsUpdate,
)
from teamup.services.reconciliation import ReconciliationService
from teamup.services.state_machine import Subject

router = APIRouter(prefix="/teams", tags=["teams"])


async def _team_out(service: ReconciliationService, team_id: int) -> dict:
    team, members = await service.get_team_roster(team_id)
    data = TeamOut.model_validate(team).model_dump()
    data["members"] = roster_out(members)
    return data


# ═══════════════════════════════════════════════════════════════
#  Team lifecycle
# ═══════════════════════════════════════════════════════════════

@router.post("", response_model=TeamOut, status_code=status.HTTP_201_CREATED)
async def create_team(
    payload: TeamCreate,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    """Create a team led by the current user, who becomes its first member."""
    team = await service.create_team(
        current_user.id,
        payload.name,
        payload.year,
        purpose=payload.purpose,
        max_size=payload.max_size,
        description=payload.description,
    )
    return await _team_out(service, team.id)


@router.get("/{team_id}", response_model=TeamOut)
async def team_detail(
    team_id: int,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    return await _team_out(service, team_id)


@router.patch("/{team_id}/settings", response_model=TeamOut)
async def update_settings(
    team_id: int,
    payload: TeamSettingsUpdate,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    """Leader-only: resize the team or change its purpose."""
    await service.update_team_settings(
        team_id, current_user.id, max_size=payload.max_size, purpose=payload.purpose,
    )
    return await _team_out(service, team_id)


@router.post("/{team_id}/leave", response_model=RosterChangeOut)
async def leave_team(
    team_id: int,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    change = await service.leave_team(team_id, current_user.id)
    return roster_change_out(change)


@router.post("/{team_id}/members/{user_id}/remove", response_model=RosterChangeOut)
async def remove_member(
    team_id: int,
    user_id: int,
    payload: MemberRemoval = MemberRemoval(),
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    """Leader-only: remove a member, optionally with a note sent to them."""
    change = await service.remove_member(team_id, current_user.id, user_id, note=payload.note)
    return roster_change_out(change)


@router.post("/{team_id}/leader", response_model=TeamOut)
async def transfer_leadership(
    team_id: int,
    payload: LeaderTransfer,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    await service.transfer_leadership(team_id, current_user.id, payload.new_leader_id)
    return await _team_out(service, team_id)


# ═══════════════════════════════════════════════════════════════
#  Join requests
# ═══════════════════════════════════════════════════════════════

@router.post("/{team_id}/join-requests", response_model=SubmissionOut, status_code=status.HTTP_201_CREATED)
async def request_to_join(
    team_id: int,
    payload: JoinRequestCreate = JoinRequestCreate(),
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    """Ask to join a team; a rejected request is put back to pending."""
    outcome = await service.submit_join_request(team_id, current_user.id, payload.message)
    return submission_out(outcome)


@router.get("/{team_id}/join-requests", response_model=List[ReviewEntryOut])
async def list_join_requests(
    team_id: int,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    """Leader-only: pending join requests with section/year annotations."""
    entries = await service.list_join_requests_for_review(team_id, current_user.id)
    return [review_entry_out(e) for e in entries]


@router.post("/join-requests/{request_id}/approve", response_model=DecisionOut)
async def approve_join_request(
    request_id: int,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    outcome = await service.approve_join_request(request_id, current_user.id)
    return decision_out(outcome)


@router.post("/join-requests/{request_id}/reject", response_model=DecisionOut)
async def reject_join_request(
    request_id: int,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    outcome = await service.reject_join_request(request_id, current_user.id)
    return decision_out(outcome)


@router.post("/join-requests/{request_id}/retry", response_model=RetryOut)
async def retry_join_request_side_effects(
    request_id: int,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    """Leader-only: re-run chat and notification steps after a partial failure."""
    report = await service.retry_side_effects(Subject.JOIN_REQUEST, request_id, current_user.id)
    return retry_out(report)
