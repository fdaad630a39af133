"""Recruitment router — posts, applications, and the leader's review queue."""

from typing import List

from fastapi import APIRouter, Depends, status

from teamup.models.user import User
from teamup.routers.auth import require_user
from teamup.routers.common import (
    decision_out,
    get_reconciliation,
    retry_out,
    review_entry_out,
    submission_out,
)
from teamup.schemas.recruitment import ApplicationCreate, RecruitmentPostCreate, RecruitmentPostOut
from teamup.schemas.team import DecisionOut, PostReviewOut, RetryOut, SubmissionOut
from teamup.services.reconciliation import ReconciliationService
from teamup.services.state_machine import Subject

router = APIRouter(prefix="/recruitment", tags=["recruitment"])


@router.post("", response_model=RecruitmentPostOut, status_code=status.HTTP_201_CREATED)
async def open_post(
    payload: RecruitmentPostCreate,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    """Leader-only: advertise open positions on a team."""
    return await service.open_recruitment_post(
        payload.team_id,
        current_user.id,
        payload.title,
        description=payload.description or "",
        positions=payload.positions_available,
        expires_at=payload.expires_at,
    )


@router.post("/{post_id}/applications", response_model=SubmissionOut, status_code=status.HTTP_201_CREATED)
async def apply(
    post_id: int,
    payload: ApplicationCreate = ApplicationCreate(),
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    """Apply to a post; re-applying while still pending only updates the message."""
    outcome = await service.submit_application(post_id, current_user.id, payload.message)
    return submission_out(outcome)


@router.get("/applications/review", response_model=List[PostReviewOut])
async def review_applications(
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    """Pending applications to the current user's posts, conflicts listed separately."""
    reviews = await service.list_applications_for_review(current_user.id)
    return [
        {
            "post_id": r.post_id,
            "team_id": r.team_id,
            "title": r.title,
            "status": r.status,
            "positions_available": r.positions_available,
            "applications": [review_entry_out(e) for e in r.applications],
            "conflict_applications": [review_entry_out(e) for e in r.conflict_applications],
        }
        for r in reviews
    ]


@router.post("/applications/{application_id}/accept", response_model=DecisionOut)
async def accept_application(
    application_id: int,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    outcome = await service.accept_application(application_id, current_user.id)
    return decision_out(outcome)


@router.post("/applications/{application_id}/reject", response_model=DecisionOut)
async def reject_application(
    application_id: int,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    outcome = await service.reject_application(application_id, current_user.id)
    return decision_out(outcome)


@router.post("/applications/{application_id}/retry", response_model=RetryOut)
async def retry_application_side_effects(
    application_id: int,
    current_user: User = Depends(require_user),
    service: ReconciliationService = Depends(get_reconciliation),
):
    """Leader-only: re-run whatever side effects failed after an acceptance."""
    report = await service.retry_side_effects(Subject.APPLICATION, application_id, current_user.id)
    return retry_out(report)
