"""Shared router dependencies and response builders."""

from typing import List

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from teamup.database import get_db
from teamup.services.conflicts import ProfileSnapshot
from teamup.services.dispatcher import DispatchReport
from teamup.services.errors import SideEffectFailure
from teamup.services.protocols import MembershipResult
from teamup.services.reconciliation import (
    DecisionOutcome,
    ReconciliationService,
    ReviewEntry,
    RosterChange,
    SubmissionOutcome,
)


async def get_reconciliation(db: AsyncSession = Depends(get_db)) -> ReconciliationService:
    return ReconciliationService(db)


def warnings_out(failures: List[SideEffectFailure]) -> List[dict]:
    return [{"step": f.step, "message": f.message} for f in failures]


def member_out(profile) -> dict:
    return {
        "user_id": profile.user_id,
        "name": profile.name,
        "section": profile.section,
        "year": profile.year,
    }


def decision_out(outcome: DecisionOutcome) -> dict:
    return {
        "subject": outcome.subject.value,
        "id": outcome.entity_id,
        "status": outcome.status,
        "team_id": outcome.team_id,
        "user_id": outcome.user_id,
        "member_count": outcome.member_count,
        "is_full": outcome.is_full,
        "already_member": outcome.membership is MembershipResult.ALREADY_MEMBER,
        "positions_remaining": outcome.dispatch.positions_remaining if outcome.dispatch else None,
        "warnings": warnings_out(outcome.warnings),
    }


def retry_out(report: DispatchReport) -> dict:
    return {
        "completed": list(report.completed),
        "positions_remaining": report.positions_remaining,
        "warnings": warnings_out(report.failures),
    }


def submission_out(outcome: SubmissionOutcome) -> dict:
    return {
        "subject": outcome.subject.value,
        "id": outcome.entity_id,
        "status": outcome.status,
        "resubmitted": outcome.resubmitted,
        "updated": outcome.updated,
        "warnings": warnings_out(outcome.warnings),
    }


def roster_change_out(change: RosterChange) -> dict:
    return {
        "team_id": change.team_id,
        "user_id": change.user_id,
        "member_count": change.member_count,
        "is_full": change.is_full,
        "warnings": warnings_out(change.warnings),
    }


def review_entry_out(entry: ReviewEntry) -> dict:
    conflict = entry.conflict
    return {
        "id": entry.entity_id,
        "status": entry.status,
        "message": entry.message,
        "submitted_at": entry.submitted_at,
        "candidate": member_out(entry.candidate),
        "conflict": {
            "has_member_conflict": conflict.has_member_conflict,
            "conflicting_member": member_out(conflict.conflicting_member) if conflict.conflicting_member else None,
            "has_pending_same_section": conflict.has_pending_same_section,
        },
    }


def roster_out(members: List[ProfileSnapshot]) -> List[dict]:
    return [member_out(m) for m in members]
