"""Team Pydantic schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from teamup.models.team import TeamPurpose


class TeamCreate(BaseModel):
    name: str = Field(..., max_length=50)
    description: Optional[str] = None
    year: int
    purpose: TeamPurpose = TeamPurpose.PBL
    max_size: int = 4


class TeamSettingsUpdate(BaseModel):
    max_size: Optional[int] = None
    purpose: Optional[TeamPurpose] = None


class LeaderTransfer(BaseModel):
    new_leader_id: int


class MemberRemoval(BaseModel):
    note: Optional[str] = None


class MemberOut(BaseModel):
    user_id: int
    name: Optional[str] = None
    section: Optional[str] = None
    year: Optional[int] = None

    model_config = {"from_attributes": True}


class TeamOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    year: int
    leader_id: int
    purpose: TeamPurpose
    max_size: int
    member_count: int
    is_full: bool
    members: List[MemberOut] = []

    model_config = {"from_attributes": True}


class JoinRequestCreate(BaseModel):
    message: Optional[str] = None


class WarningOut(BaseModel):
    step: str
    message: str


class RosterChangeOut(BaseModel):
    team_id: int
    user_id: int
    member_count: int
    is_full: bool
    warnings: List[WarningOut] = []


class DecisionOut(BaseModel):
    subject: str
    id: int
    status: str
    team_id: int
    user_id: int
    member_count: int
    is_full: bool
    already_member: bool = False
    positions_remaining: Optional[int] = None
    warnings: List[WarningOut] = []


class SubmissionOut(BaseModel):
    subject: str
    id: int
    status: str
    resubmitted: bool = False
    updated: bool = False
    warnings: List[WarningOut] = []


class ConflictOut(BaseModel):
    has_member_conflict: bool
    conflicting_member: Optional[MemberOut] = None
    has_pending_same_section: bool


class ReviewEntryOut(BaseModel):
    id: int
    status: str
    message: Optional[str] = None
    submitted_at: Optional[datetime] = None
    candidate: MemberOut
    conflict: ConflictOut


class PostReviewOut(BaseModel):
    post_id: int
    team_id: int
    title: str
    status: str
    positions_available: int
    applications: List[ReviewEntryOut] = []
    conflict_applications: List[ReviewEntryOut] = []


class RetryOut(BaseModel):
    completed: List[str] = []
    positions_remaining: Optional[int] = None
    warnings: List[WarningOut] = []
