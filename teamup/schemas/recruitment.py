"""Recruitment Pydantic schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from teamup.models.recruitment_post import PostStatus


class RecruitmentPostCreate(BaseModel):
    team_id: int
    title: str = Field(..., max_length=200)
    description: Optional[str] = None
    positions_available: int = 1
    expires_at: Optional[datetime] = None


class RecruitmentPostOut(BaseModel):
    id: int
    team_id: int
    posted_by: int
    title: str
    description: Optional[str] = None
    positions_available: int
    status: PostStatus
    expires_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ApplicationCreate(BaseModel):
    message: Optional[str] = None
