"""Recruitment post model — open positions advertised by a team."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from teamup.database import Base


class PostStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    ARCHIVED = "archived"


class RecruitmentPost(Base):
    __tablename__ = "recruitment_posts"
    __table_args__ = (
        CheckConstraint("positions_available >= 0", name="ck_recruitment_positions"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    posted_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    positions_available: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[PostStatus] = mapped_column(Enum(PostStatus), default=PostStatus.OPEN)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
