"""Team model."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from teamup.database import Base


class TeamPurpose(str, enum.Enum):
    HACKATHON = "hackathon"
    COLLEGE_EVENT = "college_event"
    PBL = "pbl"
    OTHER = "other"


class Team(Base):
    __tablename__ = "teams"
    __table_args__ = (
        CheckConstraint("max_size BETWEEN 1 AND 10", name="ck_teams_max_size"),
        CheckConstraint("member_count <= max_size", name="ck_teams_member_count"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    leader_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    purpose: Mapped[TeamPurpose] = mapped_column(Enum(TeamPurpose), default=TeamPurpose.PBL)

    # ── Derived from team_members, recomputed after every roster change ──
    max_size: Mapped[int] = mapped_column(Integer, default=4)
    member_count: Mapped[int] = mapped_column(Integer, default=0)
    is_full: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
