"""Chat Room models."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column

from teamup.database import Base


class ChatRole(str, enum.Enum):
    OWNER = "owner"
    MEMBER = "member"


class ChatRoom(Base):
    """
    A ChatRoom is provisioned for each team once it gains a member.
    Messages belong to a ChatRoom.
    """
    __tablename__ = "chat_rooms"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(200))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class ChatRoomMember(Base):
    __tablename__ = "chat_room_members"

    chat_room_id: Mapped[int] = mapped_column(ForeignKey("chat_rooms.id", ondelete="CASCADE"), primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role: Mapped[ChatRole] = mapped_column(Enum(ChatRole), default=ChatRole.MEMBER)

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
