"""Team chat provisioning.

Every team has at most one chat room. ``ensure_team_channel`` creates it on
first use and adds any missing members; running it again changes nothing.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from teamup.database import upsert_insert
from teamup.models.chat_room import ChatRole, ChatRoom, ChatRoomMember

logger = logging.getLogger(__name__)


class ChatProvisioningService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _room_id(self, team_id: int) -> Optional[int]:
        result = await self.db.execute(select(ChatRoom.id).where(ChatRoom.team_id == team_id))
        return result.scalar_one_or_none()

    async def ensure_team_channel(
        self,
        team_id: int,
        leader_id: int,
        member_ids: Sequence[int],
        name: Optional[str] = None,
    ) -> int:
        """Return the team's room id, creating the room and memberships as needed."""
        room_id = await self._room_id(team_id)
        if room_id is None:
            await self.db.execute(
                upsert_insert(self.db, ChatRoom.__table__)
                .values(team_id=team_id, name=(name or "").strip() or None)
                .on_conflict_do_nothing(index_elements=["team_id"])
            )
            room_id = await self._room_id(team_id)
            logger.info(f"Provisioned chat room {room_id} for team {team_id}")

        wanted = [leader_id] + [uid for uid in dict.fromkeys(member_ids) if uid != leader_id]
        rows = [
            {
                "chat_room_id": room_id,
                "user_id": uid,
                "role": ChatRole.OWNER if uid == leader_id else ChatRole.MEMBER,
            }
            for uid in wanted
        ]
        await self.db.execute(
            upsert_insert(self.db, ChatRoomMember.__table__)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["chat_room_id", "user_id"])
        )
        return room_id

    async def remove_member(self, team_id: int, user_id: int) -> None:
        room_id = await self._room_id(team_id)
        if room_id is None:
            return
        await self.db.execute(
            ChatRoomMember.__table__.delete().where(
                ChatRoomMember.chat_room_id == room_id,
                ChatRoomMember.user_id == user_id,
            )
        )
