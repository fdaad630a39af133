"""Membership mutator, the only code that adds or removes roster rows.

``member_count`` and ``is_full`` on the team are re-derived from the
membership table after each change instead of being patched in place.
"""

import logging

from teamup.models.team import Team
from teamup.services.errors import CannotRemoveLeader, NotAllowed, NotFound
from teamup.services.protocols import MembershipResult, RosterStore

logger = logging.getLogger(__name__)


class MembershipMutator:
    def __init__(self, roster: RosterStore):
        self.roster = roster

    async def add_member(self, team_id: int, user_id: int) -> MembershipResult:
        """Idempotently add ``user_id``; ALREADY_MEMBER leaves the counters untouched.

        Takes the team lock first, so anything the caller checks against the
        roster afterwards in the same transaction sees every committed member.
        """
        await self.roster.lock_team(team_id)
        result = await self.roster.insert_membership(team_id, user_id)
        if result is MembershipResult.ADDED:
            await self.recompute(team_id)
            logger.info(f"User {user_id} added to team {team_id}")
        return result

    async def remove_member(self, team: Team, user_id: int) -> bool:
        """Remove ``user_id``; returns False when they were not on the team."""
        if user_id == team.leader_id:
            raise CannotRemoveLeader()

        await self.roster.lock_team(team.id)
        removed = await self.roster.delete_membership(team.id, user_id)
        if removed:
            count = await self.roster.count_members(team.id)
            await self.roster.update_team_derived_fields(
                team.id, member_count=count, is_full=count >= team.max_size,
            )
            logger.info(f"User {user_id} removed from team {team.id}")
        return removed

    async def recompute(self, team_id: int) -> Team:
        team = await self.roster.get_team(team_id)
        if not team:
            raise NotFound("Team not found.")
        count = await self.roster.count_members(team_id)
        await self.roster.update_team_derived_fields(
            team_id, member_count=count, is_full=count >= team.max_size,
        )
        return await self.roster.get_team(team_id)

    async def transfer_leadership(self, team: Team, new_leader_id: int) -> None:
        if new_leader_id == team.leader_id:
            return
        if not await self.roster.is_member(team.id, new_leader_id):
            raise NotAllowed("The new leader must already be a member of the team.")
        await self.roster.set_leader(team.id, new_leader_id)
        logger.info(f"Team {team.id} leadership: {team.leader_id} -> {new_leader_id}")
