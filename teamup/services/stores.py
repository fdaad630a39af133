"""SQLAlchemy-backed roster, request, recruitment-post and profile stores.

Writes are conditional single statements so that concurrent decisions on
the same team are arbitrated by the database, not by a prior read:

* memberships are inserted with ``INSERT ... SELECT ... WHERE count < max_size
  ON CONFLICT DO NOTHING``;
* status changes are ``UPDATE ... WHERE status = :expected``;
* open positions are decremented with ``WHERE positions_available > 0``.

None of the stores commit; the caller owns the transaction.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from teamup.database import upsert_insert
from teamup.models.application import Application, ApplicationStatus
from teamup.models.recruitment_post import PostStatus, RecruitmentPost
from teamup.models.request import JoinRequest, RequestStatus
from teamup.models.team import Team, TeamPurpose
from teamup.models.team_membership import TeamMembership
from teamup.models.user import User
from teamup.services.conflicts import ProfileSnapshot
from teamup.services.errors import AlreadyReviewed, CapacityExceeded, NotFound
from teamup.services.protocols import MembershipResult
from teamup.services.state_machine import Subject

logger = logging.getLogger(__name__)


def _snapshot(user: User) -> ProfileSnapshot:
    return ProfileSnapshot(user_id=user.id, name=user.full_name, section=user.section, year=user.year)


class SqlRosterStore:
    """Teams and their membership rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_team(self, team_id: int) -> Optional[Team]:
        result = await self.db.execute(
            select(Team).where(Team.id == team_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_teams_led_by(self, leader_id: int) -> List[Team]:
        result = await self.db.execute(
            select(Team).where(Team.leader_id == leader_id).order_by(Team.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_active_members(self, team_id: int) -> List[ProfileSnapshot]:
        result = await self.db.execute(
            select(User)
            .join(TeamMembership, TeamMembership.user_id == User.id)
            .where(TeamMembership.team_id == team_id)
            .order_by(TeamMembership.joined_at, User.id)
        )
        return [_snapshot(user) for user in result.scalars().all()]

    async def is_member(self, team_id: int, user_id: int) -> bool:
        result = await self.db.execute(
            select(TeamMembership.user_id).where(
                TeamMembership.team_id == team_id,
                TeamMembership.user_id == user_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def count_members(self, team_id: int) -> int:
        result = await self.db.execute(
            select(func.count(TeamMembership.user_id)).where(TeamMembership.team_id == team_id)
        )
        return result.scalar() or 0

    async def lock_team(self, team_id: int) -> None:
        """Hold the team row until commit so roster writes to one team run one at a time.

        SQLite has no row locks and drops FOR UPDATE; its writers are already
        serialized on the database file.
        """
        await self.db.execute(select(Team.id).where(Team.id == team_id).with_for_update())

    async def insert_membership(self, team_id: int, user_id: int) -> MembershipResult:
        """Insert (team, user) if the team still has a free seat.

        Capacity and uniqueness are both decided by the one statement.
        Raises CapacityExceeded when no row was written and the user is not
        already on the team.
        """
        current = (
            select(func.count(TeamMembership.user_id))
            .where(TeamMembership.team_id == team_id)
            .scalar_subquery()
        )
        limit = select(Team.max_size).where(Team.id == team_id).scalar_subquery()
        seat = select(literal(team_id), literal(user_id)).where(current < limit)

        stmt = (
            upsert_insert(self.db, TeamMembership.__table__)
            .from_select(["team_id", "user_id"], seat)
            .on_conflict_do_nothing(index_elements=["team_id", "user_id"])
        )
        result = await self.db.execute(stmt)
        if result.rowcount:
            return MembershipResult.ADDED
        if await self.is_member(team_id, user_id):
            return MembershipResult.ALREADY_MEMBER
        team = await self.get_team(team_id)
        raise CapacityExceeded(team.name if team else None)

    async def delete_membership(self, team_id: int, user_id: int) -> bool:
        result = await self.db.execute(
            TeamMembership.__table__.delete().where(
                TeamMembership.team_id == team_id,
                TeamMembership.user_id == user_id,
            )
        )
        return bool(result.rowcount)

    async def update_team_derived_fields(self, team_id: int, *, member_count: int, is_full: bool) -> None:
        await self.db.execute(
            update(Team)
            .where(Team.id == team_id)
            .values(member_count=member_count, is_full=is_full)
            .execution_options(synchronize_session=False)
        )

    async def set_leader(self, team_id: int, leader_id: int) -> None:
        await self.db.execute(
            update(Team)
            .where(Team.id == team_id)
            .values(leader_id=leader_id)
            .execution_options(synchronize_session=False)
        )

    async def set_purpose(self, team_id: int, purpose: TeamPurpose) -> None:
        await self.db.execute(
            update(Team)
            .where(Team.id == team_id)
            .values(purpose=purpose)
            .execution_options(synchronize_session=False)
        )

    async def resize(self, team_id: int, max_size: int) -> bool:
        """Set max_size unless it would drop below the current member count."""
        result = await self.db.execute(
            update(Team)
            .where(Team.id == team_id, Team.member_count <= max_size)
            .values(max_size=max_size, is_full=Team.member_count >= max_size)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)


class SqlRequestStore:
    """Applications and join requests."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_application(self, application_id: int) -> Optional[Application]:
        result = await self.db.execute(
            select(Application).where(Application.id == application_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_join_request(self, request_id: int) -> Optional[JoinRequest]:
        result = await self.db.execute(
            select(JoinRequest).where(JoinRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_join_request(self, team_id: int, requester_id: int) -> Optional[JoinRequest]:
        result = await self.db.execute(
            select(JoinRequest)
            .where(JoinRequest.team_id == team_id, JoinRequest.requester_id == requester_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_application(self, post_id: int, applicant_id: int) -> Optional[Application]:
        result = await self.db.execute(
            select(Application)
            .where(Application.recruitment_post_id == post_id, Application.applicant_id == applicant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_join_request(self, team_id: int, requester_id: int, message: Optional[str]) -> JoinRequest:
        join_request = JoinRequest(team_id=team_id, requester_id=requester_id, message=message)
        self.db.add(join_request)
        await self.db.flush()
        return join_request

    async def create_application(self, post_id: int, applicant_id: int, message: Optional[str]) -> Application:
        application = Application(recruitment_post_id=post_id, applicant_id=applicant_id, message=message)
        self.db.add(application)
        await self.db.flush()
        return application

    async def update_application_message(self, application_id: int, message: Optional[str]) -> None:
        await self.db.execute(
            update(Application)
            .where(Application.id == application_id, Application.status == ApplicationStatus.PENDING)
            .values(message=message)
            .execution_options(synchronize_session=False)
        )

    async def set_status(self, subject: str, entity_id: int, expected, new, **values: object) -> None:
        """Move an application or join request from ``expected`` to ``new``.

        Raises AlreadyReviewed if the row is no longer in ``expected``.
        ``reviewed_at`` is stamped on decisions and cleared on resubmission.
        """
        model = Application if Subject(subject) is Subject.APPLICATION else JoinRequest
        reviewed_at = None if str(getattr(new, "value", new)) == "pending" else datetime.now(timezone.utc)
        result = await self.db.execute(
            update(model)
            .where(model.id == entity_id, model.status == expected)
            .values(status=new, reviewed_at=reviewed_at, **values)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise AlreadyReviewed()
        logger.info(f"{subject} {entity_id}: {getattr(expected, 'value', expected)} -> {getattr(new, 'value', new)}")

    async def pending_applications(
        self, post_ids: List[int], status: Optional[ApplicationStatus] = ApplicationStatus.PENDING,
    ) -> List[Tuple[Application, ProfileSnapshot]]:
        if not post_ids:
            return []
        stmt = (
            select(Application, User)
            .join(User, User.id == Application.applicant_id)
            .where(Application.recruitment_post_id.in_(post_ids))
            .order_by(Application.applied_at, Application.id)
        )
        if status is not None:
            stmt = stmt.where(Application.status == status)
        result = await self.db.execute(stmt)
        return [(application, _snapshot(user)) for application, user in result.all()]

    async def pending_join_requests(self, team_id: int) -> List[Tuple[JoinRequest, ProfileSnapshot]]:
        result = await self.db.execute(
            select(JoinRequest, User)
            .join(User, User.id == JoinRequest.requester_id)
            .where(JoinRequest.team_id == team_id, JoinRequest.status == RequestStatus.PENDING)
            .order_by(JoinRequest.created_at, JoinRequest.id)
        )
        return [(join_request, _snapshot(user)) for join_request, user in result.all()]

    async def count_pending_pbl_join_requests(self, user_id: int, exclude_team_id: int) -> int:
        result = await self.db.execute(
            select(func.count(JoinRequest.id))
            .join(Team, Team.id == JoinRequest.team_id)
            .where(
                JoinRequest.requester_id == user_id,
                JoinRequest.status == RequestStatus.PENDING,
                JoinRequest.team_id != exclude_team_id,
                Team.purpose == TeamPurpose.PBL,
            )
        )
        return result.scalar() or 0

    async def count_pending_pbl_applications(self, user_id: int, exclude_post_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Application.id))
            .join(RecruitmentPost, RecruitmentPost.id == Application.recruitment_post_id)
            .join(Team, Team.id == RecruitmentPost.team_id)
            .where(
                Application.applicant_id == user_id,
                Application.status == ApplicationStatus.PENDING,
                Application.recruitment_post_id != exclude_post_id,
                Team.purpose == TeamPurpose.PBL,
            )
        )
        return result.scalar() or 0


class SqlRecruitmentPostStore:
    """Recruitment posts and their open-position counters."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_post(self, post_id: int) -> Optional[RecruitmentPost]:
        result = await self.db.execute(
            select(RecruitmentPost).where(RecruitmentPost.id == post_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def posts_for_teams(self, team_ids: List[int]) -> List[RecruitmentPost]:
        if not team_ids:
            return []
        result = await self.db.execute(
            select(RecruitmentPost)
            .where(RecruitmentPost.team_id.in_(team_ids))
            .order_by(RecruitmentPost.created_at.desc(), RecruitmentPost.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def decrement_positions(self, post_id: int) -> int:
        """Atomically take one open position; returns the remaining count."""
        result = await self.db.execute(
            update(RecruitmentPost)
            .where(RecruitmentPost.id == post_id, RecruitmentPost.positions_available > 0)
            .values(positions_available=RecruitmentPost.positions_available - 1)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            logger.warning(f"Recruitment post {post_id} had no open positions left to decrement")
        remaining = await self.db.execute(
            select(RecruitmentPost.positions_available).where(RecruitmentPost.id == post_id)
        )
        count = remaining.scalar_one_or_none()
        if count is None:
            raise NotFound("Recruitment post not found.")
        return count

    async def set_status(self, post_id: int, status: PostStatus, expected: Optional[PostStatus] = None) -> bool:
        stmt = update(RecruitmentPost).where(RecruitmentPost.id == post_id)
        if expected is not None:
            stmt = stmt.where(RecruitmentPost.status == expected)
        result = await self.db.execute(
            stmt.values(status=status).execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    async def consume_position(self, application_id: int, post_id: int) -> Optional[int]:
        """Charge an accepted application against its post exactly once.

        Returns the remaining positions, or None if this application was
        already charged (a retried dispatch).
        """
        if not await self._claim_position(application_id):
            return None

        remaining = await self.decrement_positions(post_id)
        if remaining == 0:
            await self.set_status(post_id, PostStatus.CLOSED, expected=PostStatus.OPEN)
        return remaining

    async def waive_position(self, application_id: int) -> bool:
        """Mark an application as settled without taking a position from its post."""
        return await self._claim_position(application_id)

    async def _claim_position(self, application_id: int) -> bool:
        claimed = await self.db.execute(
            update(Application)
            .where(Application.id == application_id, Application.position_consumed_at.is_(None))
            .values(position_consumed_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return bool(claimed.rowcount)


class SqlProfileReader:
    """Read-only section/year snapshots from the users table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_section_year(self, user_id: int) -> ProfileSnapshot:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user:
            raise NotFound("User not found.")
        return _snapshot(user)
