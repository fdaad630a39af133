"""Test fixtures — per-test SQLite database + FastAPI test client.

Invariants:
    - Every test gets a fresh SQLite file under tmp_path
    - get_db dependency overridden to use the test session factory
    - Seed helpers write through their own committed sessions and return ids

Design Decisions:
    - File database instead of :memory: so concurrent sessions see one store
      and their writes serialize through SQLite's busy timeout
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from teamup import models  # noqa: F401
from teamup.database import Base, get_db
from teamup.main import app
from teamup.models.application import Application, ApplicationStatus
from teamup.models.recruitment_post import PostStatus, RecruitmentPost
from teamup.models.request import JoinRequest, RequestStatus
from teamup.models.team import Team, TeamPurpose
from teamup.models.team_membership import TeamMembership
from teamup.models.user import User


@pytest.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'teamup_test.db'}", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    """FastAPI test client with DB dependency overridden."""
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


class Seeder:
    """Writes fixture rows directly, bypassing the reconciliation rules."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._users = 0

    async def user(self, name: str = None, section: Optional[str] = "A1", year: Optional[int] = 2) -> int:
        self._users += 1
        name = name or f"Student {self._users}"
        async with self.session_factory() as db:
            user = User(
                email=f"student{self._users}@campus.test",
                full_name=name,
                section=section,
                year=year,
            )
            db.add(user)
            await db.commit()
            return user.id

    async def team(
        self,
        leader_id: int,
        *,
        max_size: int = 4,
        purpose: TeamPurpose = TeamPurpose.PBL,
        members: Iterable[int] = (),
        name: str = "Team Rocket",
    ) -> int:
        roster = [leader_id] + [m for m in members if m != leader_id]
        async with self.session_factory() as db:
            team = Team(
                name=name,
                year=2,
                leader_id=leader_id,
                purpose=purpose,
                max_size=max_size,
                member_count=len(roster),
                is_full=len(roster) >= max_size,
            )
            db.add(team)
            await db.flush()
            for user_id in roster:
                db.add(TeamMembership(team_id=team.id, user_id=user_id))
            await db.commit()
            return team.id

    async def post(
        self,
        team_id: int,
        posted_by: int,
        *,
        positions: int = 1,
        status: PostStatus = PostStatus.OPEN,
        expires_at: Optional[datetime] = None,
        title: str = "Looking for a backend dev",
    ) -> int:
        async with self.session_factory() as db:
            post = RecruitmentPost(
                team_id=team_id,
                posted_by=posted_by,
                title=title,
                positions_available=positions,
                status=status,
                expires_at=expires_at,
            )
            db.add(post)
            await db.commit()
            return post.id

    async def application(
        self, post_id: int, applicant_id: int, status: ApplicationStatus = ApplicationStatus.PENDING,
    ) -> int:
        async with self.session_factory() as db:
            application = Application(recruitment_post_id=post_id, applicant_id=applicant_id, status=status)
            db.add(application)
            await db.commit()
            return application.id

    async def join_request(
        self, team_id: int, requester_id: int, status: RequestStatus = RequestStatus.PENDING,
    ) -> int:
        async with self.session_factory() as db:
            join_request = JoinRequest(
                team_id=team_id,
                requester_id=requester_id,
                status=status,
                reviewed_at=None if status == RequestStatus.PENDING else datetime.now(timezone.utc),
            )
            db.add(join_request)
            await db.commit()
            return join_request.id


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


class Reader:
    """Fresh-session reads of the committed store state."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def get(self, model, ident):
        async with self.session_factory() as db:
            return await db.get(model, ident)

    async def team(self, team_id: int) -> Team:
        return await self.get(Team, team_id)

    async def post(self, post_id: int) -> RecruitmentPost:
        return await self.get(RecruitmentPost, post_id)

    async def application(self, application_id: int) -> Application:
        return await self.get(Application, application_id)

    async def join_request(self, request_id: int) -> JoinRequest:
        return await self.get(JoinRequest, request_id)

    async def member_ids(self, team_id: int) -> set:
        async with self.session_factory() as db:
            result = await db.execute(select(TeamMembership.user_id).where(TeamMembership.team_id == team_id))
            return set(result.scalars().all())

    async def count(self, model, *criteria) -> int:
        async with self.session_factory() as db:
            stmt = select(func.count()).select_from(model)
            if criteria:
                stmt = stmt.where(*criteria)
            result = await db.execute(stmt)
            return result.scalar() or 0


@pytest.fixture
def read(session_factory):
    return Reader(session_factory)
