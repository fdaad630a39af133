"""Applicant-side submissions and roster maintenance.

Invariants:
    - At most one join request per (team, requester) and one application per
      (post, applicant); a pending application only has its message updated
    - PBL limit: PBL_PENDING_LIMIT pending PBL rows elsewhere, per kind
    - Team size never drops below the current member count
    - A user leads at most one team
"""

from datetime import datetime, timedelta, timezone

import pytest

from teamup.config import settings
from teamup.models.notification import Notification
from teamup.models.recruitment_post import PostStatus
from teamup.models.request import JoinRequest, RequestStatus
from teamup.models.team import TeamPurpose
from teamup.services.errors import (
    CannotRemoveLeader,
    CapacityExceeded,
    DuplicateApplication,
    DuplicateRequest,
    InvalidTeamSettings,
    NotAllowed,
    NotFound,
    NotTeamLeader,
    PblLimitReached,
    RecruitmentClosed,
)
from teamup.services.reconciliation import ReconciliationService


# ── Join requests ──

async def test_submit_join_request_notifies_leader(test_db, seed, read):
    leader = await seed.user()
    team_id = await seed.team(leader)
    requester = await seed.user("Dev")

    outcome = await ReconciliationService(test_db).submit_join_request(team_id, requester, "  hi  ")

    assert outcome.status == "pending"
    assert not outcome.resubmitted
    join_request = await read.join_request(outcome.entity_id)
    assert join_request.message == "hi"
    assert await read.count(Notification, Notification.user_id == leader) == 1


async def test_join_request_refusals(test_db, seed):
    leader = await seed.user()
    member = await seed.user()
    team_id = await seed.team(leader, max_size=3, members=[member])
    requester = await seed.user()
    service = ReconciliationService(test_db)

    with pytest.raises(NotAllowed):
        await service.submit_join_request(team_id, member)

    await service.submit_join_request(team_id, requester)
    with pytest.raises(DuplicateRequest):
        await service.submit_join_request(team_id, requester)

    with pytest.raises(NotFound):
        await service.submit_join_request(9999, requester)


async def test_join_request_to_full_team(test_db, seed, read):
    leader = await seed.user()
    team_id = await seed.team(leader, max_size=1)

    with pytest.raises(CapacityExceeded):
        await ReconciliationService(test_db).submit_join_request(team_id, await seed.user())
    assert await read.count(JoinRequest) == 0


async def test_pbl_join_request_limit(test_db, seed, read):
    requester = await seed.user()
    teams = []
    for i in range(settings.PBL_PENDING_LIMIT + 1):
        teams.append(await seed.team(await seed.user(), name=f"PBL {i}"))
    hackathon_team = await seed.team(await seed.user(), purpose=TeamPurpose.HACKATHON)
    service = ReconciliationService(test_db)

    for team_id in teams[:-1]:
        await service.submit_join_request(team_id, requester)
    with pytest.raises(PblLimitReached):
        await service.submit_join_request(teams[-1], requester)

    # Other purposes are not limited
    await service.submit_join_request(hackathon_team, requester)
    assert await read.count(
        JoinRequest, JoinRequest.requester_id == requester, JoinRequest.status == RequestStatus.PENDING,
    ) == settings.PBL_PENDING_LIMIT + 1


# ── Applications ──

@pytest.fixture
async def open_post(seed):
    leader = await seed.user()
    team_id = await seed.team(leader)
    post_id = await seed.post(team_id, leader, positions=2)
    return {"leader": leader, "team": team_id, "post": post_id}


async def test_submit_application_and_update_message(test_db, seed, read, open_post):
    applicant = await seed.user()
    service = ReconciliationService(test_db)

    created = await service.submit_application(open_post["post"], applicant, "first")
    updated = await service.submit_application(open_post["post"], applicant, "second")

    assert created.entity_id == updated.entity_id
    assert updated.updated
    assert (await read.application(created.entity_id)).message == "second"
    assert await read.count(Notification, Notification.user_id == open_post["leader"]) == 1


async def test_reviewed_application_cannot_be_resent(test_db, seed, open_post):
    applicant = await seed.user()
    service = ReconciliationService(test_db)
    created = await service.submit_application(open_post["post"], applicant)
    await service.reject_application(created.entity_id, open_post["leader"])

    with pytest.raises(DuplicateApplication):
        await service.submit_application(open_post["post"], applicant)


async def test_leader_cannot_apply_to_own_post(test_db, open_post):
    with pytest.raises(NotAllowed):
        await ReconciliationService(test_db).submit_application(open_post["post"], open_post["leader"])


async def test_closed_or_expired_post_refuses(test_db, seed, open_post):
    leader = open_post["leader"]
    closed = await seed.post(open_post["team"], leader, status=PostStatus.CLOSED)
    expired = await seed.post(
        open_post["team"], leader, expires_at=datetime.now(timezone.utc) - timedelta(days=1),
    )
    applicant = await seed.user()
    service = ReconciliationService(test_db)

    with pytest.raises(RecruitmentClosed):
        await service.submit_application(closed, applicant)
    with pytest.raises(RecruitmentClosed):
        await service.submit_application(expired, applicant)


async def test_pbl_application_limit(test_db, seed):
    applicant = await seed.user()
    posts = []
    for _ in range(settings.PBL_PENDING_LIMIT + 1):
        leader = await seed.user()
        posts.append(await seed.post(await seed.team(leader), leader))
    service = ReconciliationService(test_db)

    for post_id in posts[:-1]:
        await service.submit_application(post_id, applicant)
    with pytest.raises(PblLimitReached):
        await service.submit_application(posts[-1], applicant)
    # Re-sending to a post already applied to is only a message update
    assert (await service.submit_application(posts[0], applicant, "again")).updated


async def test_pbl_limit_disabled(test_db, seed, monkeypatch):
    monkeypatch.setattr(settings, "PBL_PENDING_LIMIT", 0)
    applicant = await seed.user()
    service = ReconciliationService(test_db)
    for _ in range(4):
        leader = await seed.user()
        post_id = await seed.post(await seed.team(leader), leader)
        await service.submit_application(post_id, applicant)


# ── Roster maintenance ──

async def test_leave_team(test_db, seed, read):
    leader = await seed.user()
    member = await seed.user()
    team_id = await seed.team(leader, max_size=2, members=[member])
    service = ReconciliationService(test_db)

    change = await service.leave_team(team_id, member)

    assert change.member_count == 1
    assert not change.is_full
    assert member not in await read.member_ids(team_id)
    with pytest.raises(NotFound):
        await service.leave_team(team_id, member)
    with pytest.raises(CannotRemoveLeader):
        await service.leave_team(team_id, leader)


async def test_remove_member_sends_note(test_db, seed, read):
    leader = await seed.user()
    member = await seed.user()
    team_id = await seed.team(leader, members=[member])
    service = ReconciliationService(test_db)

    with pytest.raises(NotTeamLeader):
        await service.remove_member(team_id, member, leader)

    change = await service.remove_member(team_id, leader, member, note="Thanks for your help")

    assert change.warnings == []
    assert change.member_count == 1
    assert await read.count(
        Notification, Notification.user_id == member, Notification.message == "Thanks for your help",
    ) == 1


async def test_update_team_settings(test_db, seed, read):
    leader = await seed.user()
    members = [await seed.user() for _ in range(2)]
    team_id = await seed.team(leader, max_size=4, members=members)
    service = ReconciliationService(test_db)

    team = await service.update_team_settings(team_id, leader, max_size=3, purpose=TeamPurpose.HACKATHON)
    assert team.max_size == 3
    assert team.is_full
    assert team.purpose == TeamPurpose.HACKATHON

    with pytest.raises(InvalidTeamSettings):
        await service.update_team_settings(team_id, leader, max_size=2)
    assert (await read.team(team_id)).max_size == 3

    # Out-of-range sizes are clamped, not refused
    team = await service.update_team_settings(team_id, leader, max_size=25)
    assert team.max_size == settings.MAX_TEAM_SIZE
    assert not team.is_full

    with pytest.raises(NotTeamLeader):
        await service.update_team_settings(team_id, members[0], max_size=5)


async def test_transfer_leadership_notifies(test_db, seed, read):
    leader = await seed.user()
    member = await seed.user()
    team_id = await seed.team(leader, members=[member])
    service = ReconciliationService(test_db)

    team = await service.transfer_leadership(team_id, leader, member)

    assert team.leader_id == member
    assert await read.count(Notification, Notification.user_id == member) == 1
    # The old leader is now an ordinary member and may be removed
    change = await service.remove_member(team_id, member, leader)
    assert change.member_count == 1


async def test_create_team(test_db, seed, read):
    leader = await seed.user()
    service = ReconciliationService(test_db)

    team = await service.create_team(leader, "  Byte Club ", 2, max_size=1)

    assert team.name == "Byte Club"
    assert team.member_count == 1
    assert team.is_full
    assert await read.member_ids(team.id) == {leader}

    with pytest.raises(NotAllowed):
        await service.create_team(leader, "Second", 2)


@pytest.mark.parametrize("name,size", [("", 4), ("x" * 51, 4), ("Ok", 0), ("Ok", 11)])
async def test_create_team_validation(test_db, seed, name, size):
    leader = await seed.user()
    with pytest.raises(InvalidTeamSettings):
        await ReconciliationService(test_db).create_team(leader, name, 2, max_size=size)


async def test_open_recruitment_post_bounded_by_free_seats(test_db, seed):
    leader = await seed.user()
    team_id = await seed.team(leader, max_size=3)
    service = ReconciliationService(test_db)

    post = await service.open_recruitment_post(team_id, leader, "Need a designer", positions=2)
    assert post.positions_available == 2
    assert post.status == PostStatus.OPEN

    with pytest.raises(InvalidTeamSettings):
        await service.open_recruitment_post(team_id, leader, "Too many", positions=3)


# ── Review listings ──

async def test_review_listing_separates_conflicts(test_db, seed):
    leader = await seed.user(section="Z1")
    member = await seed.user(section="A1", year=2)
    team_id = await seed.team(leader, members=[member])
    post_id = await seed.post(team_id, leader, positions=2)
    clash = await seed.user(section="a1", year=2)
    first_b = await seed.user(section="B1", year=2)
    second_b = await seed.user(section="b1", year=2)
    for applicant in (clash, first_b, second_b):
        await seed.application(post_id, applicant)

    reviews = await ReconciliationService(test_db).list_applications_for_review(leader)

    assert len(reviews) == 1
    review = reviews[0]
    assert [e.candidate.user_id for e in review.conflict_applications] == [clash]
    assert review.conflict_applications[0].conflict.conflicting_member.user_id == member
    assert {e.candidate.user_id for e in review.applications} == {first_b, second_b}
    assert all(e.conflict.has_pending_same_section for e in review.applications)


async def test_join_request_listing_is_leader_only(test_db, seed):
    leader = await seed.user(section="A1")
    team_id = await seed.team(leader)
    requester = await seed.user(section="a1")
    await seed.join_request(team_id, requester)
    service = ReconciliationService(test_db)

    entries = await service.list_join_requests_for_review(team_id, leader)
    assert len(entries) == 1
    assert entries[0].conflict.has_member_conflict

    with pytest.raises(NotTeamLeader):
        await service.list_join_requests_for_review(team_id, requester)
