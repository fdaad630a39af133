"""Team roster reconciliation: the entry points behind every roster decision.

Decisions follow one shape:

1. load fresh state and ask the state machine whether the move is legal
   (authority, stale decision, capacity, section/year conflict);
2. in one transaction: conditional status update, conditional membership
   insert, conflict re-check, derived field recompute, commit;
3. after commit: side effects through the dispatcher, reported as warnings.

Any RosterError raised in steps 1 or 2 leaves the store untouched.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from teamup.config import settings
from teamup.models.application import ApplicationStatus
from teamup.models.notification import NotificationKind
from teamup.models.recruitment_post import PostStatus, RecruitmentPost
from teamup.models.request import RequestStatus
from teamup.models.team import Team, TeamPurpose
from teamup.services import state_machine
from teamup.services.capacity import clamp_team_size, has_capacity, remaining_slots
from teamup.services.chat import ChatProvisioningService
from teamup.services.conflicts import ConflictReport, ProfileSnapshot, evaluate, find_conflict
from teamup.services.dispatcher import (
    ALL_STEPS,
    CHAT,
    NOTIFICATION,
    Acceptance,
    DispatchReport,
    SideEffectDispatcher,
    run_step,
)
from teamup.services.errors import (
    CapacityExceeded,
    DuplicateApplication,
    DuplicateRequest,
    InvalidTeamSettings,
    InvalidTransition,
    NotAllowed,
    NotFound,
    PblLimitReached,
    RecruitmentClosed,
    SectionYearConflict,
    SideEffectFailure,
)
from teamup.services.membership import MembershipMutator
from teamup.services.notifications import NotificationService
from teamup.services.protocols import (
    ChatProvisioner,
    MembershipResult,
    Notifier,
    ProfileReader,
    RecruitmentPostStore,
    RequestStore,
)
from teamup.services.state_machine import Decision, Subject
from teamup.services.stores import SqlProfileReader, SqlRecruitmentPostStore, SqlRequestStore, SqlRosterStore

logger = logging.getLogger(__name__)


@dataclass
class DecisionOutcome:
    """Result of an accept/reject decision, in plain values."""
    subject: Subject
    entity_id: int
    status: str
    team_id: int
    user_id: int
    member_count: int
    is_full: bool
    membership: Optional[MembershipResult] = None
    dispatch: Optional[DispatchReport] = None

    @property
    def warnings(self) -> List[SideEffectFailure]:
        return list(self.dispatch.failures) if self.dispatch else []


@dataclass
class SubmissionOutcome:
    subject: Subject
    entity_id: int
    status: str
    resubmitted: bool = False
    updated: bool = False
    warnings: List[SideEffectFailure] = field(default_factory=list)


@dataclass
class RosterChange:
    team_id: int
    user_id: int
    member_count: int
    is_full: bool
    warnings: List[SideEffectFailure] = field(default_factory=list)


@dataclass
class ReviewEntry:
    subject: Subject
    entity_id: int
    status: str
    message: Optional[str]
    submitted_at: Optional[datetime]
    candidate: ProfileSnapshot
    conflict: ConflictReport


@dataclass
class PostReview:
    post_id: int
    team_id: int
    title: str
    status: str
    positions_available: int
    applications: List[ReviewEntry] = field(default_factory=list)
    conflict_applications: List[ReviewEntry] = field(default_factory=list)


def _status(value) -> str:
    return str(getattr(value, "value", value))


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_post_open(post: RecruitmentPost, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    expires_at = _aware(post.expires_at)
    return post.status == PostStatus.OPEN and (expires_at is None or expires_at > now)


class ReconciliationService:
    """Accept/reject/join/leave operations over one database session."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        chat: Optional[ChatProvisioner] = None,
        notifier: Optional[Notifier] = None,
        profiles: Optional[ProfileReader] = None,
    ):
        self.db = db
        self.roster = SqlRosterStore(db)
        self.requests: RequestStore = SqlRequestStore(db)
        self.posts: RecruitmentPostStore = SqlRecruitmentPostStore(db)
        self.profiles = profiles or SqlProfileReader(db)
        self.chat = chat or ChatProvisioningService(db)
        self.notifier = notifier or NotificationService(db)
        self.members = MembershipMutator(self.roster)
        self.dispatcher = SideEffectDispatcher(db, posts=self.posts, chat=self.chat, notifier=self.notifier)

    # ── Loading helpers ──

    async def _team(self, team_id: int) -> Team:
        team = await self.roster.get_team(team_id)
        if not team:
            raise NotFound("Team not found.")
        return team

    async def get_team_roster(self, team_id: int) -> Tuple[Team, List[ProfileSnapshot]]:
        team = await self._team(team_id)
        return team, await self.roster.get_active_members(team_id)

    async def _post(self, post_id: int) -> RecruitmentPost:
        post = await self.posts.get_post(post_id)
        if not post:
            raise NotFound("Recruitment post not found.")
        return post

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def _quietly(self, step: str, action) -> Optional[SideEffectFailure]:
        return await run_step(self.db, step, action, notifier=self.notifier)

    # ══════════════════════════════════════════════════════════
    #  Leader decisions
    # ══════════════════════════════════════════════════════════

    async def accept_application(self, application_id: int, actor_id: int) -> DecisionOutcome:
        application = await self.requests.get_application(application_id)
        if not application:
            raise NotFound("Application not found.")
        post = await self._post(application.recruitment_post_id)
        return await self._accept(
            Subject.APPLICATION,
            application.id,
            application.status,
            team_id=post.team_id,
            user_id=application.applicant_id,
            actor_id=actor_id,
            post_id=post.id,
        )

    async def reject_application(self, application_id: int, actor_id: int) -> DecisionOutcome:
        application = await self.requests.get_application(application_id)
        if not application:
            raise NotFound("Application not found.")
        post = await self._post(application.recruitment_post_id)
        return await self._reject(
            Subject.APPLICATION,
            application.id,
            application.status,
            team_id=post.team_id,
            user_id=application.applicant_id,
            actor_id=actor_id,
        )

    async def approve_join_request(self, request_id: int, actor_id: int) -> DecisionOutcome:
        join_request = await self.requests.get_join_request(request_id)
        if not join_request:
            raise NotFound("Join request not found.")
        return await self._accept(
            Subject.JOIN_REQUEST,
            join_request.id,
            join_request.status,
            team_id=join_request.team_id,
            user_id=join_request.requester_id,
            actor_id=actor_id,
        )

    async def reject_join_request(self, request_id: int, actor_id: int) -> DecisionOutcome:
        join_request = await self.requests.get_join_request(request_id)
        if not join_request:
            raise NotFound("Join request not found.")
        return await self._reject(
            Subject.JOIN_REQUEST,
            join_request.id,
            join_request.status,
            team_id=join_request.team_id,
            user_id=join_request.requester_id,
            actor_id=actor_id,
        )

    async def _accept(
        self,
        subject: Subject,
        entity_id: int,
        current,
        *,
        team_id: int,
        user_id: int,
        actor_id: int,
        post_id: Optional[int] = None,
    ) -> DecisionOutcome:
        team = await self._team(team_id)
        candidate = await self.profiles.get_section_year(user_id)
        roster = await self.roster.get_active_members(team_id)
        already_member = any(member.user_id == user_id for member in roster)
        conflict = find_conflict(roster, candidate.section, candidate.year, candidate_id=user_id)

        target = state_machine.decide(
            subject,
            current,
            Decision.ACCEPT,
            team=team,
            actor_id=actor_id,
            conflict=conflict,
            already_member=already_member,
        )
        team_name, leader_id = team.name, team.leader_id

        try:
            await self.requests.set_status(subject.value, entity_id, state_machine.PENDING_STATUS[subject], target)
            membership = await self.members.add_member(team_id, user_id)
            if membership is MembershipResult.ADDED:
                # Another acceptance may have committed between the pre-check and our insert
                roster = await self.roster.get_active_members(team_id)
                conflict = find_conflict(roster, candidate.section, candidate.year, candidate_id=user_id)
                if conflict:
                    raise SectionYearConflict(conflict)
            elif subject is Subject.APPLICATION:
                # Nobody joined, so a later retry must not charge the post either
                await self.posts.waive_position(entity_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"{subject.value} {entity_id} accepted by {actor_id}: user {user_id} -> team {team_id} ({membership.value})")

        steps = ALL_STEPS if membership is MembershipResult.ADDED else (CHAT, NOTIFICATION)
        report = await self.dispatcher.dispatch(
            Acceptance(
                team_id=team_id,
                team_name=team_name,
                leader_id=leader_id,
                user_id=user_id,
                application_id=entity_id if subject is Subject.APPLICATION else None,
                post_id=post_id,
            ),
            steps=steps,
        )
        fresh = await self._team(team_id)
        return DecisionOutcome(
            subject=subject,
            entity_id=entity_id,
            status=_status(target),
            team_id=team_id,
            user_id=user_id,
            member_count=fresh.member_count,
            is_full=fresh.is_full,
            membership=membership,
            dispatch=report,
        )

    async def _reject(
        self,
        subject: Subject,
        entity_id: int,
        current,
        *,
        team_id: int,
        user_id: int,
        actor_id: int,
    ) -> DecisionOutcome:
        team = await self._team(team_id)
        target = state_machine.decide(subject, current, Decision.REJECT, team=team, actor_id=actor_id)
        try:
            await self.requests.set_status(subject.value, entity_id, state_machine.PENDING_STATUS[subject], target)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"{subject.value} {entity_id} rejected by {actor_id}")
        return DecisionOutcome(
            subject=subject,
            entity_id=entity_id,
            status=_status(target),
            team_id=team_id,
            user_id=user_id,
            member_count=team.member_count,
            is_full=team.is_full,
        )

    async def retry_side_effects(
        self,
        subject: Subject,
        entity_id: int,
        actor_id: int,
        steps: Optional[Iterable[str]] = None,
    ) -> DispatchReport:
        """Re-run side effects for an accepted application or approved request."""
        post_id = None
        if subject is Subject.APPLICATION:
            entity = await self.requests.get_application(entity_id)
            if not entity:
                raise NotFound("Application not found.")
            post = await self._post(entity.recruitment_post_id)
            team_id, user_id, post_id = post.team_id, entity.applicant_id, post.id
        else:
            entity = await self.requests.get_join_request(entity_id)
            if not entity:
                raise NotFound("Join request not found.")
            team_id, user_id = entity.team_id, entity.requester_id

        if _status(entity.status) != _status(state_machine.ACCEPTED_STATUS[subject]):
            raise InvalidTransition("Only accepted applications and approved requests have side effects.")

        team = await self._team(team_id)
        state_machine.ensure_leader(team, actor_id)
        if not await self.roster.is_member(team_id, user_id):
            raise NotAllowed("This student is no longer on the team.")

        return await self.dispatcher.dispatch(
            Acceptance(
                team_id=team.id,
                team_name=team.name,
                leader_id=team.leader_id,
                user_id=user_id,
                application_id=entity_id if subject is Subject.APPLICATION else None,
                post_id=post_id,
            ),
            steps=steps,
        )

    # ══════════════════════════════════════════════════════════
    #  Applicant-side submissions
    # ══════════════════════════════════════════════════════════

    async def _check_pbl_limit(self, pending: int, what: str) -> None:
        limit = settings.PBL_PENDING_LIMIT
        if limit > 0 and pending >= limit:
            raise PblLimitReached(f"You already have {limit} pending PBL {what}.")

    async def submit_join_request(
        self, team_id: int, requester_id: int, message: Optional[str] = None,
    ) -> SubmissionOutcome:
        """Create a join request, or resubmit a rejected one."""
        team = await self._team(team_id)
        requester = await self.profiles.get_section_year(requester_id)
        message = (message or "").strip() or None

        if await self.roster.is_member(team_id, requester_id):
            raise NotAllowed("You are already a member of this team.")
        if not has_capacity(team):
            raise CapacityExceeded(team.name)

        existing = await self.requests.find_join_request(team_id, requester_id)
        if existing and existing.status == RequestStatus.PENDING:
            raise DuplicateRequest("Your join request is already pending review.")

        if team.purpose == TeamPurpose.PBL:
            pending = await self.requests.count_pending_pbl_join_requests(requester_id, exclude_team_id=team_id)
            await self._check_pbl_limit(pending, "team requests")

        try:
            if existing:
                state_machine.resubmit(existing.status, team=team, requester_id=requester_id, owner_id=existing.requester_id)
                await self.requests.set_status(
                    Subject.JOIN_REQUEST.value, existing.id, RequestStatus.REJECTED, RequestStatus.PENDING,
                    message=message,
                )
                request_id = existing.id
            else:
                request_id = (await self.requests.create_join_request(team_id, requester_id, message)).id
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateRequest("You already have a pending join request for this team.")
        except Exception:
            await self.db.rollback()
            raise

        failure = await self._quietly(
            NOTIFICATION,
            self.notifier.notify(
                team.leader_id,
                NotificationKind.APPLICATION.value,
                "New join request",
                f"{requester.name or 'A student'} requested to join {team.name}.",
                f"/teams/{team_id}",
            ),
        )
        return SubmissionOutcome(
            subject=Subject.JOIN_REQUEST,
            entity_id=request_id,
            status=RequestStatus.PENDING.value,
            resubmitted=existing is not None,
            warnings=[failure] if failure else [],
        )

    async def submit_application(
        self, post_id: int, applicant_id: int, message: Optional[str] = None,
    ) -> SubmissionOutcome:
        """Apply to a recruitment post; a still-pending application only gets its message updated."""
        post = await self._post(post_id)
        team = await self._team(post.team_id)
        applicant = await self.profiles.get_section_year(applicant_id)
        message = (message or "").strip() or None

        if not is_post_open(post):
            raise RecruitmentClosed()
        if applicant_id in (post.posted_by, team.leader_id):
            raise NotAllowed("You cannot apply to your own recruitment post.")
        if await self.roster.is_member(team.id, applicant_id):
            raise NotAllowed("You are already a member of this team.")

        existing = await self.requests.find_application(post_id, applicant_id)
        if existing:
            if existing.status != ApplicationStatus.PENDING:
                raise DuplicateApplication("This application has already been reviewed.")
            await self.requests.update_application_message(existing.id, message)
            await self._commit()
            return SubmissionOutcome(
                subject=Subject.APPLICATION,
                entity_id=existing.id,
                status=ApplicationStatus.PENDING.value,
                updated=True,
            )

        if team.purpose == TeamPurpose.PBL:
            pending = await self.requests.count_pending_pbl_applications(applicant_id, exclude_post_id=post_id)
            await self._check_pbl_limit(pending, "applications")

        try:
            application_id = (await self.requests.create_application(post_id, applicant_id, message)).id
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateApplication("You have already applied to this recruitment.")
        except Exception:
            await self.db.rollback()
            raise

        failure = await self._quietly(
            NOTIFICATION,
            self.notifier.notify(
                team.leader_id,
                NotificationKind.APPLICATION.value,
                "New application",
                f"{applicant.name or 'A student'} applied to {post.title}.",
                "/recruitment/applications",
            ),
        )
        return SubmissionOutcome(
            subject=Subject.APPLICATION,
            entity_id=application_id,
            status=ApplicationStatus.PENDING.value,
            warnings=[failure] if failure else [],
        )

    # ══════════════════════════════════════════════════════════
    #  Roster maintenance
    # ══════════════════════════════════════════════════════════

    async def _roster_change(self, team_id: int, user_id: int, warnings) -> RosterChange:
        team = await self._team(team_id)
        return RosterChange(
            team_id=team_id,
            user_id=user_id,
            member_count=team.member_count,
            is_full=team.is_full,
            warnings=[w for w in warnings if w],
        )

    async def leave_team(self, team_id: int, user_id: int) -> RosterChange:
        team = await self._team(team_id)
        try:
            removed = await self.members.remove_member(team, user_id)
            if not removed:
                raise NotFound("You are not a member of this team.")
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        chat_failure = await self._quietly(CHAT, self.chat.remove_member(team_id, user_id))
        return await self._roster_change(team_id, user_id, [chat_failure])

    async def remove_member(
        self, team_id: int, actor_id: int, member_id: int, note: Optional[str] = None,
    ) -> RosterChange:
        team = await self._team(team_id)
        state_machine.ensure_leader(team, actor_id)
        team_name = team.name
        try:
            removed = await self.members.remove_member(team, member_id)
            if not removed:
                raise NotFound("That user is not a member of this team.")
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        note = (note or "").strip()
        chat_failure = await self._quietly(CHAT, self.chat.remove_member(team_id, member_id))
        notify_failure = await self._quietly(
            NOTIFICATION,
            self.notifier.notify(
                member_id,
                NotificationKind.TEAM_INVITE.value,
                f"Removed from {team_name}",
                note or f"You have been removed from {team_name}.",
                f"/teams/{team_id}",
            ),
        )
        return await self._roster_change(team_id, member_id, [chat_failure, notify_failure])

    async def transfer_leadership(self, team_id: int, actor_id: int, new_leader_id: int) -> Team:
        team = await self._team(team_id)
        state_machine.ensure_leader(team, actor_id)
        team_name = team.name
        try:
            await self.members.transfer_leadership(team, new_leader_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self._quietly(
            NOTIFICATION,
            self.notifier.notify(
                new_leader_id,
                NotificationKind.SYSTEM.value,
                f"You now lead {team_name}",
                f"Leadership of {team_name} has been transferred to you.",
                f"/teams/{team_id}",
            ),
        )
        return await self._team(team_id)

    async def update_team_settings(
        self,
        team_id: int,
        actor_id: int,
        *,
        max_size: Optional[int] = None,
        purpose: Optional[TeamPurpose] = None,
    ) -> Team:
        team = await self._team(team_id)
        state_machine.ensure_leader(team, actor_id)

        try:
            if max_size is not None:
                size = clamp_team_size(max_size, settings.MAX_TEAM_SIZE)
                count = await self.roster.count_members(team_id)
                if size < count or not await self.roster.resize(team_id, size):
                    raise InvalidTeamSettings(
                        f"Team size cannot be smaller than the current member count ({count})."
                    )
            if purpose is not None:
                await self.roster.set_purpose(team_id, purpose)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return await self._team(team_id)

    async def create_team(
        self,
        leader_id: int,
        name: str,
        year: int,
        *,
        purpose: TeamPurpose = TeamPurpose.PBL,
        max_size: int = 4,
        description: Optional[str] = None,
    ) -> Team:
        name = (name or "").strip()
        if not name:
            raise InvalidTeamSettings("Team name is required.")
        if len(name) > 50:
            raise InvalidTeamSettings("Team name must be less than 50 characters.")
        if not 1 <= max_size <= settings.MAX_TEAM_SIZE:
            raise InvalidTeamSettings(f"Team size must be between 1 and {settings.MAX_TEAM_SIZE} members.")

        await self.profiles.get_section_year(leader_id)
        if await self.roster.get_teams_led_by(leader_id):
            raise NotAllowed("You already lead a team. You can only lead one team at a time.")

        try:
            team = Team(
                name=name,
                description=(description or "").strip() or None,
                year=year,
                leader_id=leader_id,
                purpose=purpose,
                max_size=max_size,
                member_count=0,
                is_full=False,
            )
            self.db.add(team)
            await self.db.flush()
            team_id = team.id
            await self.members.add_member(team_id, leader_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Team {team_id} created by {leader_id}")
        return await self._team(team_id)

    async def open_recruitment_post(
        self,
        team_id: int,
        actor_id: int,
        title: str,
        *,
        description: str = "",
        positions: int = 1,
        expires_at: Optional[datetime] = None,
    ) -> RecruitmentPost:
        """Leader-only: advertise open positions, never more than the free seats."""
        team = await self._team(team_id)
        state_machine.ensure_leader(team, actor_id)
        title = (title or "").strip()
        if not title:
            raise InvalidTeamSettings("A recruitment post needs a title.")
        free = remaining_slots(team)
        if free <= 0:
            raise CapacityExceeded(team.name)
        if not 1 <= positions <= free:
            raise InvalidTeamSettings(f"Positions must be between 1 and {free} for this team.")

        post = RecruitmentPost(
            team_id=team_id,
            posted_by=actor_id,
            title=title,
            description=description or "",
            positions_available=positions,
            status=PostStatus.OPEN,
            expires_at=expires_at,
        )
        self.db.add(post)
        try:
            await self.db.flush()
            post_id = post.id
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Recruitment post {post_id} opened for team {team_id} ({positions} positions)")
        return await self._post(post_id)

    # ══════════════════════════════════════════════════════════
    #  Review listings
    # ══════════════════════════════════════════════════════════

    async def list_applications_for_review(
        self, actor_id: int, status: Optional[ApplicationStatus] = ApplicationStatus.PENDING,
    ) -> List[PostReview]:
        """Applications to posts of teams led by ``actor_id``, with conflicts split out."""
        teams = await self.roster.get_teams_led_by(actor_id)
        posts = await self.posts.posts_for_teams([team.id for team in teams])
        all_rows = await self.requests.pending_applications([post.id for post in posts], status=None)
        rosters = {team.id: await self.roster.get_active_members(team.id) for team in teams}

        reviews = []
        for post in posts:
            rows = [(app, snap) for app, snap in all_rows if app.recruitment_post_id == post.id]
            pending = [snap for app, snap in rows if app.status == ApplicationStatus.PENDING]
            review = PostReview(
                post_id=post.id,
                team_id=post.team_id,
                title=post.title,
                status=_status(post.status),
                positions_available=post.positions_available,
            )
            for application, snapshot in rows:
                if status is not None and application.status != status:
                    continue
                entry = ReviewEntry(
                    subject=Subject.APPLICATION,
                    entity_id=application.id,
                    status=_status(application.status),
                    message=application.message,
                    submitted_at=application.applied_at,
                    candidate=snapshot,
                    conflict=evaluate(snapshot, rosters.get(post.team_id, []), pending),
                )
                if entry.conflict.has_member_conflict:
                    review.conflict_applications.append(entry)
                else:
                    review.applications.append(entry)
            if review.applications or review.conflict_applications:
                reviews.append(review)
        return reviews

    async def list_join_requests_for_review(self, team_id: int, actor_id: int) -> List[ReviewEntry]:
        team = await self._team(team_id)
        state_machine.ensure_leader(team, actor_id)
        rows = await self.requests.pending_join_requests(team_id)
        roster = await self.roster.get_active_members(team_id)
        pending = [snapshot for _, snapshot in rows]
        return [
            ReviewEntry(
                subject=Subject.JOIN_REQUEST,
                entity_id=join_request.id,
                status=_status(join_request.status),
                message=join_request.message,
                submitted_at=join_request.created_at,
                candidate=snapshot,
                conflict=evaluate(snapshot, roster, pending),
            )
            for join_request, snapshot in rows
        ]
