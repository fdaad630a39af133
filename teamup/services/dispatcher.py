"""Side effects of an accepted application or join request.

Runs only after the membership change is committed. Each step commits on
its own and is idempotent, so a crash or failure part-way leaves the new
member in place with the remaining steps safe to re-run. Failures never
propagate; they come back as ``SideEffectFailure`` warnings.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from teamup.models.notification import NotificationKind
from teamup.services.errors import SideEffectFailure
from teamup.services.protocols import ChatProvisioner, Notifier, RecruitmentPostStore

logger = logging.getLogger(__name__)

RECRUITMENT_POST = "recruitment_post"
CHAT = "chat"
NOTIFICATION = "notification"
ALL_STEPS = (RECRUITMENT_POST, CHAT, NOTIFICATION)


@dataclass(frozen=True)
class Acceptance:
    """Plain values only: ORM rows are expired by a failed step's rollback."""
    team_id: int
    team_name: Optional[str]
    leader_id: int
    user_id: int
    application_id: Optional[int] = None
    post_id: Optional[int] = None


@dataclass
class DispatchReport:
    completed: List[str] = field(default_factory=list)
    failures: List[SideEffectFailure] = field(default_factory=list)
    positions_remaining: Optional[int] = None

    @property
    def ok(self) -> bool:
        return not self.failures


async def run_step(
    db: AsyncSession, step: str, action: Awaitable, *, notifier: Notifier, context: str = "",
) -> Optional[SideEffectFailure]:
    """Run one best-effort step in its own commit.

    Emails queued by the step go out only after its commit succeeds. A failed
    step is rolled back and comes back as a ``SideEffectFailure``; its emails
    are dropped.
    """
    try:
        await action
        await db.commit()
    except Exception as e:
        await db.rollback()
        notifier.discard_outbox()
        logger.error(f"Side effect '{step}' failed{context}: {e}", exc_info=True)
        return SideEffectFailure(step=step, detail=str(e))
    await notifier.flush_outbox()
    return None


class SideEffectDispatcher:
    def __init__(
        self,
        db: AsyncSession,
        *,
        posts: RecruitmentPostStore,
        chat: ChatProvisioner,
        notifier: Notifier,
    ):
        self.db = db
        self.posts = posts
        self.chat = chat
        self.notifier = notifier

    async def dispatch(self, acceptance: Acceptance, steps: Optional[Iterable[str]] = None) -> DispatchReport:
        wanted = set(steps or ALL_STEPS)
        report = DispatchReport()

        if RECRUITMENT_POST in wanted and acceptance.application_id is not None:
            await self._run(report, acceptance, RECRUITMENT_POST, self._consume_position(acceptance, report))
        if CHAT in wanted:
            await self._run(report, acceptance, CHAT, self._provision_chat(acceptance))
        if NOTIFICATION in wanted:
            await self._run(report, acceptance, NOTIFICATION, self._notify(acceptance))
        return report

    async def _run(self, report: DispatchReport, acceptance: Acceptance, step: str, action) -> None:
        failure = await run_step(
            self.db, step, action,
            notifier=self.notifier,
            context=f" for user {acceptance.user_id} on team {acceptance.team_id}",
        )
        if failure:
            report.failures.append(failure)
        else:
            report.completed.append(step)

    async def _consume_position(self, acceptance: Acceptance, report: DispatchReport) -> None:
        remaining = await self.posts.consume_position(acceptance.application_id, acceptance.post_id)
        report.positions_remaining = remaining
        if remaining is None:
            logger.info(f"Application {acceptance.application_id} was already charged to post {acceptance.post_id}")
        elif remaining == 0:
            logger.info(f"Recruitment post {acceptance.post_id} filled and closed")

    async def _provision_chat(self, acceptance: Acceptance) -> None:
        await self.chat.ensure_team_channel(
            acceptance.team_id, acceptance.leader_id, [acceptance.user_id], name=acceptance.team_name,
        )

    async def _notify(self, acceptance: Acceptance) -> None:
        team_name = acceptance.team_name or "a team"
        if acceptance.application_id is not None:
            title = "Application accepted"
            message = f"You have been added to {team_name} via recruitment."
        else:
            title = "Join request approved"
            message = f"You have been added to {team_name}."
        await self.notifier.notify(
            acceptance.user_id,
            NotificationKind.TEAM_INVITE.value,
            title,
            message,
            f"/teams/{acceptance.team_id}",
        )

