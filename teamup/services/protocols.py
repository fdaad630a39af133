"""Collaborator contracts used by the reconciliation core.

The SQLAlchemy implementations live in stores.py, chat.py and
notifications.py; tests and other transports may substitute their own.
Protocols give structural typing without an inheritance hierarchy.
"""

import enum
from typing import List, Optional, Protocol, Sequence, Tuple

from teamup.models.application import Application, ApplicationStatus
from teamup.models.recruitment_post import PostStatus, RecruitmentPost
from teamup.models.request import JoinRequest
from teamup.models.team import Team
from teamup.services.conflicts import ProfileSnapshot


class MembershipResult(str, enum.Enum):
    ADDED = "added"
    ALREADY_MEMBER = "already_member"


class RosterStore(Protocol):
    async def get_team(self, team_id: int) -> Optional[Team]: ...
    async def get_active_members(self, team_id: int) -> List[ProfileSnapshot]: ...
    async def is_member(self, team_id: int, user_id: int) -> bool: ...
    async def count_members(self, team_id: int) -> int: ...
    async def lock_team(self, team_id: int) -> None: ...
    async def insert_membership(self, team_id: int, user_id: int) -> MembershipResult: ...
    async def delete_membership(self, team_id: int, user_id: int) -> bool: ...
    async def update_team_derived_fields(
        self, team_id: int, *, member_count: int, is_full: bool,
    ) -> None: ...
    async def set_leader(self, team_id: int, leader_id: int) -> None: ...


class RequestStore(Protocol):
    async def get_application(self, application_id: int) -> Optional[Application]: ...
    async def get_join_request(self, request_id: int) -> Optional[JoinRequest]: ...
    async def find_join_request(self, team_id: int, requester_id: int) -> Optional[JoinRequest]: ...
    async def find_application(self, post_id: int, applicant_id: int) -> Optional[Application]: ...
    async def create_join_request(self, team_id: int, requester_id: int, message: Optional[str]) -> JoinRequest: ...
    async def create_application(self, post_id: int, applicant_id: int, message: Optional[str]) -> Application: ...
    async def update_application_message(self, application_id: int, message: Optional[str]) -> None: ...
    async def pending_applications(
        self, post_ids: List[int], status: Optional[ApplicationStatus] = ...,
    ) -> List[Tuple[Application, ProfileSnapshot]]: ...
    async def pending_join_requests(self, team_id: int) -> List[Tuple[JoinRequest, ProfileSnapshot]]: ...
    async def count_pending_pbl_join_requests(self, user_id: int, exclude_team_id: int) -> int: ...
    async def count_pending_pbl_applications(self, user_id: int, exclude_post_id: int) -> int: ...
    async def set_status(
        self, subject: str, entity_id: int, expected, new, **values: object,
    ) -> None: ...


class RecruitmentPostStore(Protocol):
    async def get_post(self, post_id: int) -> Optional[RecruitmentPost]: ...
    async def posts_for_teams(self, team_ids: List[int]) -> List[RecruitmentPost]: ...
    async def consume_position(self, application_id: int, post_id: int) -> Optional[int]: ...
    async def waive_position(self, application_id: int) -> bool: ...
    async def decrement_positions(self, post_id: int) -> int: ...
    async def set_status(
        self, post_id: int, status: PostStatus, expected: Optional[PostStatus] = None,
    ) -> bool: ...


class ChatProvisioner(Protocol):
    async def ensure_team_channel(
        self, team_id: int, leader_id: int, member_ids: Sequence[int], name: Optional[str] = None,
    ) -> int: ...
    async def remove_member(self, team_id: int, user_id: int) -> None: ...


class Notifier(Protocol):
    async def notify(
        self, user_id: int, kind: str, title: str, message: str, link: Optional[str] = None,
    ) -> None: ...
    async def flush_outbox(self) -> None: ...
    def discard_outbox(self) -> None: ...


class ProfileReader(Protocol):
    async def get_section_year(self, user_id: int) -> ProfileSnapshot: ...
