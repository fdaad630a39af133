"""
TeamUp – SQLAlchemy ORM models package.

Imports all model classes so the app and the test suite can discover them
through a single ``import teamup.models`` before ``create_all``.
"""

from teamup.models.user import User                           # noqa: F401
from teamup.models.team import Team                           # noqa: F401
from teamup.models.team_membership import TeamMembership      # noqa: F401
from teamup.models.request import JoinRequest                 # noqa: F401
from teamup.models.recruitment_post import RecruitmentPost    # noqa: F401
from teamup.models.application import Application             # noqa: F401
from teamup.models.chat_room import ChatRoom, ChatRoomMember  # noqa: F401
from teamup.models.notification import Notification           # noqa: F401
