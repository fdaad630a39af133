"""Roster reconciliation errors.

Every blocking error is raised before the membership write is committed, so
catching one means nothing was persisted. Each carries a stable ``code`` for
clients and an ``http_status`` used by the exception handler in main.py.
"""

from dataclasses import dataclass
from typing import Optional


class RosterError(Exception):
    """Base class for all blocking roster errors."""

    code = "roster_error"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class NotFound(RosterError):
    code = "not_found"
    http_status = 404


class NotTeamLeader(RosterError):
    code = "not_team_leader"
    http_status = 403

    def __init__(self, message: str = "Only the team leader can do this."):
        super().__init__(message)


class NotAllowed(RosterError):
    code = "not_allowed"
    http_status = 403


class CapacityExceeded(RosterError):
    code = "capacity_exceeded"
    http_status = 409

    def __init__(self, team_name: Optional[str] = None):
        name = team_name or "This team"
        super().__init__(f"{name} is already at maximum capacity.")


class SectionYearConflict(RosterError):
    code = "section_year_conflict"
    http_status = 409

    def __init__(self, member: "ConflictingMember"):
        self.member = member
        name = f"{member.name} " if member.name else "Another member "
        year = f" (year {member.year})" if member.year else ""
        super().__init__(
            f"{name}from section {member.section}{year} is already on this team. "
            "Remove them before accepting another student from the same section."
        )

    def to_response(self) -> dict:
        body = super().to_response()
        body["error"]["conflicting_member"] = {
            "user_id": self.member.user_id,
            "name": self.member.name,
            "section": self.member.section,
            "year": self.member.year,
        }
        return body


class AlreadyReviewed(RosterError):
    code = "already_reviewed"
    http_status = 409

    def __init__(self, message: str = "This request was already reviewed. Please refresh."):
        super().__init__(message)


class InvalidTransition(RosterError):
    code = "invalid_transition"
    http_status = 409


class CannotRemoveLeader(RosterError):
    code = "cannot_remove_leader"
    http_status = 409

    def __init__(self, message: str = "Transfer leadership before removing the team leader."):
        super().__init__(message)


class DuplicateRequest(RosterError):
    code = "duplicate_request"
    http_status = 409


class DuplicateApplication(RosterError):
    code = "duplicate_application"
    http_status = 409


class RecruitmentClosed(RosterError):
    code = "recruitment_closed"
    http_status = 409

    def __init__(self, message: str = "This recruitment is not accepting applications right now."):
        super().__init__(message)


class PblLimitReached(RosterError):
    code = "pbl_limit_reached"
    http_status = 409


class InvalidTeamSettings(RosterError):
    code = "invalid_team_settings"
    http_status = 422


@dataclass(frozen=True)
class ConflictingMember:
    """The roster member who blocks an acceptance under the section/year rule."""
    user_id: int
    name: Optional[str]
    section: Optional[str]
    year: Optional[int]


@dataclass(frozen=True)
class SideEffectFailure:
    """A best-effort step that failed after the membership change was committed."""
    step: str
    detail: str

    @property
    def message(self) -> str:
        return f"Member added, but {self.step.replace('_', ' ')} needs a retry: {self.detail}"
