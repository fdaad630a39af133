"""Capacity guard — does a team have room for one more member?"""

from teamup.models.team import Team
from teamup.services.errors import CapacityExceeded


def has_capacity(team: Team) -> bool:
    """True when ``member_count < max_size``.

    Only meaningful on a freshly loaded team; the membership insert repeats
    the check atomically.
    """
    return (team.member_count or 0) < team.max_size


def ensure_capacity(team: Team) -> None:
    if not has_capacity(team):
        raise CapacityExceeded(team.name)


def remaining_slots(team: Team) -> int:
    return max(team.max_size - (team.member_count or 0), 0)


def clamp_team_size(value: int, upper: int = 10) -> int:
    """Round and clamp a requested team size into ``1..upper``."""
    return min(upper, max(1, round(value)))
