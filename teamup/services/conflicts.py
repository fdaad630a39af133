"""Section/year conflict detection.

A team may hold at most one active member per (normalized section, year).
This module is the only place that rule is defined; the reconciliation
service calls it before an acceptance and again inside the write
transaction, and the review listing calls it to annotate pending entries.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from teamup.services.errors import ConflictingMember


@dataclass(frozen=True)
class ProfileSnapshot:
    """Read-only projection of a user profile used for conflict evaluation."""
    user_id: int
    name: Optional[str]
    section: Optional[str]
    year: Optional[int]


@dataclass(frozen=True)
class ConflictReport:
    """Conflict annotation shown next to a pending application or request."""
    has_member_conflict: bool
    conflicting_member: Optional[ConflictingMember]
    has_pending_same_section: bool


def normalize_section(value: Optional[str]) -> Optional[str]:
    """Trim and upper-case a section; blank sections normalize to None."""
    if not value:
        return None
    normalized = value.strip().upper()
    return normalized or None


def _same_slot(profile: ProfileSnapshot, section: str, year: Optional[int]) -> bool:
    return normalize_section(profile.section) == section and profile.year == year


def find_conflict(
    roster: Iterable[ProfileSnapshot],
    candidate_section: Optional[str],
    candidate_year: Optional[int],
    *,
    candidate_id: Optional[int] = None,
) -> Optional[ConflictingMember]:
    """Return the active member occupying the candidate's section/year slot.

    A candidate without a section never conflicts. ``candidate_id`` is
    skipped so the check can be re-run after the candidate was inserted.
    """
    section = normalize_section(candidate_section)
    if section is None:
        return None

    for member in roster:
        if candidate_id is not None and member.user_id == candidate_id:
            continue
        if _same_slot(member, section, candidate_year):
            return ConflictingMember(
                user_id=member.user_id,
                name=member.name,
                section=member.section,
                year=member.year,
            )
    return None


def has_pending_same_section(
    candidate: ProfileSnapshot,
    pending: Iterable[ProfileSnapshot],
) -> bool:
    """Advisory only: another pending candidate shares this section/year."""
    section = normalize_section(candidate.section)
    if section is None:
        return False
    return any(
        other.user_id != candidate.user_id and _same_slot(other, section, candidate.year)
        for other in pending
    )


def evaluate(
    candidate: ProfileSnapshot,
    roster: Iterable[ProfileSnapshot],
    pending: Iterable[ProfileSnapshot],
) -> ConflictReport:
    member = find_conflict(roster, candidate.section, candidate.year)
    return ConflictReport(
        has_member_conflict=member is not None,
        conflicting_member=member,
        has_pending_same_section=has_pending_same_section(candidate, pending),
    )
