"""Conflict detector — one active member per normalized (section, year).

Invariants:
    - Sections compare after strip() + upper(); blank sections never conflict
    - Year must match exactly; a different year is a different slot
    - The candidate is skipped when re-checking after their own insert
"""

from teamup.services.conflicts import (
    ProfileSnapshot,
    evaluate,
    find_conflict,
    has_pending_same_section,
    normalize_section,
)


def _p(user_id, section, year=2, name=None):
    return ProfileSnapshot(user_id=user_id, name=name or f"User {user_id}", section=section, year=year)


def test_normalize_section():
    assert normalize_section("  a1 ") == "A1"
    assert normalize_section("") is None
    assert normalize_section("   ") is None
    assert normalize_section(None) is None


def test_lowercase_candidate_matches_member():
    """Member in 'A1' year 2 blocks a candidate from 'a1' year 2."""
    roster = [_p(1, "B2"), _p(2, "A1", name="Asha")]

    member = find_conflict(roster, "a1", 2)

    assert member is not None
    assert member.user_id == 2
    assert member.name == "Asha"
    assert member.section == "A1"


def test_different_year_is_not_a_conflict():
    assert find_conflict([_p(1, "A1", year=3)], "A1", 2) is None


def test_missing_section_never_conflicts():
    roster = [_p(1, None), _p(2, "")]
    assert find_conflict(roster, None, 2) is None
    assert find_conflict(roster, "  ", 2) is None
    assert find_conflict([_p(1, "A1")], None, 2) is None


def test_member_with_blank_section_does_not_block():
    assert find_conflict([_p(1, " ")], "A1", 2) is None


def test_candidate_skipped_on_recheck():
    roster = [_p(1, "C3"), _p(7, "A1")]
    assert find_conflict(roster, "A1", 2, candidate_id=7) is None
    assert find_conflict(roster + [_p(8, "a1 ")], "A1", 2, candidate_id=7).user_id == 8


def test_pending_same_section_is_advisory():
    candidate = _p(5, "d4")
    pending = [candidate, _p(6, "D4"), _p(7, "D4", year=1)]

    assert has_pending_same_section(candidate, pending)
    assert not has_pending_same_section(candidate, [candidate])
    assert not has_pending_same_section(_p(9, None), pending)


def test_evaluate_report():
    candidate = _p(5, "A1")
    report = evaluate(candidate, [_p(1, "a1")], [candidate, _p(6, "A1")])

    assert report.has_member_conflict
    assert report.conflicting_member.user_id == 1
    assert report.has_pending_same_section

    clean = evaluate(candidate, [_p(1, "B1")], [candidate])
    assert not clean.has_member_conflict
    assert clean.conflicting_member is None
    assert not clean.has_pending_same_section
