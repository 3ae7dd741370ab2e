from datetime import date

import pytest
from pydantic import ValidationError

from models import (
    BlackoutDate,
    Clerkship,
    DateRange,
    Elective,
    PreceptorTeam,
    PreceptorTeamMember,
    ScheduleAssignment,
)


def _member(pid, priority, fallback=False):
    return PreceptorTeamMember(preceptor_id=pid, priority=priority, is_fallback_only=fallback)


def test_team_needs_two_members():
    with pytest.raises(ValidationError, match="at least 2 members"):
        PreceptorTeam(id="t", clerkship_id="c", members=[_member("a", 1)])


def test_team_rejects_duplicate_preceptor():
    with pytest.raises(ValidationError, match="cannot appear twice"):
        PreceptorTeam(id="t", clerkship_id="c", members=[_member("a", 1), _member("a", 2)])


def test_team_rejects_duplicate_priority_but_allows_gaps():
    with pytest.raises(ValidationError, match="priorities must be unique"):
        PreceptorTeam(id="t", clerkship_id="c", members=[_member("a", 1), _member("b", 1)])

    team = PreceptorTeam(id="t", clerkship_id="c", members=[_member("a", 1), _member("b", 5)])
    assert [m.priority for m in team.members] == [1, 5]


def test_ordered_members_puts_fallbacks_last():
    team = PreceptorTeam(id="t", clerkship_id="c", members=[
        _member("backup", 1, fallback=True),
        _member("second", 3),
        _member("first", 2),
    ])
    assert [m.preceptor_id for m in team.ordered_members] == ["first", "second", "backup"]


def test_clerkship_day_budget():
    clerkship = Clerkship(id="c", name="Surgery", required_days=15, electives=[
        Elective(id="e1", name="Ortho", minimum_days=3),
        Elective(id="e2", name="Plastics", minimum_days=2),
        Elective(id="e3", name="Trauma", minimum_days=4, is_required=False),
    ])
    assert clerkship.elective_days == 5
    assert clerkship.core_days == 10


def test_clerkship_rejects_duplicate_elective_ids():
    with pytest.raises(ValidationError):
        Clerkship(id="c", name="Surgery", required_days=5, electives=[
            Elective(id="e1", name="A", minimum_days=1),
            Elective(id="e1", name="B", minimum_days=1),
        ])


def test_date_range_rejects_inverted_bounds():
    with pytest.raises(ValidationError):
        DateRange(start=date(2026, 3, 10), end=date(2026, 3, 1))


def test_date_range_days_are_inclusive():
    rng = DateRange(start=date(2026, 3, 1), end=date(2026, 3, 3))
    assert list(rng.days()) == [date(2026, 3, 1), date(2026, 3, 2), date(2026, 3, 3)]
    assert date(2026, 3, 3) in rng
    assert date(2026, 3, 4) not in rng


def test_blackout_scope():
    global_day = BlackoutDate(id="b1", date=date(2026, 3, 2))
    scoped = BlackoutDate(id="b2", date=date(2026, 3, 2), preceptor_id="pre1")

    assert global_day.is_global
    assert global_day.covers("anyone", "anywhere", date(2026, 3, 2))
    assert not global_day.covers("anyone", "anywhere", date(2026, 3, 3))
    assert scoped.covers("pre1", "site1", date(2026, 3, 2))
    assert not scoped.covers("pre2", "site1", date(2026, 3, 2))


def test_plan_key_ignores_row_identity():
    kwargs = dict(period_id="p", student_id="s", preceptor_id="x", clerkship_id="c", site_id="y", date=date(2026, 3, 2))
    a = ScheduleAssignment(**kwargs)
    b = ScheduleAssignment(**kwargs, notes="copied")
    assert a.id != b.id
    assert a.plan_key() == b.plan_key()
