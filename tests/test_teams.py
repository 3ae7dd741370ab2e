from datetime import datetime, timezone

from models import Elective, HealthSystem, PreceptorTeam, PreceptorTeamMember, Site
from scheduler import TeamSelector
from tests.conftest import PERIOD_ID, add_preceptor, seed_basic


def _team(team_id, members, priority=1, **rules):
    return PreceptorTeam(
        id=team_id,
        clerkship_id="clk1",
        priority=priority,
        members=[PreceptorTeamMember(preceptor_id=pid, priority=i + 1, is_fallback_only=fb)
                 for i, (pid, fb) in enumerate(members)],
        **rules,
    )


def _seed_two_systems(store):
    seed_basic(store)
    add_preceptor(store, "pre2", [])
    store.add_health_system(HealthSystem(id="hs2", name="Health Two"))
    store.add_site(Site(id="site2", name="Clinic Two", health_system_id="hs2"))
    add_preceptor(store, "pre3", [], site_id="site2", health_system_id="hs2")
    add_preceptor(store, "pre4", [], site_id="site2", health_system_id="hs2")


def _selector(store):
    return TeamSelector(store.snapshot(PERIOD_ID))


def test_teams_ranked_by_priority_then_age(store):
    _seed_two_systems(store)
    older = _team("team_old", [("pre3", False), ("pre4", False)], priority=2)
    older.created_at = datetime(2025, 1, 1, tzinfo=timezone.utc)
    store.save_team(older)
    store.save_team(_team("team_new", [("pre1", False), ("pre2", False)], priority=2))
    store.save_team(_team("team_top", [("pre2", False), ("pre1", False)], priority=1))

    ranked = _selector(store).candidate_teams("clk1")
    assert [t.team_id for t in ranked] == ["team_top", "team_old", "team_new"]
    assert [t.rank for t in ranked] == [0, 1, 2]
    assert ranked[1].health_system_id == "hs2"


def test_fallback_members_are_ordered_last(store):
    _seed_two_systems(store)
    store.save_team(_team("team", [("pre2", True), ("pre1", False)]))

    ranked = _selector(store).candidate_teams("clk1")
    assert ranked[0].preceptor_ids == ["pre1", "pre2"]
    assert ranked[0].members[-1].is_fallback_only


def test_invalid_teams_are_excluded_and_reported(store):
    _seed_two_systems(store)
    store.save_team(_team("team_split", [("pre1", False), ("pre3", False)], require_same_site=True))
    store.save_team(_team("team_pending", [("pre1", False), ("pre2", False)], requires_admin_approval=True))
    store.save_team(_team("team_ghost", [("pre1", False), ("pre_gone", False)]))
    store.save_team(_team("team_ok", [("pre3", False), ("pre4", False)], require_same_health_system=True))

    selector = _selector(store)
    assert [t.team_id for t in selector.candidate_teams("clk1")] == ["team_ok"]

    invalid = {t.team_id: t.reasons for t in selector.invalid_teams("clk1")}
    assert invalid["team_split"] == ["Members do not share a site"]
    assert invalid["team_pending"] == ["Awaiting admin approval"]
    assert invalid["team_ghost"] == ["Unknown preceptor pre_gone"]
    assert len(selector.invalid_teams()) == 3


def test_approved_team_is_valid(store):
    _seed_two_systems(store)
    store.save_team(_team("team", [("pre1", False), ("pre2", False)], requires_admin_approval=True, is_approved=True))

    assert [t.team_id for t in _selector(store).candidate_teams("clk1")] == ["team"]


def test_open_pool_when_no_valid_team(store):
    _seed_two_systems(store)
    pools = _selector(store).candidate_teams("clk1")

    assert len(pools) == 1
    assert pools[0].team_id is None
    assert pools[0].preceptor_ids == ["pre1", "pre2", "pre3", "pre4"]


def test_elective_pool_uses_listed_preceptors(store):
    _seed_two_systems(store)
    store.save_team(_team("team", [("pre1", False), ("pre2", False)]))
    selector = _selector(store)
    clerkship = store.snapshot(PERIOD_ID).clerkship_by_id["clk1"]

    listed = Elective(id="e1", name="Cardio", minimum_days=2, preceptor_ids=["pre4", "pre_gone", "pre3"], site_ids=["site2"])
    pools = selector.elective_pools(clerkship, listed)
    assert pools[0].preceptor_ids == ["pre4", "pre3"]
    assert pools[0].site_ids == ["site2"]

    unlisted = Elective(id="e2", name="Renal", minimum_days=2)
    pools = selector.elective_pools(clerkship, unlisted)
    assert [p.team_id for p in pools] == ["team"]
    assert pools[0].site_ids is None


def test_fallback_tiers(store):
    _seed_two_systems(store)
    add_preceptor(store, "pre5", [])
    store.save_team(_team("team_a", [("pre1", False), ("pre2", True)], priority=1))
    store.save_team(_team("team_b", [("pre2", False), ("pre5", False)], priority=2))
    store.save_team(_team("team_c", [("pre3", False), ("pre4", False)], priority=3))
    selector = _selector(store)

    tiers = selector.fallback_tiers("clk1", "team_a")
    assert [(t.tier, [p.team_id for p in t.teams]) for t in tiers] == [(1, ["team_a"]), (2, ["team_b"])]

    tiers = selector.fallback_tiers("clk1", "team_a", allow_cross_system=True)
    assert [(t.tier, [p.team_id for p in t.teams]) for t in tiers] == [
        (1, ["team_a"]), (2, ["team_b"]), (3, ["team_c"]),
    ]

    # No team held yet: the top-ranked team is tier 1
    assert selector.fallback_tiers("clk1", None)[0].teams[0].team_id == "team_a"
