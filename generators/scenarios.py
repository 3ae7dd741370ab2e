"""
Deterministic seed scenarios.

Each builder fills a store with a small, hand-shaped period that exercises one
part of the engine, and returns the period id.
"""

import logging
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List

from models import (
    Clerkship,
    Elective,
    HealthSystem,
    Preceptor,
    PreceptorAvailability,
    PreceptorTeam,
    PreceptorTeamMember,
    SchedulingPeriod,
    Site,
    Student,
)

logger = logging.getLogger(__name__)

SCHEDULE_START = date(2026, 1, 1)
SCHEDULE_END = date(2026, 1, 30)


def weekdays_between(start: date, end: date, weekdays: Iterable[int] = (0, 1, 2, 3, 4)) -> List[date]:
    """Dates in [start, end] whose weekday() is in `weekdays`."""
    allowed = set(weekdays)
    days = []
    current = start
    while current <= end:
        if current.weekday() in allowed:
            days.append(current)
        current += timedelta(days=1)
    return days


def _open_days(store, preceptor: Preceptor, days: Iterable[date]) -> None:
    for day in days:
        for site_id in preceptor.site_ids:
            store.add_availability(PreceptorAvailability(preceptor_id=preceptor.id, site_id=site_id, date=day))


def _students(store, names: List[str]) -> List[Student]:
    students = []
    for i, name in enumerate(names, start=1):
        student = Student(id=f"stu_{i:02d}", name=name, email=name.lower().replace(" ", ".") + "@medical.edu")
        store.add_student(student)
        students.append(student)
    return students


def _period(store, period_id: str, name: str) -> str:
    store.add_period(SchedulingPeriod(id=period_id, name=name, start_date=SCHEDULE_START, end_date=SCHEDULE_END))
    return period_id


def capacity_limited(store) -> str:
    """
    Three preceptors with daily capacities 1, 2 and 3 sharing one team.
    Five students need 10 days each; no preceptor may exceed its capacity on any day.
    """
    store.add_health_system(HealthSystem(id="hs_umc", name="University Medical Center"))
    store.add_site(Site(id="site_umc_main", name="UMC Main Campus", health_system_id="hs_umc"))
    store.add_clerkship(Clerkship(id="clk_fm", name="Family Medicine", specialty="Family Medicine", required_days=10))

    _students(store, ["Emma Davis", "James Wilson", "Olivia Brown", "William Taylor", "Sophia Anderson"])

    preceptors = []
    for i, capacity in enumerate((1, 2, 3), start=1):
        preceptor = Preceptor(
            id=f"pre_cap{capacity}",
            name=f"Dr. Capacity {capacity}",
            specialty="Family Medicine",
            health_system_id="hs_umc",
            site_ids=["site_umc_main"],
            max_students=capacity,
        )
        store.add_preceptor(preceptor)
        _open_days(store, preceptor, weekdays_between(SCHEDULE_START, SCHEDULE_END))
        preceptors.append(preceptor)

    store.save_team(PreceptorTeam(
        id="team_fm",
        clerkship_id="clk_fm",
        name="Family Medicine Team",
        require_same_health_system=True,
        members=[PreceptorTeamMember(preceptor_id=p.id, priority=i + 1) for i, p in enumerate(preceptors)],
    ))
    return _period(store, "capacity-limited", "Capacity Limited")


def multi_team(store) -> str:
    """
    Two teams in two health systems, with electives taught by the second team's lead.
    Three students need 20 days each (5 + 8 of them elective days).
    """
    store.add_health_system(HealthSystem(id="hs_north", name="North Health"))
    store.add_health_system(HealthSystem(id="hs_south", name="South Health"))
    store.add_site(Site(id="site_north", name="North Clinic", health_system_id="hs_north"))
    store.add_site(Site(id="site_south", name="South Hospital", health_system_id="hs_south"))

    store.add_clerkship(Clerkship(
        id="clk_im",
        name="Internal Medicine",
        specialty="Internal Medicine",
        clerkship_type="inpatient",
        required_days=20,
        electives=[
            Elective(id="elec_cardio", name="Cardiology", minimum_days=5, preceptor_ids=["pre_s"]),
            Elective(id="elec_renal", name="Nephrology", minimum_days=8, preceptor_ids=["pre_s"]),
        ],
    ))
    _students(store, ["Liam Moore", "Ava Martin", "Noah Clark"])

    dude = Preceptor(id="pre_dude", name="Dr. Dude", specialty="Internal Medicine",
                     health_system_id="hs_north", site_ids=["site_north"])
    lane = Preceptor(id="pre_lane", name="Dr. Lane", specialty="Internal Medicine",
                     health_system_id="hs_north", site_ids=["site_north"])
    s = Preceptor(id="pre_s", name="Dr. S", specialty="Internal Medicine",
                  health_system_id="hs_south", site_ids=["site_south"])
    kim = Preceptor(id="pre_kim", name="Dr. Kim", specialty="Internal Medicine",
                    health_system_id="hs_south", site_ids=["site_south"])
    for preceptor in (dude, lane, s, kim):
        store.add_preceptor(preceptor)

    _open_days(store, dude, weekdays_between(SCHEDULE_START, SCHEDULE_END, weekdays=(0, 2, 4)))
    _open_days(store, lane, weekdays_between(date(2026, 1, 19), SCHEDULE_END))
    _open_days(store, s, weekdays_between(date(2026, 1, 5), date(2026, 1, 16)))
    _open_days(store, kim, weekdays_between(date(2026, 1, 12), date(2026, 1, 23), weekdays=(1, 3)))

    store.save_team(PreceptorTeam(
        id="team_north", clerkship_id="clk_im", name="North", priority=1,
        members=[
            PreceptorTeamMember(preceptor_id="pre_dude", priority=1, role="lead"),
            PreceptorTeamMember(preceptor_id="pre_lane", priority=2, role="backup", is_fallback_only=True),
        ],
    ))
    store.save_team(PreceptorTeam(
        id="team_south", clerkship_id="clk_im", name="South", priority=2,
        members=[
            PreceptorTeamMember(preceptor_id="pre_s", priority=1, role="lead"),
            PreceptorTeamMember(preceptor_id="pre_kim", priority=2),
        ],
    ))
    return _period(store, "multi-team", "Multi Team")


def partial_availability(store) -> str:
    """
    Three preceptors covering different weeks; no one covers a whole 15-day requirement.
    Students end up split across preceptors and some days are reported unmet.
    """
    store.add_health_system(HealthSystem(id="hs_cc", name="Community Care"))
    store.add_site(Site(id="site_cc", name="Community Clinic", health_system_id="hs_cc"))
    store.add_clerkship(Clerkship(id="clk_peds", name="Pediatrics", specialty="Pediatrics", required_days=15))
    _students(store, ["Mia Lewis", "Ethan Walker", "Isabella Hall"])

    windows = [
        ("pre_week1", date(2026, 1, 5), date(2026, 1, 9)),
        ("pre_week2", date(2026, 1, 12), date(2026, 1, 16)),
        ("pre_week3", date(2026, 1, 19), date(2026, 1, 23)),
    ]
    members = []
    for i, (preceptor_id, start, end) in enumerate(windows, start=1):
        preceptor = Preceptor(
            id=preceptor_id,
            name=f"Dr. Week {i}",
            specialty="Pediatrics",
            health_system_id="hs_cc",
            site_ids=["site_cc"],
        )
        store.add_preceptor(preceptor)
        _open_days(store, preceptor, weekdays_between(start, end))
        members.append(PreceptorTeamMember(preceptor_id=preceptor_id, priority=i))

    store.save_team(PreceptorTeam(id="team_peds", clerkship_id="clk_peds", name="Pediatrics Rotation", members=members))
    return _period(store, "partial-availability", "Partial Availability")


def electives(store) -> str:
    """
    One clerkship with two required electives and one optional elective.
    General preceptors take core days; specialists only take elective days.
    """
    store.add_health_system(HealthSystem(id="hs_metro", name="Metro Health"))
    store.add_site(Site(id="site_general", name="General Clinic", health_system_id="hs_metro"))
    store.add_site(Site(id="site_specialty", name="Specialty Center", health_system_id="hs_metro"))

    store.add_clerkship(Clerkship(
        id="clk_surg",
        name="Surgery",
        specialty="Surgery",
        required_days=15,
        electives=[
            Elective(id="elec_ortho", name="Orthopedics", minimum_days=3,
                     preceptor_ids=["pre_ortho"], site_ids=["site_specialty"]),
            Elective(id="elec_plastics", name="Plastics", minimum_days=2,
                     preceptor_ids=["pre_plastics"], site_ids=["site_specialty"]),
            Elective(id="elec_trauma", name="Trauma", minimum_days=4, is_required=False),
        ],
    ))
    _students(store, ["Lucas Young", "Amelia King", "Mason Wright", "Harper Scott"])

    everyday = weekdays_between(SCHEDULE_START, SCHEDULE_END)
    general = [
        Preceptor(id="pre_gen_a", name="Dr. General A", specialty="Surgery", health_system_id="hs_metro",
                  site_ids=["site_general"], max_students=2),
        Preceptor(id="pre_gen_b", name="Dr. General B", specialty="Surgery", health_system_id="hs_metro",
                  site_ids=["site_general"], max_students=2),
    ]
    specialists = [
        Preceptor(id="pre_ortho", name="Dr. Ortho", specialty="Orthopedics", health_system_id="hs_metro",
                  site_ids=["site_specialty"]),
        Preceptor(id="pre_plastics", name="Dr. Plastics", specialty="Plastic Surgery", health_system_id="hs_metro",
                  site_ids=["site_specialty"]),
    ]
    for preceptor in general + specialists:
        store.add_preceptor(preceptor)
        _open_days(store, preceptor, everyday)

    store.save_team(PreceptorTeam(
        id="team_surg", clerkship_id="clk_surg", name="Surgery Core", require_same_site=True,
        members=[PreceptorTeamMember(preceptor_id=p.id, priority=i + 1) for i, p in enumerate(general)],
    ))
    return _period(store, "electives", "Electives")


SCENARIOS: Dict[str, Callable] = {
    "capacity-limited": capacity_limited,
    "multi-team": multi_team,
    "partial-availability": partial_availability,
    "electives": electives,
}


def load_scenario(name: str, store) -> str:
    if name not in SCENARIOS:
        raise KeyError(f"Unknown scenario '{name}' (known: {', '.join(sorted(SCENARIOS))})")
    period_id = SCENARIOS[name](store)
    logger.info(f"Seeded scenario {name} as period {period_id}")
    return period_id
